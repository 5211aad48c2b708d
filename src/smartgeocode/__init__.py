"""SmartGeocode batch geocoding service."""

__version__ = "0.1.0"
