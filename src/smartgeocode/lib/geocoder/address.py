"""Address input normalization and sanity checks applied before geocoding."""

import re

from smartgeocode.lib.geocoder.base import AddressFields

MAX_ADDRESS_LENGTH = 500

# Values that mean "no address" in customer spreadsheets
_PLACEHOLDERS = {"", "N/A"}

_HAS_ALNUM = re.compile(r"[A-Za-z0-9]")


class MalformedAddressError(ValueError):
    """Raised when an address cannot be sent to a provider at all."""


def clean_value(value: object) -> str | None:
    """Trim a raw cell value and collapse internal whitespace.

    Returns:
        The cleaned string, or None for missing/empty values.
    """
    if value is None:
        return None
    text = re.sub(r"\s+", " ", str(value)).strip()
    return text or None


def is_placeholder_address(address: object) -> bool:
    """Whether an address cell is blank or the literal "N/A" (case-insensitive)."""
    cleaned = clean_value(address)
    return cleaned is None or cleaned.upper() in _PLACEHOLDERS


def validate_address_fields(fields: AddressFields) -> AddressFields:
    """Reject addresses no provider could match.

    Args:
        fields: Address input fields.

    Returns:
        The same fields, for chaining.

    Raises:
        MalformedAddressError: If the address is empty, too long, or has no
            letters or digits.
    """
    address = clean_value(fields.address)
    if address is None or address.upper() in _PLACEHOLDERS:
        msg = "Address is empty"
        raise MalformedAddressError(msg)
    if len(address) > MAX_ADDRESS_LENGTH:
        msg = f"Address exceeds {MAX_ADDRESS_LENGTH} characters"
        raise MalformedAddressError(msg)
    if not _HAS_ALNUM.search(address):
        msg = "Address contains no letters or digits"
        raise MalformedAddressError(msg)
    return fields
