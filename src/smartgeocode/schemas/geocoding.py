"""Pydantic v2 schemas for the single-address lookup endpoint."""

from pydantic import BaseModel, Field


class GeocodeResponse(BaseModel):
    """Result of a single-address geocode."""

    address: str = Field(description="The address as submitted")
    lat: float = Field(description="WGS84 latitude")
    lng: float = Field(description="WGS84 longitude")
    formatted_address: str | None = Field(default=None, description="Provider's canonical address")
    confidence: float | None = Field(default=None, ge=0, le=1, description="Provider match confidence")
    provider: str
