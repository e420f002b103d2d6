"""Pydantic schemas for validating Overpass API responses.

The Overpass interpreter answers ``[out:json]`` queries with a JSON object
holding an ``elements`` array. Route relations carry tags and member
references; member ways carry their node geometry (``out geom``). On failure
the interpreter adds a ``remark`` string describing the error.

Elements are validated one at a time so that a single malformed record does
not discard the rest of the response.
"""

from pydantic import BaseModel, Field, field_validator

from scripts.domain.models import Coordinate


class OverpassNode(BaseModel):
    """A geometry vertex as emitted by ``out geom``."""

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    ele: float | None = Field(default=None, description="Elevation in metres, if tagged")

    def to_coordinate(self) -> Coordinate:
        return Coordinate(self.lon, self.lat, self.ele)


class OverpassMember(BaseModel):
    """A relation member reference, optionally with inline geometry."""

    type: str
    ref: int
    role: str = ""
    geometry: list[OverpassNode | None] | None = None


class OverpassElement(BaseModel):
    """Schema for a single element of the ``elements`` array.

    Only ``way`` and ``relation`` elements are of interest; ``node`` elements
    produced by recursion are accepted and ignored by the client.
    """

    type: str
    id: int
    tags: dict[str, str] | None = None
    geometry: list[OverpassNode | None] | None = None
    members: list[OverpassMember] = Field(default_factory=list)

    @field_validator("type")
    @classmethod
    def validate_element_type(cls, v: str) -> str:
        """Ensure type is one of the OSM element types."""
        valid_types = {"node", "way", "relation", "area"}
        if v not in valid_types:
            raise ValueError(f"Invalid element type '{v}'. Must be one of: {valid_types}")
        return v

    def coordinates(self) -> tuple[Coordinate, ...]:
        """Return the way geometry, skipping null vertices."""
        return tuple(node.to_coordinate() for node in self.geometry or [] if node)

    def tag(self, key: str) -> str | None:
        if not self.tags:
            return None
        return self.tags.get(key)


class OverpassResponse(BaseModel):
    """Top-level Overpass JSON document.

    ``elements`` is kept as raw dictionaries; each one is validated with
    ``OverpassElement`` by the client.
    """

    version: float | None = None
    generator: str | None = None
    elements: list[dict] = Field(default_factory=list)
    remark: str | None = None

    @property
    def has_error(self) -> bool:
        """True when the interpreter reported an error remark."""
        return bool(self.remark and self.remark.strip())
