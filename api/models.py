"""
Pydantic models for API request/response validation.

These models define the structure of API requests and responses and
automatically generate OpenAPI schema definitions.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from scripts.domain.models import Difficulty, Trail, TrailMarking


class BoundingBoxRequest(BaseModel):
    """Area to ingest, in decimal degrees."""

    south: float = Field(..., ge=-90, le=90, examples=[45.20])
    west: float = Field(..., ge=-180, le=180, examples=[25.40])
    north: float = Field(..., ge=-90, le=90, examples=[45.50])
    east: float = Field(..., ge=-180, le=180, examples=[25.70])

    @model_validator(mode="after")
    def check_ordering(self) -> BoundingBoxRequest:
        if self.south > self.north:
            raise ValueError("south must not be greater than north")
        if self.west > self.east:
            raise ValueError("west must not be greater than east")
        return self


class NearbyRequest(BaseModel):
    """Point and radius to ingest around."""

    latitude: float = Field(..., ge=-90, le=90, examples=[45.35])
    longitude: float = Field(..., ge=-180, le=180, examples=[25.54])
    radius_km: float = Field(
        10.0,
        gt=0,
        le=100,
        description="Search radius in kilometres, approximated as a square box",
        examples=[10.0],
    )


class IngestionAccepted(BaseModel):
    """Returned when an ingestion run was scheduled in the background."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field("accepted", examples=["accepted"])
    label: str = Field(..., examples=["region(bucegi)"])


class TrailSummary(BaseModel):
    """
    Individual trail information.

    Represents a stored hiking trail with its metrics and classification but
    without geometry.
    """

    id: UUID = Field(..., description="Internal trail identifier")
    external_id: int | None = Field(
        None, description="OpenStreetMap relation id", examples=[123456]
    )
    name: str = Field(..., examples=["Bucegi Plateau Loop"])
    ref: str | None = Field(None, description="Route reference code", examples=["03"])
    distance_km: float = Field(..., ge=0, examples=[12.4])
    elevation_gain: int = Field(..., description="Total ascent in metres", examples=[850])
    elevation_loss: int = Field(..., description="Total descent in metres", examples=[820])
    duration_minutes: int = Field(..., description="Estimated walking time", examples=[333])
    max_elevation: int = Field(..., examples=[2505])
    max_slope: float = Field(..., description="Steepest segment, percent", examples=[28.5])
    difficulty: Difficulty | None = Field(None, examples=["HARD"])
    terrain: list[str] = Field(default_factory=list, examples=[["alpine_meadow"]])
    hazards: list[str] = Field(default_factory=list, examples=[["bears", "exposure"]])
    marking: TrailMarking | None = None
    waypoint_count: int = Field(0, ge=0)
    source: str | None = Field(None, examples=["openstreetmap"])
    updated_at: datetime | None = None

    @classmethod
    def from_trail(cls, trail: Trail) -> TrailSummary:
        return cls(
            id=trail.id,
            external_id=trail.external_id,
            name=trail.name,
            ref=trail.ref,
            distance_km=round(trail.distance_km, 3),
            elevation_gain=trail.elevation_gain,
            elevation_loss=trail.elevation_loss,
            duration_minutes=trail.duration_minutes,
            max_elevation=trail.max_elevation,
            max_slope=round(trail.max_slope, 2),
            difficulty=trail.difficulty,
            terrain=sorted(trail.terrain),
            hazards=sorted(trail.hazards),
            marking=trail.marking,
            waypoint_count=len(trail.waypoints),
            source=trail.source,
            updated_at=trail.updated_at,
        )


class TrailsResponse(BaseModel):
    """Response model for the trails listing endpoint."""

    trail_count: int = Field(..., ge=0, examples=[42])
    trails: list[TrailSummary]

