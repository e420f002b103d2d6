"""Pydantic models for the trail ingestion domain.

Transient upstream data (``Coordinate``, ``PathFragment``, ``RawRoute``) is
immutable once fetched. ``Trail`` is the persisted entity and owns its
waypoints and marking.
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from enum import Enum
from typing import NamedTuple
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field


class Coordinate(NamedTuple):
    """A (longitude, latitude, elevation) point; elevation None means unknown."""

    lon: float
    lat: float
    elevation: float | None = None


class PathFragment(BaseModel):
    """An atomic polyline referenced by a route (an OSM way)."""

    model_config = ConfigDict(frozen=True)

    fragment_id: int = Field(..., description="Stable upstream way identifier")
    coordinates: tuple[Coordinate, ...] = Field(default=())

    @property
    def is_empty(self) -> bool:
        return not self.coordinates

    @property
    def start(self) -> Coordinate | None:
        return self.coordinates[0] if self.coordinates else None

    @property
    def end(self) -> Coordinate | None:
        return self.coordinates[-1] if self.coordinates else None


class RawRoute(BaseModel):
    """A route relation as returned by the geodata service, before normalization."""

    model_config = ConfigDict(frozen=True)

    external_id: int
    name: str | None = None
    route_kind: str | None = None
    ref: str | None = None
    network: str | None = None
    operator: str | None = None
    marking_symbol: str | None = None
    difficulty_hint: str | None = None
    description: str | None = None
    fragment_ids: tuple[int, ...] = Field(
        default=(), description="Member way ids in relation order"
    )
    fragments: dict[int, PathFragment] = Field(
        default_factory=dict, description="Resolved member ways keyed by id"
    )


class DifficultyProfile(NamedTuple):
    rank: int
    max_slope_threshold: float
    max_elevation_gain_threshold: int
    description: str


class Difficulty(str, Enum):
    """Trail difficulty, ordered by increasing severity through ``rank``."""

    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"
    ALPINE = "ALPINE"
    SCRAMBLING = "SCRAMBLING"

    @property
    def rank(self) -> int:
        return _DIFFICULTY_PROFILES[self].rank

    @property
    def max_slope_threshold(self) -> float:
        return _DIFFICULTY_PROFILES[self].max_slope_threshold

    @property
    def max_elevation_gain_threshold(self) -> int:
        return _DIFFICULTY_PROFILES[self].max_elevation_gain_threshold

    @property
    def description(self) -> str:
        return _DIFFICULTY_PROFILES[self].description

    def at_least(self, other: Difficulty) -> bool:
        """Return True when this level is as severe as ``other`` or more."""
        return self.rank >= other.rank

    @classmethod
    def from_hint(cls, hint: str | None) -> Difficulty:
        """Map an upstream ``hiking:difficulty`` value; unknown values map to MEDIUM."""
        if hint is None:
            return cls.MEDIUM
        return _DIFFICULTY_HINTS.get(hint.strip().lower(), cls.MEDIUM)


_DIFFICULTY_PROFILES = {
    Difficulty.EASY: DifficultyProfile(
        0, 10.0, 500, "Easy - Minimal elevation, well-maintained paths"
    ),
    Difficulty.MEDIUM: DifficultyProfile(
        1, 20.0, 1500, "Moderate - Some elevation, occasional rocky sections"
    ),
    Difficulty.HARD: DifficultyProfile(
        2, 30.0, 2500, "Hard - Significant elevation, exposed terrain"
    ),
    Difficulty.ALPINE: DifficultyProfile(
        3, 40.0, 3000, "Alpine - High altitude, thin air, exposed ridges"
    ),
    Difficulty.SCRAMBLING: DifficultyProfile(
        4, 50.0, 3500, "Scrambling - Hands required, technical terrain"
    ),
}

_DIFFICULTY_HINTS = {
    "easy": Difficulty.EASY,
    "simple": Difficulty.EASY,
    "moderate": Difficulty.MEDIUM,
    "medium": Difficulty.MEDIUM,
    "difficult": Difficulty.HARD,
    "hard": Difficulty.HARD,
    "very_difficult": Difficulty.ALPINE,
    "alpine": Difficulty.ALPINE,
    "scrambling": Difficulty.SCRAMBLING,
    "rock_climbing": Difficulty.SCRAMBLING,
}


class WaypointKind(str, Enum):
    START = "START"
    END = "END"
    JUNCTION = "JUNCTION"
    PEAK = "PEAK"
    SHELTER = "SHELTER"
    WATER = "WATER"
    CAMPING = "CAMPING"
    VIEWPOINT = "VIEWPOINT"
    OTHER = "OTHER"


class Waypoint(BaseModel):
    """A point of interest along a trail, ordered by ``sequence_order``."""

    sequence_order: int = Field(..., ge=0)
    latitude: float
    longitude: float
    elevation: int | None = Field(default=None, description="Metres, None if unknown")
    label: str
    kind: WaypointKind = WaypointKind.OTHER


class MarkingColor(str, Enum):
    BLUE = "BLUE"
    RED = "RED"
    YELLOW = "YELLOW"
    GREEN = "GREEN"
    WHITE = "WHITE"
    ORANGE = "ORANGE"
    BLACK = "BLACK"
    PURPLE = "PURPLE"

    @property
    def hex(self) -> str:
        return _MARKING_HEX[self]


_MARKING_HEX = {
    MarkingColor.BLUE: "#0000FF",
    MarkingColor.RED: "#FF0000",
    MarkingColor.YELLOW: "#FFFF00",
    MarkingColor.GREEN: "#00AA00",
    MarkingColor.WHITE: "#FFFFFF",
    MarkingColor.ORANGE: "#FFA500",
    MarkingColor.BLACK: "#000000",
    MarkingColor.PURPLE: "#800080",
}


class MarkingShape(str, Enum):
    STRIPE = "STRIPE"
    TRIANGLE = "TRIANGLE"
    CROSS = "CROSS"
    DOT = "DOT"
    RECTANGLE = "RECTANGLE"
    ARCH = "ARCH"
    NONE = "NONE"

    @property
    def glyph(self) -> str:
        return _MARKING_GLYPHS[self]


_MARKING_GLYPHS = {
    MarkingShape.STRIPE: "━",
    MarkingShape.TRIANGLE: "▲",
    MarkingShape.CROSS: "✛",
    MarkingShape.DOT: "●",
    MarkingShape.RECTANGLE: "■",
    MarkingShape.ARCH: "⌢",
    MarkingShape.NONE: "",
}


class TrailMarking(BaseModel):
    """Painted waymark of a trail, parsed from an OSMC symbol string."""

    symbol: str = Field(..., description="Full OSMC symbol, e.g. 'blue:blue_stripe'")
    color: MarkingColor = MarkingColor.WHITE
    shape: MarkingShape = MarkingShape.NONE

    @computed_field  # type: ignore[prop-decorator]
    @property
    def hex_color(self) -> str:
        return self.color.hex

    @computed_field  # type: ignore[prop-decorator]
    @property
    def description(self) -> str:
        return f"{self.color.value} {self.shape.value}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Trail(BaseModel):
    """
    Persisted hiking trail.

    ``id`` and ``created_at`` are assigned by the trail store on the first
    save and never change afterwards. ``external_id`` is the upstream relation
    id and is unique across all stored trails when present.
    """

    id: UUID | None = None
    external_id: int | None = None
    name: str
    description: str | None = None
    ref: str | None = None
    distance_km: float = 0.0
    elevation_gain: int = 0
    elevation_loss: int = 0
    duration_minutes: int = 0
    max_slope: float = 0.0
    avg_slope: float = 0.0
    max_elevation: int = 0
    terrain: set[str] = Field(default_factory=set)
    difficulty: Difficulty | None = None
    hazards: set[str] = Field(default_factory=set)
    marking: TrailMarking | None = None
    waypoints: list[Waypoint] = Field(default_factory=list)
    geometry: list[Coordinate] = Field(default_factory=list)
    source: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def merge_from(self, other: Trail) -> None:
        """Copy the upstream-derived fields of ``other`` onto this trail.

        Identity, source and creation timestamp are left untouched.
        """
        self.name = other.name
        self.description = other.description
        self.ref = other.ref
        self.distance_km = other.distance_km
        self.elevation_gain = other.elevation_gain
        self.elevation_loss = other.elevation_loss
        self.duration_minutes = other.duration_minutes
        self.max_slope = other.max_slope
        self.avg_slope = other.avg_slope
        self.max_elevation = other.max_elevation
        self.geometry = list(other.geometry)
        self.waypoints = copy.deepcopy(other.waypoints)
        self.difficulty = other.difficulty
        self.terrain = set(other.terrain)
        self.hazards = set(other.hazards)
        self.marking = other.marking.model_copy() if other.marking else None


class IngestionFailure(BaseModel):
    """One absorbed per-item failure, kept for post-run diagnosis."""

    stage: str = Field(..., description="normalize, validate or persist")
    external_id: int | None = None
    error_type: str
    message: str


class IngestionRun(BaseModel):
    """Statistics report for one pipeline invocation. Never persisted."""

    label: str = ""
    fetched: int = 0
    normalized: int = 0
    deduplicated: int = 0
    validated: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    success: bool = False
    error_message: str | None = None
    errors: list[IngestionFailure] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: datetime | None = None

    def record_failure(
        self, stage: str, external_id: int | None, error: BaseException
    ) -> IngestionFailure:
        failure = IngestionFailure(
            stage=stage,
            external_id=external_id,
            error_type=type(error).__name__,
            message=str(error),
        )
        self.failed += 1
        self.errors.append(failure)
        return failure

    def finish(self) -> None:
        self.finished_at = _utcnow()

    def summary(self) -> str:
        return (
            f"success={self.success}, fetched={self.fetched}, normalized={self.normalized}, "
            f"deduplicated={self.deduplicated}, validated={self.validated}, "
            f"created={self.created}, updated={self.updated}, failed={self.failed}"
        )
