"""
Route normalization: raw route relations to Trail domain objects.

This module converts a ``RawRoute`` (relation metadata plus its member ways)
into a ``Trail``. The member ways are stitched by the ``FragmentAssembler``,
then every derived value is computed once over the stitched polyline.

Processing Steps:
1. Stitch member ways into one coordinate sequence
2. Compute distance, elevation gain/loss, slopes and maximum elevation
3. Resolve difficulty from the upstream hint or infer it from the metrics
4. Parse the OSMC waymark symbol
5. Derive terrain and hazard tags (with data-driven regional hazard rules)
6. Estimate walking duration
7. Extract start, intermediate and end waypoints
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import NamedTuple

from config.settings import config
from scripts.domain.exceptions import NormalizationError
from scripts.domain.models import (
    Coordinate,
    Difficulty,
    MarkingColor,
    MarkingShape,
    RawRoute,
    Trail,
    TrailMarking,
    Waypoint,
    WaypointKind,
)
from scripts.processors.fragment_assembler import FragmentAssembler

# Walking pace model: 3 km/h plus 30 minutes per 300 m of climb
BASE_PACE_KMH = 3.0
CLIMB_MINUTES_PER_STEP = 30.0
CLIMB_STEP_METERS = 300.0

DEFAULT_MARKING_SYMBOL = "none:none"


# =================
# GEOMETRY METRICS
# =================


def haversine_km(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two coordinates on a spherical earth."""
    lat1 = math.radians(a.lat)
    lat2 = math.radians(b.lat)
    delta_lat = math.radians(b.lat - a.lat)
    delta_lon = math.radians(b.lon - a.lon)

    h = (
        math.sin(delta_lat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(delta_lon / 2) ** 2
    )
    return config.EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def _elevation_or_zero(coord: Coordinate) -> float:
    return coord.elevation if coord.elevation is not None else 0.0


@dataclass(frozen=True)
class RouteMetrics:
    distance_km: float = 0.0
    elevation_gain: int = 0
    elevation_loss: int = 0
    max_elevation: int = 0
    max_slope: float = 0.0
    avg_slope: float = 0.0


def compute_metrics(coords: Sequence[Coordinate]) -> RouteMetrics:
    """
    Compute route metrics in a single pass over consecutive coordinate pairs.

    Unknown elevations count as 0 m when taking elevation deltas. Slopes are
    percentages; segments of zero horizontal length are ignored for the
    maximum slope.

    Args:
        coords: The stitched polyline

    Returns:
        RouteMetrics: Aggregated metrics (all zero for fewer than two points)
    """
    known = [c.elevation for c in coords if c.elevation is not None]
    max_elevation = int(max(known)) if known else 0

    if len(coords) < 2:
        return RouteMetrics(max_elevation=max_elevation)

    distance_km = 0.0
    gain = 0.0
    loss = 0.0
    max_slope = 0.0

    for current, following in zip(coords, coords[1:]):
        segment_km = haversine_km(current, following)
        delta = _elevation_or_zero(following) - _elevation_or_zero(current)

        distance_km += segment_km
        if delta > 0:
            gain += delta
        elif delta < 0:
            loss -= delta

        segment_m = segment_km * 1000
        if segment_m > 0:
            max_slope = max(max_slope, abs(delta) / segment_m * 100)

    elevation_gain = int(gain)
    distance_m = distance_km * 1000
    avg_slope = elevation_gain / distance_m * 100 if distance_m > 0 else 0.0

    return RouteMetrics(
        distance_km=distance_km,
        elevation_gain=elevation_gain,
        elevation_loss=int(loss),
        max_elevation=max_elevation,
        max_slope=max_slope,
        avg_slope=avg_slope,
    )


def estimate_duration(distance_km: float, elevation_gain: float) -> int:
    """Walking time in whole minutes: base pace plus a climbing penalty."""
    if not distance_km:
        return 0

    base_minutes = distance_km / BASE_PACE_KMH * 60
    climb_minutes = 0.0
    if elevation_gain and elevation_gain > 0:
        climb_minutes = elevation_gain / CLIMB_STEP_METERS * CLIMB_MINUTES_PER_STEP
    return int(base_minutes + climb_minutes)


# ===========
# DIFFICULTY
# ===========


def infer_difficulty(elevation_gain: float | None, max_slope: float | None) -> Difficulty:
    """
    Infer difficulty from metrics when the route carries no explicit hint.

    Max slope takes priority: elevation gain is only consulted when no slope
    threshold is exceeded. Missing metrics yield MEDIUM.
    """
    if elevation_gain is None or max_slope is None:
        return Difficulty.MEDIUM

    if max_slope > Difficulty.SCRAMBLING.max_slope_threshold:
        return Difficulty.SCRAMBLING
    if max_slope > Difficulty.ALPINE.max_slope_threshold:
        return Difficulty.ALPINE
    if max_slope > Difficulty.HARD.max_slope_threshold:
        return Difficulty.HARD

    if elevation_gain > Difficulty.ALPINE.max_elevation_gain_threshold:
        return Difficulty.ALPINE
    if elevation_gain > Difficulty.HARD.max_elevation_gain_threshold:
        return Difficulty.HARD
    if elevation_gain > Difficulty.MEDIUM.max_elevation_gain_threshold:
        return Difficulty.MEDIUM
    return Difficulty.EASY


# ========
# MARKING
# ========

_MARKING_COLORS = {
    "blue": MarkingColor.BLUE,
    "red": MarkingColor.RED,
    "yellow": MarkingColor.YELLOW,
    "green": MarkingColor.GREEN,
    "white": MarkingColor.WHITE,
    "orange": MarkingColor.ORANGE,
    "black": MarkingColor.BLACK,
    "purple": MarkingColor.PURPLE,
    "violet": MarkingColor.PURPLE,
}

_MARKING_SHAPES = {
    "stripe": MarkingShape.STRIPE,
    "bar": MarkingShape.STRIPE,
    "triangle": MarkingShape.TRIANGLE,
    "pyramid": MarkingShape.TRIANGLE,
    "cross": MarkingShape.CROSS,
    "plus": MarkingShape.CROSS,
    "x": MarkingShape.CROSS,
    "dot": MarkingShape.DOT,
    "circle": MarkingShape.DOT,
    "point": MarkingShape.DOT,
    "rectangle": MarkingShape.RECTANGLE,
    "square": MarkingShape.RECTANGLE,
    "box": MarkingShape.RECTANGLE,
    "none": MarkingShape.NONE,
    "blank": MarkingShape.NONE,
}


def _parse_marking_shape(token: str) -> MarkingShape:
    if token in _MARKING_SHAPES:
        return _MARKING_SHAPES[token]
    if token.startswith("arch"):
        return MarkingShape.ARCH
    return MarkingShape.NONE


def parse_marking(symbol: str | None) -> TrailMarking:
    """
    Parse an OSMC symbol of the form ``background:foreground[:extra...]``.

    Never raises: a missing symbol yields the ``none:none`` marking and a
    malformed one keeps its text with the default colour and no shape.
    """
    if symbol is None or not symbol.strip():
        return TrailMarking(
            symbol=DEFAULT_MARKING_SYMBOL,
            color=MarkingColor.WHITE,
            shape=MarkingShape.NONE,
        )

    parts = symbol.split(":")
    if len(parts) < 2:
        return TrailMarking(symbol=symbol, color=MarkingColor.WHITE, shape=MarkingShape.NONE)

    background = parts[0].strip().lower()
    foreground = parts[1].strip().lower()
    return TrailMarking(
        symbol=symbol,
        color=_MARKING_COLORS.get(background, MarkingColor.WHITE),
        shape=_parse_marking_shape(foreground),
    )


# ==================
# TERRAIN & HAZARDS
# ==================


class HazardRule(NamedTuple):
    """Adds ``hazards`` to any trail whose name contains ``keyword``."""

    keyword: str
    hazards: frozenset[str]

    def matches(self, name: str | None) -> bool:
        return bool(name) and self.keyword.lower() in name.lower()


def build_hazard_rules(table: Mapping[str, Iterable[str]]) -> list[HazardRule]:
    """Build hazard rules from a ``{keyword: [hazard, ...]}`` mapping."""
    return [HazardRule(keyword, frozenset(hazards)) for keyword, hazards in table.items()]


def classify_terrain(metrics: RouteMetrics) -> set[str]:
    """Derive terrain tags from elevation and slope thresholds."""
    terrain = set()
    if metrics.max_elevation > 2000:
        terrain.add("alpine_meadow")
    if metrics.max_slope > 30:
        terrain.add("scramble")
    if metrics.max_slope > 40:
        terrain.add("rock")
    if metrics.max_elevation < 1500:
        terrain.add("forest")
    if metrics.max_elevation > 2200:
        terrain.add("exposed_ridge")
    return terrain


def identify_hazards(
    name: str | None,
    difficulty: Difficulty,
    metrics: RouteMetrics,
    rules: Iterable[HazardRule] = (),
) -> set[str]:
    """Derive hazard tags from difficulty, slope, altitude and regional rules."""
    hazards = set()
    if difficulty.at_least(Difficulty.HARD):
        hazards.add("exposure")
    if metrics.max_slope > 25:
        hazards.add("steep_terrain")
    if metrics.max_elevation > 2300:
        hazards.add("high_altitude")
    if difficulty.at_least(Difficulty.ALPINE):
        hazards.add("weather_dependent")

    for rule in rules:
        if rule.matches(name):
            hazards.update(rule.hazards)
    return hazards


# ==========
# WAYPOINTS
# ==========


def _waypoint(
    order: int, coord: Coordinate, label: str, kind: WaypointKind
) -> Waypoint:
    return Waypoint(
        sequence_order=order,
        latitude=coord.lat,
        longitude=coord.lon,
        elevation=int(coord.elevation) if coord.elevation is not None else None,
        label=label,
        kind=kind,
    )


def extract_waypoints(
    coords: Sequence[Coordinate],
    name: str,
    max_intermediate: int | None = None,
) -> list[Waypoint]:
    """
    Build START, evenly spaced JUNCTION and END waypoints.

    Args:
        coords: The stitched polyline
        name: Normalized trail name, used in the start/end labels
        max_intermediate: Target number of intermediate points.
                          Defaults to config.MAX_INTERMEDIATE_WAYPOINTS

    Returns:
        list[Waypoint]: Waypoints with sequence orders 0..n-1
    """
    if not coords:
        return []

    max_intermediate = max_intermediate or config.MAX_INTERMEDIATE_WAYPOINTS
    waypoints = [_waypoint(0, coords[0], f"Start: {name}", WaypointKind.START)]

    order = 1
    step = max(1, len(coords) // max_intermediate)
    for i in range(step, len(coords) - 1, step):
        waypoints.append(
            _waypoint(order, coords[i], f"Waypoint {order}", WaypointKind.JUNCTION)
        )
        order += 1

    waypoints.append(_waypoint(order, coords[-1], f"End: {name}", WaypointKind.END))
    return waypoints


def normalize_name(name: str | None) -> str:
    if name is None or not name.strip():
        return config.UNNAMED_TRAIL_NAME
    return name.strip()


# ===========
# NORMALIZER
# ===========


class RouteNormalizer:
    """
    Convert raw route relations into Trail domain objects.

    The normalizer is stateless apart from its configuration and can be
    shared between concurrent pipeline runs.
    """

    def __init__(
        self,
        assembler: FragmentAssembler | None = None,
        hazard_rules: Iterable[HazardRule] | None = None,
        source_label: str | None = None,
        logger: logging.Logger | None = None,
    ):
        """
        Args:
            assembler (FragmentAssembler, optional): Stitcher for member ways
            hazard_rules (Iterable[HazardRule], optional): Regional name rules.
                Defaults to rules built from config.REGION_HAZARD_RULES
            source_label (str, optional): Source recorded on every trail.
                Defaults to config.TRAIL_SOURCE_LABEL
            logger (logging.Logger, optional): Defaults to the module logger
        """
        self.assembler = assembler or FragmentAssembler()
        self.hazard_rules = list(
            hazard_rules
            if hazard_rules is not None
            else build_hazard_rules(config.REGION_HAZARD_RULES)
        )
        self.source_label = source_label or config.TRAIL_SOURCE_LABEL
        self.logger = logger or logging.getLogger(__name__)

    def resolve_difficulty(self, route: RawRoute, metrics: RouteMetrics) -> Difficulty:
        if route.difficulty_hint is not None:
            return Difficulty.from_hint(route.difficulty_hint)
        return infer_difficulty(metrics.elevation_gain, metrics.max_slope)

    def normalize(self, route: RawRoute) -> Trail:
        """
        Normalize a raw route into a Trail.

        Args:
            route (RawRoute): Route relation with resolved member ways

        Returns:
            Trail: Unsaved trail (no internal id yet)

        Raises:
            NormalizationError: If no member way yields any coordinates
        """
        coords = self.assembler.assemble(route.fragment_ids, route.fragments)
        if not coords:
            raise NormalizationError(
                f"Route {route.external_id} has no resolvable geometry "
                f"({len(route.fragment_ids)} member ways, {len(route.fragments)} resolved)"
            )

        name = normalize_name(route.name)
        metrics = compute_metrics(coords)
        difficulty = self.resolve_difficulty(route, metrics)

        trail = Trail(
            external_id=route.external_id,
            name=name,
            description=route.description,
            ref=route.ref,
            distance_km=metrics.distance_km,
            elevation_gain=metrics.elevation_gain,
            elevation_loss=metrics.elevation_loss,
            duration_minutes=estimate_duration(metrics.distance_km, metrics.elevation_gain),
            max_slope=metrics.max_slope,
            avg_slope=metrics.avg_slope,
            max_elevation=metrics.max_elevation,
            terrain=classify_terrain(metrics),
            difficulty=difficulty,
            hazards=identify_hazards(name, difficulty, metrics, self.hazard_rules),
            marking=parse_marking(route.marking_symbol),
            waypoints=extract_waypoints(coords, name),
            geometry=coords,
            source=self.source_label,
        )

        self.logger.debug(
            f"Normalized route {route.external_id} '{name}': {metrics.distance_km:.2f} km, "
            f"+{metrics.elevation_gain} m, {difficulty.value}"
        )
        return trail
