"""
Trail ingestion pipeline.

This module orchestrates one ingestion run end to end:

1. Fetch raw routes from the geodata client
2. Normalize each route into a Trail
3. Deduplicate by external id (last occurrence wins)
4. Validate each trail
5. Upsert each trail into the store (look up, then merge or insert)

Only a failed fetch aborts a batch run. Normalization, validation and
persistence failures are recorded on the run report and the remaining
routes are still processed. Single-route ingestion (``ingest_by_id``)
propagates every error to the caller instead.

The pipeline holds no per-run state, so one instance can serve concurrent
runs (for example overlapping API requests).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from scripts.collectors.overpass_client import OverpassClient
from scripts.database.trail_store import InMemoryTrailStore, TrailStore
from scripts.domain.exceptions import (
    PersistenceError,
    RouteNotFoundError,
    ValidationError,
)
from scripts.domain.models import IngestionRun, RawRoute, Trail
from scripts.processors.route_normalizer import RouteNormalizer


def validate_trail(trail: Trail) -> None:
    """
    Check the integrity rules every stored trail must satisfy.

    Raises:
        ValidationError: Describing every rule the trail breaks
    """
    problems = []
    if not trail.name or not trail.name.strip():
        problems.append("name is blank")
    if not trail.distance_km or trail.distance_km <= 0:
        problems.append(f"distance must be positive (got {trail.distance_km})")
    if not trail.geometry:
        problems.append("geometry is empty")
    if trail.difficulty is None:
        problems.append("difficulty is missing")

    if problems:
        raise ValidationError(
            f"Trail {trail.external_id} ('{trail.name}') is invalid: {'; '.join(problems)}"
        )


def deduplicate(trails: Iterable[Trail]) -> list[Trail]:
    """
    Keep one trail per external id.

    The last occurrence wins but keeps the position of the first one. Trails
    without an external id cannot collide and are all kept.
    """
    unique: dict[object, Trail] = {}
    for index, trail in enumerate(trails):
        key = trail.external_id if trail.external_id is not None else ("local", index)
        unique[key] = trail
    return list(unique.values())


class IngestionPipeline:
    """Fetch, normalize, deduplicate, validate and persist hiking trails."""

    def __init__(
        self,
        client: OverpassClient,
        normalizer: RouteNormalizer | None = None,
        store: TrailStore | None = None,
        logger: logging.Logger | None = None,
    ):
        """
        Initialize the pipeline.

        Args:
            client (OverpassClient): Source of raw routes
            normalizer (RouteNormalizer, optional): Defaults to a normalizer
                                                    built from configuration
            store (TrailStore, optional): Defaults to an in-memory store
            logger (logging.Logger, optional): Defaults to the module logger
        """
        self.client = client
        self.normalizer = normalizer or RouteNormalizer()
        self.store = store if store is not None else InMemoryTrailStore()
        self.logger = logger or logging.getLogger(__name__)

    # ===========
    # BATCH RUNS
    # ===========

    def run(self, fetch: Callable[[], Iterable[RawRoute]], label: str = "") -> IngestionRun:
        """
        Execute one ingestion run.

        Args:
            fetch: Zero-argument callable returning the raw routes to ingest
            label: Human-readable description of the run, used in logs

        Returns:
            IngestionRun: Statistics for this run. ``success`` is False only
                          when the fetch step failed.
        """
        run = IngestionRun(label=label)
        self.logger.info(f"Starting ingestion run: {label or 'unlabelled'}")

        try:
            raw_routes = list(fetch())
        except Exception as e:
            run.success = False
            run.error_message = f"{type(e).__name__}: {e}"
            run.finish()
            self.logger.error(f"Ingestion run '{label}' aborted during fetch: {e}")
            return run

        run.fetched = len(raw_routes)

        trails = self._normalize_all(raw_routes, run)
        run.normalized = len(trails)

        unique = deduplicate(trails)
        run.deduplicated = len(unique)
        if len(unique) < len(trails):
            self.logger.info(f"Collapsed {len(trails) - len(unique)} duplicate routes")

        valid = self._validate_all(unique, run)
        run.validated = len(valid)

        for trail in valid:
            try:
                _, created = self.upsert(trail)
            except PersistenceError as e:
                self._record(run, "persist", trail.external_id, e)
                continue
            if created:
                run.created += 1
            else:
                run.updated += 1

        run.success = True
        run.finish()
        self.logger.info(f"Ingestion run '{label}' complete: {run.summary()}")
        return run

    def _record(
        self, run: IngestionRun, stage: str, external_id: int | None, error: BaseException
    ) -> None:
        run.record_failure(stage, external_id, error)
        self.logger.warning(
            f"{stage.capitalize()} failed for route {external_id}: {type(error).__name__}: {error}"
        )

    def _normalize_all(self, raw_routes: list[RawRoute], run: IngestionRun) -> list[Trail]:
        trails = []
        for raw in raw_routes:
            try:
                trails.append(self.normalizer.normalize(raw))
            except Exception as e:
                self._record(run, "normalize", raw.external_id, e)
        return trails

    def _validate_all(self, trails: list[Trail], run: IngestionRun) -> list[Trail]:
        valid = []
        for trail in trails:
            try:
                validate_trail(trail)
            except ValidationError as e:
                self._record(run, "validate", trail.external_id, e)
                continue
            valid.append(trail)
        return valid

    def upsert(self, trail: Trail) -> tuple[Trail, bool]:
        """
        Insert a new trail or merge it into the stored one with the same external id.

        Args:
            trail (Trail): Normalized, validated trail

        Returns:
            tuple[Trail, bool]: The stored trail and whether it was newly created

        Raises:
            PersistenceError: If the store fails to look up or save the trail
        """
        try:
            existing = None
            if trail.external_id is not None:
                existing = self.store.find_by_external_id(trail.external_id)

            if existing is None:
                saved = self.store.save(trail)
                self.logger.debug(f"Created trail {saved.id} for route {trail.external_id}")
                return saved, True

            existing.merge_from(trail)
            saved = self.store.save(existing)
            self.logger.debug(f"Updated trail {saved.id} for route {trail.external_id}")
            return saved, False
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(
                f"Failed to persist trail {trail.external_id}: {type(e).__name__}: {e}"
            ) from e

    # ===============
    # TRIGGERS
    # ===============

    def ingest_bounding_box(
        self, south: float, west: float, north: float, east: float
    ) -> IngestionRun:
        return self.run(
            lambda: self.client.query_by_bounding_box(south, west, north, east),
            label=f"bbox({south},{west},{north},{east})",
        )

    def ingest_nearby(
        self, latitude: float, longitude: float, radius_km: float
    ) -> IngestionRun:
        return self.run(
            lambda: self.client.query_nearby(latitude, longitude, radius_km),
            label=f"nearby({latitude},{longitude},{radius_km}km)",
        )

    def ingest_region(self, region: str) -> IngestionRun:
        return self.run(lambda: self.client.query_region(region), label=f"region({region})")

    def ingest_by_id(self, external_id: int) -> Trail:
        """
        Ingest a single route relation.

        Unlike batch runs, every failure propagates to the caller.

        Args:
            external_id (int): Upstream relation id

        Returns:
            Trail: The stored trail

        Raises:
            UpstreamUnavailable: If the route could not be fetched
            RouteNotFoundError: If the upstream service has no such route
            NormalizationError: If the route has no usable geometry
            ValidationError: If the trail breaks an integrity rule
            PersistenceError: If the store fails
        """
        raw = self.client.query_by_id(external_id)
        if raw is None:
            raise RouteNotFoundError(f"Route {external_id} not found upstream")

        trail = self.normalizer.normalize(raw)
        validate_trail(trail)
        saved, created = self.upsert(trail)
        self.logger.info(
            f"{'Created' if created else 'Updated'} trail '{saved.name}' from route {external_id}"
        )
        return saved

