"""
Trail persistence for the ingestion pipeline.

This module defines the ``TrailStore`` interface the pipeline writes through,
together with two implementations:

- ``InMemoryTrailStore``: a thread-safe dictionary store used by tests and
  dry runs
- ``DatabaseTrailStore``: a PostgreSQL store built on SQLAlchemy Core

Key Features:
- Internal ids (UUID) and creation timestamps assigned on first save
- ``updated_at`` refreshed on every save
- Uniqueness of the upstream ``external_id`` enforced by every store
- Line geometry stored as WKT (``LINESTRING Z``) via Shapely
- SQLAlchemy errors surfaced as ``PersistenceError``

Example Usage:
    engine = get_postgres_engine()
    store = DatabaseTrailStore(engine, logger)
    store.ensure_table_exists()

    trail = store.save(trail)
    existing = store.find_by_external_id(trail.external_id)
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Protocol

from shapely import wkt
from shapely.geometry import LineString
from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Engine,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    select,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from config.settings import config
from scripts.domain.exceptions import PersistenceError
from scripts.domain.models import (
    Coordinate,
    Difficulty,
    Trail,
    TrailMarking,
    Waypoint,
)


def get_postgres_engine() -> Engine:
    """
    Create a SQLAlchemy engine for PostgreSQL using configuration.

    Returns:
        Engine: SQLAlchemy engine instance configured for PostgreSQL

    Raises:
        ValueError: If any required configuration is missing
    """
    config.validate_for_database_operations()
    return create_engine(config.get_database_url())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrailStore(Protocol):
    """Persistence interface consumed by the ingestion pipeline."""

    def find_by_external_id(self, external_id: int) -> Trail | None: ...

    def find_by_id(self, trail_id: uuid.UUID) -> Trail | None: ...

    def save(self, trail: Trail) -> Trail: ...

    def find_all(self) -> list[Trail]: ...

    def find_by_difficulty(self, difficulty: Difficulty) -> list[Trail]: ...

    def find_by_source(self, source: str) -> list[Trail]: ...


def _prepare_for_save(trail: Trail) -> Trail:
    """Copy the trail and stamp identity and timestamps."""
    stored = trail.model_copy(deep=True)
    now = _utcnow()
    if stored.id is None:
        stored.id = uuid.uuid4()
    if stored.created_at is None:
        stored.created_at = now
    stored.updated_at = now
    return stored


class InMemoryTrailStore:
    """Dictionary-backed trail store. Returned trails are copies."""

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger(__name__)
        self._trails: dict[uuid.UUID, Trail] = {}
        self._by_external_id: dict[int, uuid.UUID] = {}
        self._lock = threading.Lock()

    def find_by_external_id(self, external_id: int) -> Trail | None:
        with self._lock:
            trail_id = self._by_external_id.get(external_id)
            if trail_id is None:
                return None
            return copy.deepcopy(self._trails[trail_id])

    def find_by_id(self, trail_id: uuid.UUID) -> Trail | None:
        with self._lock:
            trail = self._trails.get(trail_id)
            return copy.deepcopy(trail) if trail else None

    def save(self, trail: Trail) -> Trail:
        """
        Insert or update a trail.

        Raises:
            PersistenceError: If another trail already owns the external id
        """
        with self._lock:
            stored = _prepare_for_save(trail)

            if stored.external_id is not None:
                owner = self._by_external_id.get(stored.external_id)
                if owner is not None and owner != stored.id:
                    raise PersistenceError(
                        f"Trail with external id {stored.external_id} already exists"
                    )

            previous = self._trails.get(stored.id)
            if previous is not None and previous.external_id != stored.external_id:
                self._by_external_id.pop(previous.external_id, None)

            self._trails[stored.id] = stored
            if stored.external_id is not None:
                self._by_external_id[stored.external_id] = stored.id
            return copy.deepcopy(stored)

    def find_all(self) -> list[Trail]:
        with self._lock:
            return [copy.deepcopy(t) for t in self._trails.values()]

    def find_by_difficulty(self, difficulty: Difficulty) -> list[Trail]:
        return [t for t in self.find_all() if t.difficulty == difficulty]

    def find_by_source(self, source: str) -> list[Trail]:
        return [t for t in self.find_all() if t.source == source]

    def __len__(self) -> int:
        with self._lock:
            return len(self._trails)


class DatabaseTrailStore:
    """
    PostgreSQL trail store using SQLAlchemy Core.

    Collections (terrain, hazards, waypoints, marking) are stored as JSON
    columns; the stitched polyline is stored as WKT text. Unknown vertex
    elevations are written as 0.
    """

    def __init__(
        self,
        engine: Engine,
        logger: logging.Logger | None = None,
        table_name: str | None = None,
    ):
        """
        Initialize the store.

        Args:
            engine (Engine): SQLAlchemy engine for database connections
            logger (logging.Logger, optional): Defaults to the module logger
            table_name (str, optional): Defaults to config.TRAILS_TABLE
        """
        self.engine = engine
        self.logger = logger or logging.getLogger(__name__)
        self.metadata = MetaData()
        self.table = Table(
            table_name or config.TRAILS_TABLE,
            self.metadata,
            Column("id", String(36), primary_key=True),
            Column("external_id", BigInteger, unique=True, nullable=True),
            Column("name", Text, nullable=False),
            Column("description", Text),
            Column("ref", String(100)),
            Column("distance_km", Float),
            Column("elevation_gain", Integer),
            Column("elevation_loss", Integer),
            Column("duration_minutes", Integer),
            Column("max_slope", Float),
            Column("avg_slope", Float),
            Column("max_elevation", Integer),
            Column("terrain", JSON),
            Column("difficulty", String(20)),
            Column("hazards", JSON),
            Column("marking", JSON),
            Column("waypoints", JSON),
            Column("source", String(50)),
            Column("created_at", DateTime(timezone=True)),
            Column("updated_at", DateTime(timezone=True)),
            Column("geometry", Text),  # WKT, last
        )

    # ==================
    # SCHEMA MANAGEMENT
    # ==================

    def ensure_table_exists(self) -> None:
        """Create the trails table if it does not exist."""
        try:
            self.metadata.create_all(self.engine, tables=[self.table])
            self.logger.info(f"Ensured table exists: {self.table.name}")
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to create table {self.table.name}: {e}")
            raise PersistenceError(f"Failed to create table {self.table.name}") from e

    def drop_table(self) -> None:
        try:
            self.metadata.drop_all(self.engine, tables=[self.table])
            self.logger.info(f"Dropped table: {self.table.name}")
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to drop table {self.table.name}") from e

    # ===================
    # ROW CONVERSION
    # ===================

    @staticmethod
    def geometry_to_wkt(geometry: list[Coordinate]) -> str | None:
        """Encode a polyline as ``LINESTRING Z`` WKT, or None below two points."""
        if len(geometry) < 2:
            return None
        line = LineString(
            [(c.lon, c.lat, c.elevation if c.elevation is not None else 0.0) for c in geometry]
        )
        return wkt.dumps(line)

    @staticmethod
    def geometry_from_wkt(value: str | None) -> list[Coordinate]:
        if not value:
            return []
        line = wkt.loads(value)
        return [
            Coordinate(xyz[0], xyz[1], xyz[2] if len(xyz) > 2 else None)
            for xyz in line.coords
        ]

    def _to_row(self, trail: Trail) -> dict:
        marking = None
        if trail.marking is not None:
            marking = {
                "symbol": trail.marking.symbol,
                "color": trail.marking.color.value,
                "shape": trail.marking.shape.value,
            }
        return {
            "id": str(trail.id),
            "external_id": trail.external_id,
            "name": trail.name,
            "description": trail.description,
            "ref": trail.ref,
            "distance_km": trail.distance_km,
            "elevation_gain": trail.elevation_gain,
            "elevation_loss": trail.elevation_loss,
            "duration_minutes": trail.duration_minutes,
            "max_slope": trail.max_slope,
            "avg_slope": trail.avg_slope,
            "max_elevation": trail.max_elevation,
            "terrain": sorted(trail.terrain),
            "difficulty": trail.difficulty.value if trail.difficulty else None,
            "hazards": sorted(trail.hazards),
            "marking": marking,
            "waypoints": [w.model_dump(mode="json") for w in trail.waypoints],
            "source": trail.source,
            "created_at": trail.created_at,
            "updated_at": trail.updated_at,
            "geometry": self.geometry_to_wkt(trail.geometry),
        }

    def _from_row(self, row) -> Trail:
        data = row._mapping
        return Trail(
            id=uuid.UUID(data["id"]),
            external_id=data["external_id"],
            name=data["name"],
            description=data["description"],
            ref=data["ref"],
            distance_km=data["distance_km"] or 0.0,
            elevation_gain=data["elevation_gain"] or 0,
            elevation_loss=data["elevation_loss"] or 0,
            duration_minutes=data["duration_minutes"] or 0,
            max_slope=data["max_slope"] or 0.0,
            avg_slope=data["avg_slope"] or 0.0,
            max_elevation=data["max_elevation"] or 0,
            terrain=set(data["terrain"] or []),
            difficulty=Difficulty(data["difficulty"]) if data["difficulty"] else None,
            hazards=set(data["hazards"] or []),
            marking=TrailMarking(**data["marking"]) if data["marking"] else None,
            waypoints=[Waypoint(**w) for w in data["waypoints"] or []],
            geometry=self.geometry_from_wkt(data["geometry"]),
            source=data["source"],
            created_at=data["created_at"],
            updated_at=data["updated_at"],
        )

    # =========
    # QUERIES
    # =========

    def _select(self, *criteria) -> list[Trail]:
        stmt = select(self.table).where(*criteria).order_by(self.table.c.name)
        try:
            with self.engine.connect() as conn:
                return [self._from_row(row) for row in conn.execute(stmt)]
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to query {self.table.name}: {e}")
            raise PersistenceError(f"Failed to query {self.table.name}") from e

    def find_by_external_id(self, external_id: int) -> Trail | None:
        trails = self._select(self.table.c.external_id == external_id)
        return trails[0] if trails else None

    def find_by_id(self, trail_id: uuid.UUID) -> Trail | None:
        trails = self._select(self.table.c.id == str(trail_id))
        return trails[0] if trails else None

    def find_all(self) -> list[Trail]:
        return self._select()

    def find_by_difficulty(self, difficulty: Difficulty) -> list[Trail]:
        return self._select(self.table.c.difficulty == Difficulty(difficulty).value)

    def find_by_source(self, source: str) -> list[Trail]:
        return self._select(self.table.c.source == source)

    # ========
    # WRITES
    # ========

    def save(self, trail: Trail) -> Trail:
        """
        Insert or update a trail in a single transaction.

        Args:
            trail (Trail): Trail to persist; a copy is stamped and returned

        Returns:
            Trail: The stored trail with id and timestamps set

        Raises:
            PersistenceError: On an external id conflict or any database error
        """
        stored = _prepare_for_save(trail)
        row = self._to_row(stored)

        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    self.table.update()
                    .where(self.table.c.id == row["id"])
                    .values(**{k: v for k, v in row.items() if k not in ("id", "created_at")})
                )
                if result.rowcount == 0:
                    conn.execute(self.table.insert().values(**row))
        except IntegrityError as e:
            self.logger.error(f"Integrity error saving trail {stored.external_id}: {e}")
            raise PersistenceError(
                f"Trail with external id {stored.external_id} already exists"
            ) from e
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to save trail {stored.external_id}: {e}")
            raise PersistenceError(f"Failed to save trail {stored.external_id}") from e

        return stored
