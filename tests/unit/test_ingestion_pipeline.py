"""
Unit tests for the IngestionPipeline.

Tests cover idempotent re-ingestion, deduplication, partial failure
handling, upstream failure without persistence, and single-route
ingestion error propagation.
"""

from unittest.mock import Mock

import pytest
import requests

from scripts.collectors.overpass_client import OverpassClient, RateLimiter
from scripts.database.trail_store import InMemoryTrailStore
from scripts.domain.exceptions import (
    NormalizationError,
    PersistenceError,
    RouteNotFoundError,
    UpstreamUnavailable,
    ValidationError,
)
from scripts.domain.models import Difficulty, Trail
from scripts.ingestion.pipeline import IngestionPipeline, deduplicate, validate_trail


@pytest.fixture
def mock_client():
    """Mock Overpass client."""
    return Mock(spec=OverpassClient)


@pytest.fixture
def store():
    return InMemoryTrailStore()


@pytest.fixture
def pipeline(mock_client, store):
    return IngestionPipeline(mock_client, store=store)


@pytest.fixture
def ridge_route(fragment_factory, route_factory):
    """Two connected fragments forming a valid route."""
    return route_factory(
        1001,
        [
            fragment_factory(11, (25.50, 45.40, 1500.0), (25.51, 45.41, 1600.0)),
            fragment_factory(12, (25.51, 45.41, 1600.0), (25.52, 45.42, 1700.0)),
        ],
        name="Bucegi Ridge Trail",
    )


class TestRun:
    """Tests for batch ingestion runs."""

    def test_created_then_updated(self, pipeline, mock_client, store, ridge_route):
        """Test that re-ingesting the same route updates instead of duplicating."""
        mock_client.query_by_bounding_box.return_value = [ridge_route]

        first = pipeline.ingest_bounding_box(45.2, 25.4, 45.5, 25.7)
        stored_first = store.find_by_external_id(1001)
        second = pipeline.ingest_bounding_box(45.2, 25.4, 45.5, 25.7)
        stored_second = store.find_by_external_id(1001)

        assert first.success and second.success
        assert (first.created, first.updated) == (1, 0)
        assert (second.created, second.updated) == (0, 1)
        assert len(store) == 1
        assert stored_second.id == stored_first.id
        assert stored_second.created_at == stored_first.created_at

    def test_update_replaces_upstream_fields(
        self, pipeline, mock_client, store, ridge_route, route_factory
    ):
        """Test that an update carries the new name and fragments."""
        mock_client.query_by_bounding_box.return_value = [ridge_route]
        pipeline.ingest_bounding_box(45.2, 25.4, 45.5, 25.7)

        renamed = route_factory(
            1001,
            list(ridge_route.fragments.values())[:1],
            name="Bucegi Ridge (short)",
        )
        mock_client.query_by_bounding_box.return_value = [renamed]
        pipeline.ingest_bounding_box(45.2, 25.4, 45.5, 25.7)

        stored = store.find_by_external_id(1001)
        assert stored.name == "Bucegi Ridge (short)"
        assert len(stored.geometry) == 2
        assert stored.waypoints[0].label == "Start: Bucegi Ridge (short)"

    def test_duplicates_collapse_to_last(
        self, pipeline, mock_client, store, ridge_route, route_factory
    ):
        """Test that two routes sharing an external id are deduplicated."""
        duplicate = route_factory(
            1001, list(ridge_route.fragments.values()), name="Later Name"
        )
        mock_client.query_by_bounding_box.return_value = [ridge_route, duplicate]

        run = pipeline.ingest_bounding_box(45.2, 25.4, 45.5, 25.7)

        assert run.fetched == 2
        assert run.normalized == 2
        assert run.deduplicated == 1
        assert run.created == 1
        assert store.find_by_external_id(1001).name == "Later Name"

    def test_upstream_failure_aborts_without_persistence(self, mock_client):
        """Test that a failed fetch marks the run unsuccessful and touches no store."""
        store = Mock()
        mock_client.query_region.side_effect = UpstreamUnavailable("Overpass API is down")
        pipeline = IngestionPipeline(mock_client, store=store)

        run = pipeline.ingest_region("bucegi")

        assert run.success is False
        assert "Overpass API is down" in run.error_message
        assert run.fetched == 0
        assert store.method_calls == []
        assert run.finished_at is not None

    def test_three_transport_failures_with_real_client(self, mock_session, fake_clock):
        """Test the retry bound end to end: three failures, then no persistence."""
        mock_session.post.side_effect = requests.exceptions.ConnectionError("refused")
        client = OverpassClient(
            rate_limiter=RateLimiter(0.0, clock=fake_clock, sleep=fake_clock.sleep),
            max_retries=3,
            base_delay=1.0,
            session=mock_session,
            sleep=fake_clock.sleep,
        )
        store = Mock()
        pipeline = IngestionPipeline(client, store=store)

        run = pipeline.ingest_bounding_box(45.2, 25.4, 45.5, 25.7)

        assert run.success is False
        assert "UpstreamUnavailable" in run.error_message
        assert mock_session.post.call_count == 3
        assert store.method_calls == []

    def test_partial_failures_are_absorbed(
        self, pipeline, mock_client, store, ridge_route, route_factory, fragment_factory
    ):
        """Test that bad routes are recorded while good ones are stored."""
        no_geometry = route_factory(2001, [], name="Ghost Route")
        single_point = route_factory(
            2002, [fragment_factory(21, (25.5, 45.4, 1000.0))], name="Dot"
        )
        mock_client.query_by_bounding_box.return_value = [no_geometry, ridge_route, single_point]

        run = pipeline.ingest_bounding_box(45.2, 25.4, 45.5, 25.7)

        assert run.success is True
        assert run.fetched == 3
        assert run.normalized == 2
        assert run.validated == 1
        assert run.created == 1
        assert run.failed == 2
        assert [(e.stage, e.external_id) for e in run.errors] == [
            ("normalize", 2001),
            ("validate", 2002),
        ]
        assert run.errors[0].error_type == "NormalizationError"
        assert len(store) == 1

    def test_persistence_failure_is_recorded(self, mock_client, ridge_route):
        """Test that a store failure is wrapped and counted."""
        store = Mock()
        store.find_by_external_id.return_value = None
        store.save.side_effect = RuntimeError("disk full")
        mock_client.query_by_bounding_box.return_value = [ridge_route]
        pipeline = IngestionPipeline(mock_client, store=store)

        run = pipeline.ingest_bounding_box(45.2, 25.4, 45.5, 25.7)

        assert run.success is True
        assert run.failed == 1
        assert run.errors[0].stage == "persist"
        assert run.errors[0].error_type == "PersistenceError"
        assert "disk full" in run.errors[0].message

    def test_failures_are_logged(self, mock_client, route_factory):
        """Test that every absorbed failure is logged with its external id."""
        logger = Mock()
        mock_client.query_by_bounding_box.return_value = [route_factory(3001, [])]
        pipeline = IngestionPipeline(mock_client, store=InMemoryTrailStore(), logger=logger)

        pipeline.ingest_bounding_box(45.2, 25.4, 45.5, 25.7)

        warnings = [call.args[0] for call in logger.warning.call_args_list]
        assert any("3001" in message for message in warnings)

    def test_nearby_and_run_labels(self, pipeline, mock_client):
        """Test that the nearby trigger delegates to the client."""
        mock_client.query_nearby.return_value = []

        run = pipeline.ingest_nearby(45.35, 25.54, 5.0)

        mock_client.query_nearby.assert_called_once_with(45.35, 25.54, 5.0)
        assert run.success is True
        assert run.label.startswith("nearby(")


class TestIngestById:
    """Tests for single-route ingestion."""

    def test_ingest_by_id_stores_trail(self, pipeline, mock_client, store, ridge_route):
        """Test that a single route is normalized and stored."""
        mock_client.query_by_id.return_value = ridge_route

        trail = pipeline.ingest_by_id(1001)

        assert trail.id is not None
        assert trail.difficulty is not None
        assert store.find_by_id(trail.id).name == "Bucegi Ridge Trail"

    def test_ingest_by_id_twice_keeps_identity(self, pipeline, mock_client, ridge_route):
        """Test that single-route ingestion is also an upsert."""
        mock_client.query_by_id.return_value = ridge_route

        first = pipeline.ingest_by_id(1001)
        second = pipeline.ingest_by_id(1001)

        assert first.id == second.id

    def test_route_not_found(self, pipeline, mock_client):
        """Test that a missing relation raises RouteNotFoundError."""
        mock_client.query_by_id.return_value = None

        with pytest.raises(RouteNotFoundError):
            pipeline.ingest_by_id(404)

    def test_upstream_failure_propagates(self, pipeline, mock_client):
        """Test that upstream errors are not absorbed for single routes."""
        mock_client.query_by_id.side_effect = UpstreamUnavailable("down")

        with pytest.raises(UpstreamUnavailable):
            pipeline.ingest_by_id(1001)

    def test_normalization_failure_propagates(self, pipeline, mock_client, route_factory):
        """Test that a route without geometry raises NormalizationError."""
        mock_client.query_by_id.return_value = route_factory(1001, [])

        with pytest.raises(NormalizationError):
            pipeline.ingest_by_id(1001)

    def test_validation_failure_propagates(
        self, pipeline, mock_client, route_factory, fragment_factory
    ):
        """Test that an invalid trail raises ValidationError."""
        mock_client.query_by_id.return_value = route_factory(
            1001, [fragment_factory(1, (25.0, 45.0))]
        )

        with pytest.raises(ValidationError):
            pipeline.ingest_by_id(1001)

    def test_persistence_failure_propagates(self, mock_client, ridge_route):
        """Test that store errors surface as PersistenceError."""
        store = Mock()
        store.find_by_external_id.side_effect = RuntimeError("connection lost")
        mock_client.query_by_id.return_value = ridge_route

        with pytest.raises(PersistenceError):
            IngestionPipeline(mock_client, store=store).ingest_by_id(1001)


class TestHelpers:
    """Tests for validation and deduplication helpers."""

    def _trail(self, **overrides):
        values = {
            "external_id": 1,
            "name": "Trail",
            "distance_km": 1.0,
            "geometry": [(25.0, 45.0, None), (25.01, 45.0, None)],
            "difficulty": Difficulty.EASY,
        }
        values.update(overrides)
        return Trail(**values)

    def test_valid_trail_passes(self):
        """Test that a complete trail validates."""
        validate_trail(self._trail())

    @pytest.mark.parametrize(
        "overrides",
        [
            {"name": "  "},
            {"distance_km": 0.0},
            {"geometry": []},
            {"difficulty": None},
        ],
    )
    def test_invalid_trails(self, overrides):
        """Test each integrity rule."""
        with pytest.raises(ValidationError):
            validate_trail(self._trail(**overrides))

    def test_deduplicate_keeps_first_position(self):
        """Test that the last duplicate wins in the first occurrence's position."""
        trails = [
            self._trail(external_id=1, name="a"),
            self._trail(external_id=2, name="b"),
            self._trail(external_id=1, name="c"),
        ]

        assert [t.name for t in deduplicate(trails)] == ["c", "b"]

    def test_deduplicate_keeps_trails_without_external_id(self):
        """Test that trails without an external id never collide."""
        trails = [self._trail(external_id=None), self._trail(external_id=None)]

        assert len(deduplicate(trails)) == 2
