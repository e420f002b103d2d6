"""
Shared test fixtures and configuration for the Trail Ingest test suite.

This file contains pytest fixtures that can be used across all test modules.
Fixtures defined here are automatically available to all test files.
"""

import os
from unittest.mock import Mock

import pytest
from dotenv import load_dotenv

from scripts.domain.models import Coordinate, PathFragment, RawRoute

# Load test environment variables (if any)
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


class FakeClock:
    """Manually advanced monotonic clock whose sleep advances time."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock():
    """Provide a fake clock for rate limiter and backoff tests."""
    return FakeClock()


def make_fragment(fragment_id, *points):
    """Build a PathFragment from (lon, lat[, ele]) tuples."""
    return PathFragment(
        fragment_id=fragment_id,
        coordinates=tuple(Coordinate(*p) for p in points),
    )


def make_route(external_id, fragments, name="Test Trail", **tags):
    """Build a RawRoute whose fragment ids follow the given fragment order."""
    return RawRoute(
        external_id=external_id,
        name=name,
        route_kind="hiking",
        fragment_ids=tuple(f.fragment_id for f in fragments),
        fragments={f.fragment_id: f for f in fragments},
        **tags,
    )


@pytest.fixture
def fragment_factory():
    """Provide the PathFragment builder to test modules."""
    return make_fragment


@pytest.fixture
def route_factory():
    """Provide the RawRoute builder to test modules."""
    return make_route


@pytest.fixture
def round_trip_route():
    """
    Provide a short three-point climb in the Bucegi area.

    Distance is roughly 0.54 km with exactly 100 m of ascent and no
    difficulty hint or marking symbol.
    """
    fragment = make_fragment(
        501,
        (25.540, 45.348, 950.0),
        (25.542, 45.350, 1000.0),
        (25.544, 45.352, 1050.0),
    )
    return make_route(9001, [fragment], name="Round Trip Trail")


@pytest.fixture
def sample_overpass_payload():
    """
    Provide a realistic Overpass API ``out geom`` response.

    Contains one tagged route relation with two member ways (the second one
    drawn in the opposite direction), one member resolved only through
    inline geometry, a tagless relation that must be dropped, a recursed
    node and one malformed element.
    """
    return {
        "version": 0.6,
        "generator": "Overpass API 0.7.62",
        "elements": [
            {
                "type": "relation",
                "id": 1001,
                "tags": {
                    "type": "route",
                    "route": "hiking",
                    "name": "Bucegi Ridge Trail",
                    "ref": "03",
                    "network": "lwn",
                    "osmc:symbol": "red:white:red_stripe",
                    "hiking:difficulty": "difficult",
                },
                "members": [
                    {"type": "way", "ref": 11, "role": ""},
                    {"type": "way", "ref": 12, "role": ""},
                    {
                        "type": "way",
                        "ref": 13,
                        "role": "",
                        "geometry": [
                            {"lat": 45.402, "lon": 25.502},
                            {"lat": 45.403, "lon": 25.503},
                        ],
                    },
                    {"type": "node", "ref": 77, "role": "guidepost"},
                ],
            },
            {
                "type": "relation",
                "id": 1002,
                "members": [{"type": "way", "ref": 11, "role": ""}],
            },
            {
                "type": "way",
                "id": 11,
                "geometry": [
                    {"lat": 45.400, "lon": 25.500},
                    {"lat": 45.401, "lon": 25.501},
                ],
            },
            {
                "type": "way",
                "id": 12,
                "geometry": [
                    {"lat": 45.402, "lon": 25.502},
                    {"lat": 45.401, "lon": 25.501},
                ],
            },
            {"type": "node", "id": 77, "lat": 45.401, "lon": 25.501},
            {"type": "bogus", "id": 5},
        ],
    }


@pytest.fixture
def mock_http_response():
    """Factory for successful HTTP responses carrying a JSON payload."""

    def _make(payload):
        response = Mock()
        response.raise_for_status.return_value = None
        response.json.return_value = payload
        return response

    return _make


@pytest.fixture
def mock_session():
    """Provide a mock requests session with a real headers dictionary."""
    session = Mock()
    session.headers = {}
    return session
