"""
Unit tests for the trail ingestion orchestrator CLI.

The Overpass client is patched out, so every run uses the in-memory store
and no network or database access is needed.
"""

from unittest.mock import patch

import pytest

from scripts.domain.exceptions import UpstreamUnavailable
from scripts.orchestrator import build_parser, main


class TestArgumentParsing:
    """Tests for command-line parsing."""

    def test_bbox_with_shared_options(self):
        """Test that shared options are accepted after the subcommand."""
        args = build_parser().parse_args(
            ["bbox", "45.2", "25.4", "45.5", "25.7", "--write-db", "--log-level", "DEBUG"]
        )

        assert args.command == "bbox"
        assert (args.south, args.west, args.north, args.east) == (45.2, 25.4, 45.5, 25.7)
        assert args.write_db is True
        assert args.log_level == "DEBUG"

    def test_nearby_default_radius(self):
        """Test the default search radius."""
        args = build_parser().parse_args(["nearby", "45.35", "25.54"])

        assert args.radius_km == 10.0
        assert args.write_db is False

    def test_command_is_required(self):
        """Test that running without a subcommand is an error."""
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestMain:
    """Tests for end-to-end CLI runs against the in-memory store."""

    @patch("scripts.orchestrator.OverpassClient")
    def test_successful_region_run(self, mock_client_cls, route_factory, fragment_factory):
        """Test that a successful run exits with 0."""
        mock_client_cls.return_value.query_region.return_value = [
            route_factory(
                1001,
                [fragment_factory(11, (25.50, 45.40, 1500.0), (25.51, 45.41, 1600.0))],
                name="Bucegi Ridge Trail",
            )
        ]

        assert main(["region", "bucegi"]) == 0
        mock_client_cls.return_value.query_region.assert_called_once_with("bucegi")

    @patch("scripts.orchestrator.OverpassClient")
    def test_upstream_failure_exits_with_1(self, mock_client_cls):
        """Test that a failed fetch produces a non-zero exit code."""
        mock_client_cls.return_value.query_by_bounding_box.side_effect = UpstreamUnavailable(
            "down"
        )

        assert main(["bbox", "45.2", "25.4", "45.5", "25.7"]) == 1

    @patch("scripts.orchestrator.OverpassClient")
    def test_unknown_region_exits_with_1(self, mock_client_cls):
        """Test that an unknown region is rejected without querying."""
        assert main(["region", "atlantis"]) == 1
        mock_client_cls.return_value.query_region.assert_not_called()

    @patch("scripts.orchestrator.OverpassClient")
    def test_missing_relation_exits_with_1(self, mock_client_cls):
        """Test that a relation missing upstream produces a non-zero exit code."""
        mock_client_cls.return_value.query_by_id.return_value = None

        assert main(["relation", "404"]) == 1
