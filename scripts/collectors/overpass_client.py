"""
Overpass API client for hiking route relations.

This module queries OpenStreetMap's Overpass API for hiking route relations
and their member ways, and turns the generic element list of the response into
``RawRoute`` records ready for normalization.

Key Features:
- Bounding-box, nearby (radius) and single-relation queries
- Named region presets for bulk ingestion (see ``config.INGEST_REGIONS``)
- A process-wide rate limiter shared by every client instance
- Retry with exponential backoff on transport and server errors
- Immediate failure on explicit upstream error remarks
- Per-element schema validation with Pydantic
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

import requests
from pydantic import ValidationError

from config.settings import config
from scripts.collectors.overpass_schemas import OverpassElement, OverpassResponse
from scripts.domain.exceptions import UpstreamUnavailable
from scripts.domain.models import PathFragment, RawRoute


class RateLimiter:
    """
    Enforce a minimum interval between upstream requests.

    The time of the last request is the only shared mutable state of the
    ingestion subsystem; it is read and updated under a lock so that
    concurrent callers are serialized instead of racing past the interval.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            min_interval (float): Minimum seconds between two acquisitions
            clock (Callable): Monotonic time source, injectable for tests
            sleep (Callable): Blocking sleep function, injectable for tests
        """
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_request: float | None = None

    def acquire(self) -> float:
        """
        Block until the minimum interval has elapsed, then claim the slot.

        Returns:
            float: Seconds spent waiting
        """
        with self._lock:
            waited = 0.0
            if self._last_request is not None:
                elapsed = self._clock() - self._last_request
                if elapsed < self.min_interval:
                    waited = self.min_interval - elapsed
                    self._sleep(waited)
            self._last_request = self._clock()
            return waited


# Process-wide limiter, created on first use
_shared_rate_limiter: RateLimiter | None = None
_shared_rate_limiter_lock = threading.Lock()


def get_shared_rate_limiter() -> RateLimiter:
    """
    Get or create the rate limiter shared by all clients in this process.

    Returns:
        RateLimiter: Limiter using config.OVERPASS_REQUEST_DELAY_SECONDS
    """
    global _shared_rate_limiter

    with _shared_rate_limiter_lock:
        if _shared_rate_limiter is None:
            _shared_rate_limiter = RateLimiter(config.OVERPASS_REQUEST_DELAY_SECONDS)
        return _shared_rate_limiter


class _RetryableError(Exception):
    """Internal marker for failures worth another attempt."""


class OverpassClient:
    """
    Query client for hiking route relations on the Overpass API.

    Every public query goes through ``_execute``, which applies the shared
    rate limiter, the retry policy and response parsing.
    """

    def __init__(
        self,
        api_url: str | None = None,
        rate_limiter: RateLimiter | None = None,
        max_retries: int | None = None,
        base_delay: float | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ):
        """
        Initialize the client.

        Args:
            api_url (str, optional): Interpreter endpoint. Defaults to config.OVERPASS_API_URL
            rate_limiter (RateLimiter, optional): Defaults to the process-wide limiter
            max_retries (int, optional): Total attempts per query. Defaults to config.OVERPASS_MAX_RETRIES
            base_delay (float, optional): First backoff delay in seconds, doubled per attempt.
                                          Defaults to config.OVERPASS_REQUEST_DELAY_SECONDS
            session (requests.Session, optional): HTTP session to reuse
            sleep (Callable): Sleep used for backoff, injectable for tests
            logger (logging.Logger, optional): Defaults to the module logger
        """
        self.api_url = api_url or config.OVERPASS_API_URL
        self.rate_limiter = rate_limiter or get_shared_rate_limiter()
        self.max_retries = max_retries or config.OVERPASS_MAX_RETRIES
        self.base_delay = (
            base_delay if base_delay is not None else config.OVERPASS_REQUEST_DELAY_SECONDS
        )
        self._sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": config.get_user_agent()})

    # ==============
    # PUBLIC QUERIES
    # ==============

    def query_by_bounding_box(
        self, south: float, west: float, north: float, east: float
    ) -> list[RawRoute]:
        """
        Query hiking route relations intersecting a bounding box.

        Args:
            south (float): Minimum latitude
            west (float): Minimum longitude
            north (float): Maximum latitude
            east (float): Maximum longitude

        Returns:
            list[RawRoute]: Routes found in the area
        """
        self.logger.info(
            f"Querying hiking routes in bbox south={south}, west={west}, north={north}, east={east}"
        )
        return self._execute(self.build_bbox_query(south, west, north, east))

    def query_by_id(self, external_id: int) -> RawRoute | None:
        """
        Query a single route relation by its OSM id.

        Returns:
            RawRoute | None: The route, or None if the relation does not exist
        """
        self.logger.info(f"Querying route relation {external_id}")
        routes = self._execute(self.build_relation_query(external_id))
        for route in routes:
            if route.external_id == external_id:
                return route
        return None

    def query_nearby(
        self, latitude: float, longitude: float, radius_km: float
    ) -> list[RawRoute]:
        """
        Query routes around a point.

        The radius is converted to a square bounding box using a fixed
        kilometres-per-degree approximation on both axes.
        """
        radius_deg = radius_km / config.KM_PER_DEGREE
        return self.query_by_bounding_box(
            latitude - radius_deg,
            longitude - radius_deg,
            latitude + radius_deg,
            longitude + radius_deg,
        )

    def query_region(self, region: str) -> list[RawRoute]:
        """
        Query routes within a named region preset.

        Raises:
            KeyError: If the region is not configured
        """
        key = region.strip().lower()
        if key not in config.INGEST_REGIONS:
            raise KeyError(
                f"Unknown region '{region}'. Known regions: {sorted(config.INGEST_REGIONS)}"
            )
        south, west, north, east = config.INGEST_REGIONS[key]
        return self.query_by_bounding_box(south, west, north, east)

    # ================
    # QUERY LANGUAGE
    # ================

    def _route_selectors(self) -> str:
        return "".join(
            f"relation[type=route][route={kind}];" for kind in config.OVERPASS_ROUTE_KINDS
        )

    def build_bbox_query(
        self, south: float, west: float, north: float, east: float
    ) -> str:
        """Build an Overpass QL query for route relations and their member ways."""
        return (
            f"[out:json][timeout:{config.OVERPASS_QUERY_TIMEOUT}]"
            f"[bbox:{south},{west},{north},{east}];"
            f"({self._route_selectors()});"
            "(._;way(r););"
            "out geom;"
        )

    def build_relation_query(self, external_id: int) -> str:
        """Build an Overpass QL query for a single relation and its member ways."""
        return (
            f"[out:json][timeout:{config.OVERPASS_QUERY_TIMEOUT}];"
            f"relation({int(external_id)});"
            "(._;way(r););"
            "out geom;"
        )

    # ==================
    # TRANSPORT & RETRY
    # ==================

    def _execute(self, query: str) -> list[RawRoute]:
        """
        Send a query with rate limiting and retry, then parse the response.

        Raises:
            UpstreamUnavailable: When attempts are exhausted, on a non-retryable
                                 HTTP error, or on an upstream error remark
        """
        last_error: BaseException | None = None

        for attempt in range(self.max_retries):
            if attempt > 0:
                delay = self.base_delay * (2 ** (attempt - 1))
                self.logger.info(
                    f"Retry attempt {attempt}/{self.max_retries - 1} after {delay}s delay"
                )
                self._sleep(delay)

            self.rate_limiter.acquire()
            try:
                payload = self._send(query)
            except _RetryableError as e:
                last_error = e.__cause__ or e
                self.logger.warning(
                    f"Overpass request failed (attempt {attempt + 1}/{self.max_retries}): {last_error}"
                )
                continue

            return self.parse_response(payload)

        self.logger.error(
            f"Overpass API unavailable after {self.max_retries} attempts: {last_error}"
        )
        raise UpstreamUnavailable(
            f"Failed to query Overpass API after {self.max_retries} attempts",
            cause=last_error,
        ) from last_error

    def _send(self, query: str) -> dict:
        """
        POST the query and decode the JSON body.

        Raises:
            _RetryableError: For timeouts, connection errors, 429/5xx and bad JSON
            UpstreamUnavailable: For other 4xx client errors
        """
        try:
            response = self.session.post(
                self.api_url, data={"data": query}, timeout=config.REQUEST_TIMEOUT
            )
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status is not None and status < 500 and status != 429:
                self.logger.error(f"Client error {status} from Overpass API: {e!s}")
                raise UpstreamUnavailable(
                    f"Overpass API rejected the query with status {status}", cause=e
                ) from e
            raise _RetryableError() from e
        except requests.exceptions.RequestException as e:
            raise _RetryableError() from e

        try:
            payload = response.json()
        except ValueError as e:
            raise _RetryableError() from e

        if not isinstance(payload, dict):
            raise _RetryableError() from ValueError(
                f"Unexpected Overpass payload type {type(payload).__name__}"
            )
        return payload

    # =========
    # PARSING
    # =========

    def parse_response(self, payload: dict) -> list[RawRoute]:
        """
        Convert an Overpass JSON document into RawRoute records.

        Ways become path fragments; relations reference them by member id.
        Relations without tags are dropped.

        Raises:
            UpstreamUnavailable: If the document carries an error remark
        """
        try:
            response = OverpassResponse(**payload)
        except ValidationError as e:
            raise UpstreamUnavailable("Malformed Overpass response", cause=e) from e

        if response.has_error:
            self.logger.error(f"Overpass API error remark: {response.remark}")
            raise UpstreamUnavailable(f"Overpass API error: {response.remark}")

        elements: list[OverpassElement] = []
        for raw in response.elements:
            try:
                elements.append(OverpassElement(**raw))
            except ValidationError as e:
                self.logger.warning(
                    f"Skipping invalid element {raw.get('type')}/{raw.get('id')}: {e}"
                )

        ways: dict[int, PathFragment] = {}
        for element in elements:
            if element.type == "way":
                ways[element.id] = PathFragment(
                    fragment_id=element.id, coordinates=element.coordinates()
                )

        routes = []
        for element in elements:
            if element.type != "relation":
                continue
            route = self._build_route(element, ways)
            if route is not None:
                routes.append(route)

        self.logger.info(
            f"Parsed {len(routes)} route relations and {len(ways)} ways from {len(elements)} elements"
        )
        return routes

    def _build_route(
        self, element: OverpassElement, ways: dict[int, PathFragment]
    ) -> RawRoute | None:
        if not element.tags:
            self.logger.debug(f"Dropping relation {element.id} without tags")
            return None

        fragment_ids = []
        fragments: dict[int, PathFragment] = {}
        for member in element.members:
            if member.type != "way":
                continue
            fragment_ids.append(member.ref)
            if member.ref in ways:
                fragments[member.ref] = ways[member.ref]
            elif member.geometry:
                fragments[member.ref] = PathFragment(
                    fragment_id=member.ref,
                    coordinates=tuple(n.to_coordinate() for n in member.geometry if n),
                )

        return RawRoute(
            external_id=element.id,
            name=element.tag("name"),
            route_kind=element.tag("route"),
            ref=element.tag("ref"),
            network=element.tag("network"),
            operator=element.tag("operator"),
            marking_symbol=element.tag("osmc:symbol"),
            difficulty_hint=element.tag("hiking:difficulty"),
            description=element.tag("description"),
            fragment_ids=tuple(fragment_ids),
            fragments=fragments,
        )
