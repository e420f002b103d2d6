"""Error taxonomy for trail ingestion.

Only ``UpstreamUnavailable`` raised while fetching is fatal to a batch run.
The other per-item errors are absorbed into the run's failure counter by
``IngestionPipeline.run`` and propagate unchanged from single-trail ingestion.
"""

from __future__ import annotations


class TrailIngestError(Exception):
    """Base class for all ingestion errors."""


class UpstreamUnavailable(TrailIngestError):
    """The geodata query service could not answer the request.

    Raised after retries are exhausted, or immediately when the upstream
    response carries an explicit error remark.
    """

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class RouteNotFoundError(TrailIngestError):
    """The upstream service has no route for the requested external id."""


class NormalizationError(TrailIngestError):
    """A raw route could not be converted into a Trail."""


class ValidationError(TrailIngestError):
    """A normalized trail failed integrity checks."""


class PersistenceError(TrailIngestError):
    """The trail store failed to look up or save a trail."""
