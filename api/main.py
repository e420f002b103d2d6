"""
Trail Ingest API

A FastAPI application that triggers hiking trail ingestion from OpenStreetMap
route relations and exposes the stored trails.

Ingestion endpoints run synchronously by default and return the run report.
Pass ``background=true`` to schedule the run and return immediately with
``202 Accepted``. Concurrent requests share one pipeline; the process-wide
rate limiter keeps upstream calls serialized.

Usage:
    Start the development server:
        $ uvicorn api.main:app --reload

    The API will be available at:
        - Interactive docs (Swagger UI): http://localhost:8000/docs
        - Alternative docs (ReDoc): http://localhost:8000/redoc
        - OpenAPI schema: http://localhost:8000/openapi.json
"""

import os
import sys
import threading

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Path, Query, Response
from sqlalchemy import text

# Add parent directory to path to import project modules
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from api.database import get_db_engine, get_trail_store
from api.models import (
    BoundingBoxRequest,
    IngestionAccepted,
    NearbyRequest,
    TrailsResponse,
    TrailSummary,
)
from config.settings import config
from scripts.collectors.overpass_client import OverpassClient
from scripts.database.trail_store import TrailStore
from scripts.domain.exceptions import (
    NormalizationError,
    PersistenceError,
    RouteNotFoundError,
    TrailIngestError,
    UpstreamUnavailable,
    ValidationError,
)
from scripts.domain.models import Difficulty, IngestionRun
from scripts.ingestion.pipeline import IngestionPipeline
from utils.logging import setup_api_logging, setup_ingestion_logging

logger = setup_api_logging()

# Create FastAPI app with metadata for OpenAPI documentation
app = FastAPI(
    title="Trail Ingest API",
    description="""
    API for ingesting hiking trails from OpenStreetMap route relations and
    browsing the stored, classified trails.
    """,
    version=config.APP_VERSION,
    contact={
        "name": "Trail Ingest Project",
        "url": config.USER_CONTACT,
    },
)

# HTTP status for each single-trail ingestion error
ERROR_STATUS_CODES = {
    RouteNotFoundError: 404,
    UpstreamUnavailable: 502,
    NormalizationError: 422,
    ValidationError: 422,
    PersistenceError: 500,
}

# Global pipeline instance (created once, reused)
_pipeline = None
_pipeline_lock = threading.Lock()


def get_pipeline() -> IngestionPipeline:
    """Get or create the ingestion pipeline backed by the database store."""
    global _pipeline

    with _pipeline_lock:
        if _pipeline is None:
            setup_ingestion_logging()
            _pipeline = IngestionPipeline(OverpassClient(), store=get_trail_store())
        return _pipeline


def get_store() -> TrailStore:
    return get_trail_store()


def _status_for(error: TrailIngestError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES.items():
        if isinstance(error, error_type):
            return status_code
    return 500


def _run_or_schedule(
    response: Response,
    background_tasks: BackgroundTasks,
    background: bool,
    label: str,
    ingest,
    *args,
):
    """Run an ingestion trigger now, or schedule it and answer 202."""
    if background:
        background_tasks.add_task(ingest, *args)
        response.status_code = 202
        logger.info(f"Scheduled background ingestion: {label}")
        return IngestionAccepted(label=label)

    run = ingest(*args)
    if not run.success:
        raise HTTPException(
            status_code=502,
            detail=f"Ingestion failed: {run.error_message}",
        )
    return run


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint returning API information and available endpoints.
    """
    return {
        "name": "Trail Ingest API",
        "version": config.APP_VERSION,
        "description": "Ingest and query hiking trails from OpenStreetMap",
        "documentation": {
            "swagger_ui": "/docs",
            "redoc": "/redoc",
            "openapi_json": "/openapi.json",
        },
        "endpoints": {
            "ingest_bbox": "/ingest/bbox",
            "ingest_nearby": "/ingest/nearby",
            "ingest_region": "/ingest/regions/{region}",
            "ingest_relation": "/ingest/relations/{external_id}",
            "trails": "/trails",
            "health_check": "/health",
        },
    }


@app.post(
    "/ingest/bbox",
    response_model=IngestionAccepted | IngestionRun,
    tags=["Ingestion"],
    summary="Ingest trails in a bounding box",
)
def ingest_bbox(
    bbox: BoundingBoxRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    background: bool = Query(
        default=False, description="Schedule the run and return 202 immediately"
    ),
    pipeline: IngestionPipeline = Depends(get_pipeline),
):
    """
    Ingest every hiking route relation intersecting the bounding box.

    **Example body:** `{"south": 45.20, "west": 25.40, "north": 45.50, "east": 25.70}`
    """
    return _run_or_schedule(
        response,
        background_tasks,
        background,
        f"bbox({bbox.south},{bbox.west},{bbox.north},{bbox.east})",
        pipeline.ingest_bounding_box,
        bbox.south,
        bbox.west,
        bbox.north,
        bbox.east,
    )


@app.post(
    "/ingest/nearby",
    response_model=IngestionAccepted | IngestionRun,
    tags=["Ingestion"],
    summary="Ingest trails around a point",
)
def ingest_nearby(
    request: NearbyRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    background: bool = Query(default=False),
    pipeline: IngestionPipeline = Depends(get_pipeline),
):
    """
    Ingest hiking routes within ``radius_km`` of a point (default 10 km).
    """
    return _run_or_schedule(
        response,
        background_tasks,
        background,
        f"nearby({request.latitude},{request.longitude},{request.radius_km}km)",
        pipeline.ingest_nearby,
        request.latitude,
        request.longitude,
        request.radius_km,
    )


@app.post(
    "/ingest/regions/{region}",
    response_model=IngestionAccepted | IngestionRun,
    tags=["Ingestion"],
    summary="Ingest a configured region",
)
def ingest_region(
    response: Response,
    background_tasks: BackgroundTasks,
    region: str = Path(..., description="Region preset name", examples=["bucegi"]),
    background: bool = Query(default=False),
    pipeline: IngestionPipeline = Depends(get_pipeline),
):
    """
    Ingest all hiking routes of a named region preset.
    """
    if region.strip().lower() not in config.INGEST_REGIONS:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown region '{region}'. Known regions: {sorted(config.INGEST_REGIONS)}",
        )
    return _run_or_schedule(
        response,
        background_tasks,
        background,
        f"region({region})",
        pipeline.ingest_region,
        region,
    )


@app.post(
    "/ingest/relations/{external_id}",
    response_model=TrailSummary,
    status_code=201,
    tags=["Ingestion"],
    summary="Ingest a single route relation",
)
def ingest_relation(
    external_id: int = Path(..., gt=0, description="OpenStreetMap relation id"),
    pipeline: IngestionPipeline = Depends(get_pipeline),
):
    """
    Fetch, normalize and store one route relation.

    Errors map to status codes: 404 if the relation does not exist upstream,
    502 if the Overpass API is unavailable, 422 if the route cannot be turned
    into a valid trail, 500 on storage failure.
    """
    try:
        trail = pipeline.ingest_by_id(external_id)
    except TrailIngestError as e:
        status_code = _status_for(e)
        logger.error(f"Ingestion of relation {external_id} failed ({status_code}): {e}")
        raise HTTPException(status_code=status_code, detail=str(e))

    return TrailSummary.from_trail(trail)


@app.get(
    "/trails",
    response_model=TrailsResponse,
    tags=["Trails"],
    summary="Get trails",
)
def get_trails(
    difficulty: Difficulty | None = Query(
        default=None, description="Filter by difficulty (e.g., 'HARD')"
    ),
    source: str | None = Query(
        default=None, description="Filter by source label (e.g., 'openstreetmap')"
    ),
    store: TrailStore = Depends(get_store),
):
    """
    Get stored trails with optional filters.

    **Example queries:**
    - All trails: `/trails`
    - Alpine trails: `/trails?difficulty=ALPINE`
    - OpenStreetMap trails: `/trails?source=openstreetmap`
    """
    try:
        if difficulty is not None:
            trails = store.find_by_difficulty(difficulty)
        elif source is not None:
            trails = store.find_by_source(source)
        else:
            trails = store.find_all()
    except PersistenceError as e:
        raise HTTPException(
            status_code=500,
            detail=f"Error retrieving trails: {str(e)}",
        )

    if difficulty is not None and source is not None:
        trails = [t for t in trails if t.source == source]

    return TrailsResponse(
        trail_count=len(trails),
        trails=[TrailSummary.from_trail(t) for t in trails],
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint to verify API and database connectivity.
    """
    try:
        engine = get_db_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        return {
            "status": "healthy",
            "database": "connected",
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "database": "disconnected",
            "error": str(e),
        }
