"""
Trail Ingestion Scripts Package

This package contains the ingestion subsystem, organized into logical
subdirectories:

- domain/: Domain models (routes, trails, markings, waypoints) and errors
- collectors/: Overpass API client and response schemas
- processors/: Fragment stitching and route normalization
- database/: Trail persistence (in-memory and PostgreSQL stores)
- ingestion/: The fetch, normalize, deduplicate, validate and persist pipeline
"""
