"""
Ingestion Scripts

This module contains the trail ingestion pipeline:
- Fetch route relations from the Overpass API
- Normalize, deduplicate and validate them into trails
- Upsert trails into a TrailStore and report run statistics
"""
