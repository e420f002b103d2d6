"""
Database Management Scripts

This module contains utilities for trail persistence:
- The TrailStore interface and an in-memory implementation
- A PostgreSQL-backed store built on SQLAlchemy Core
"""
