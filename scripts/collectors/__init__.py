"""
Data Collection Scripts

This module contains clients for external geodata sources:
- Overpass API for OpenStreetMap hiking route relations and member ways
"""
