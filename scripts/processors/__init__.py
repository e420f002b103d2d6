"""
Data Processing Scripts

This module contains scripts for turning raw route data into trails:
- Stitching member ways into one polyline
- Computing metrics, difficulty, marking, terrain, hazards and waypoints
"""
