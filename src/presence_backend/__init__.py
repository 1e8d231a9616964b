"""
Presence Backend
================
Face-recognition kiosk attendance: enrollment kept in sync with a remote
face index, and one check-in / check-out record per person per day.
"""

__version__ = "1.0.0"
