"""
Change-detection and notification pipeline.

This package contains:
- Snapshot normalization of raw upstream payloads
- Snapshot comparison and delta computation
- Notification rendering
- The dispatcher that owns the last known snapshot
"""

__version__ = "1.0.0"
