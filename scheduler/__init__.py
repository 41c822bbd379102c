"""
Scheduler package for periodic stock polling.

This package contains:
- Interval scheduling with free-running or wall-clock alignment
- The on-demand trigger sharing the scheduled dispatcher
"""

__version__ = "1.0.0"
