"""
FastAPI application for the Garden Stock Notifier.

This module provides:
- Health and scheduler status
- On-demand stock updates for the local frontend
- Raw upstream proxies
- The Discord interactions endpoint for the /stock command
"""
