"""
Exception hierarchy for the change-detection pipeline.

Every cycle catches these, logs them and leaves the scheduler running.
"""

from typing import Optional


class StockNotifierError(Exception):
    """Base exception for all notifier errors."""


class FetchError(StockNotifierError):
    """Upstream read failed (network, timeout, non-2xx, invalid JSON)."""

    def __init__(
        self,
        message: str,
        source: str = "",
        status_code: Optional[int] = None
    ):
        self.source = source
        self.status_code = status_code
        super().__init__(message)


class NormalizationError(StockNotifierError):
    """Raw payload is missing its required shape."""


class SendError(StockNotifierError):
    """Notification transport failed to deliver a message."""

    def __init__(
        self,
        message: str,
        transport: str = "",
        status_code: Optional[int] = None
    ):
        self.transport = transport
        self.status_code = status_code
        super().__init__(message)
