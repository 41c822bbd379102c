"""
API models and schemas for the FastAPI application.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from pipeline.models import CycleOutcome


class DeltaResponse(BaseModel):
    """One item change as exposed over HTTP."""
    category: str = Field(..., description="Stock category")
    item_name: str = Field(..., description="Item name")
    previous_quantity: int = Field(..., description="Quantity in the previous snapshot")
    current_quantity: int = Field(..., description="Quantity in the current snapshot")
    change: int = Field(..., description="Signed quantity change")


class CycleResponse(BaseModel):
    """Response model for an on-demand cycle."""
    success: bool = Field(..., description="Whether the cycle read upstream successfully")
    cycle_id: str = Field(..., description="Cycle identifier")
    outcome: CycleOutcome = Field(..., description="Cycle outcome")
    message: str = Field(..., description="Rendered notification content")
    notified: bool = Field(..., description="Whether a notification was sent by this cycle")
    changes: List[DeltaResponse] = Field(default_factory=list, description="Changes since the last snapshot")
    send_error: Optional[str] = Field(None, description="Notification transport error, if any")


class SnapshotResponse(BaseModel):
    """Last known snapshot."""
    observed_at: str = Field(..., description="Capture timestamp")
    categories: Dict[str, List[Dict[str, Any]]] = Field(..., description="Items per category")
    weather: Optional[str] = Field(None, description="Active weather")
    temperature: Optional[str] = Field(None, description="Reported temperature")


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Additional error details")
    status_code: int = Field(..., description="HTTP status code")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
    has_snapshot: bool = Field(..., description="Whether a snapshot has been captured")
    scheduler: Optional[Dict[str, Any]] = Field(None, description="Scheduler status")
