"""
Pydantic models for canonical stock snapshots, deltas and cycle results.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Raw upstream responses keyed by source ("stock", "egg", "weather").
RawPayload = Dict[str, Any]

# Category declaration order drives diff output and rendering.
CATEGORIES = ("gear", "seeds", "eggs", "weather")


class StockItem(BaseModel):
    """One item line within a category."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Item name as published upstream")
    quantity: int = Field(..., description="Stock quantity")


class CanonicalSnapshot(BaseModel):
    """
    Normalized observation of upstream state.

    Snapshots are immutable; the dispatcher replaces the stored one whole.
    """
    model_config = ConfigDict(frozen=True)

    observed_at: datetime = Field(default_factory=datetime.utcnow, description="Capture time (volatile)")
    categories: Dict[str, List[StockItem]] = Field(default_factory=dict)

    # Display-only weather fields
    weather: Optional[str] = Field(default=None, description="Active weather condition")
    temperature: Optional[str] = Field(default=None, description="Reported temperature")

    def items(self, category: str) -> List[StockItem]:
        """Items of a category, empty when the category is absent."""
        return list(self.categories.get(category, []))

    def quantities(self, category: str) -> Dict[str, int]:
        """Item name to quantity mapping for a category."""
        return {item.name: item.quantity for item in self.categories.get(category, [])}

    def item_count(self) -> int:
        return sum(len(items) for items in self.categories.values())

    def to_display_dict(self) -> Dict[str, Any]:
        """JSON-friendly view used by the HTTP surface."""
        return {
            "observed_at": self.observed_at.isoformat(),
            "categories": {
                category: [{"name": item.name, "quantity": item.quantity} for item in self.items(category)]
                for category in CATEGORIES
            },
            "weather": self.weather,
            "temperature": self.temperature,
        }


class Delta(BaseModel):
    """One item's quantity change between two snapshots."""
    model_config = ConfigDict(frozen=True)

    category: str
    item_name: str
    previous_quantity: int = Field(default=0)
    current_quantity: int
    change: int = Field(..., description="current_quantity - previous_quantity, never zero")

    @property
    def signed_change(self) -> str:
        return f"+{self.change}" if self.change > 0 else str(self.change)


class CycleOutcome(str, Enum):
    """Outcome of a single fetch-normalize-compare-notify cycle."""
    INITIALIZED = "initialized"
    UNCHANGED = "unchanged"
    UPDATED = "updated"
    FAILED = "failed"


class CycleResult(BaseModel):
    """Result of one dispatcher cycle."""
    cycle_id: str = Field(..., description="Unique cycle identifier")
    trigger: str = Field(default="scheduled", description="What started the cycle")
    outcome: CycleOutcome
    started_at: datetime = Field(default_factory=datetime.utcnow)
    duration_seconds: float = Field(default=0.0)

    snapshot: Optional[CanonicalSnapshot] = Field(default=None, description="Snapshot read this cycle")
    deltas: List[Delta] = Field(default_factory=list)
    reason: Optional[str] = Field(default=None, description="Failure reason")

    # Notification bookkeeping
    notified: bool = Field(default=False)
    coalesced: bool = Field(default=False, description="Change deferred to a queued cycle")
    send_error: Optional[str] = Field(default=None)
    flushed_deltas: Optional[List[Delta]] = Field(
        default=None,
        description="Compounded changes of the burst this cycle closed, None when it flushed nothing"
    )

    @property
    def success(self) -> bool:
        return self.outcome != CycleOutcome.FAILED

    @property
    def reported_deltas(self) -> List[Delta]:
        """Changes matching the notification content for this cycle."""
        return self.flushed_deltas if self.flushed_deltas is not None else self.deltas
