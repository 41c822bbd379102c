"""
Models for the polling scheduler.
"""

from enum import Enum

from pydantic import BaseModel, Field


class AlignmentPolicy(str, Enum):
    """How cycles are placed in time."""
    FREE_RUNNING = "free_running"
    WALL_CLOCK = "wall_clock"


class SchedulerConfig(BaseModel):
    """Configuration for the scheduler system."""
    # Scheduling
    interval_minutes: int = Field(default=5, ge=1, le=1440, description="Minutes between cycles")
    alignment: AlignmentPolicy = Field(default=AlignmentPolicy.WALL_CLOCK)
    settle_seconds: float = Field(default=0.0, ge=0, le=300, description="Delay after each boundary for upstream publication lag")
    run_on_startup: bool = Field(default=False, description="Also run one cycle at start in wall-clock mode")
    timezone: str = Field(default="UTC", description="Timezone for wall-clock boundaries")

    # Job limits
    misfire_grace_seconds: int = Field(default=60, ge=1)

    @property
    def interval_seconds(self) -> int:
        return self.interval_minutes * 60
