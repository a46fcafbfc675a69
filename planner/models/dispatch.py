from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, computed_field


class ChannelOutcomeEnum(str, Enum):
    DELIVERED = "delivered"
    FAILED = "failed"
    SKIPPED = "skipped"


class DispatchStatusEnum(str, Enum):
    CONFLICT = "conflict"
    """Another worker already handled this occurrence, nothing was committed."""
    ERROR = "error"
    """Unexpected error, reminder left as-is."""
    RESCHEDULED = "rescheduled"
    """Delivered, recurring reminder advanced to its next occurrence."""
    RETRY = "retry"
    """No channel delivered, reminder left pending for the next scan."""
    SENT = "sent"
    """Delivered, non-recurring reminder is now sent."""


class ChannelOutcomeModel(BaseModel):
    channel: str
    outcome: ChannelOutcomeEnum
    reason: str | None = None


class DispatchResultModel(BaseModel):
    outcomes: list[ChannelOutcomeModel] = []
    remind_at: datetime | None = None
    reminder_id: UUID
    status: DispatchStatusEnum

    @computed_field
    @property
    def delivered(self) -> bool:
        return any(
            outcome.outcome == ChannelOutcomeEnum.DELIVERED
            for outcome in self.outcomes
        )


class ScanResultModel(BaseModel):
    results: list[DispatchResultModel] = []
    scanned_at: datetime
    woken: int = 0
