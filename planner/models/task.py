from datetime import UTC, datetime
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class PriorityEnum(str, Enum):
    HIGH = "high"
    LOW = "low"
    MEDIUM = "medium"
    URGENT = "urgent"


class TaskStatusEnum(str, Enum):
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    IN_PROGRESS = "in_progress"
    TODO = "todo"
    WAITING = "waiting"


class TimelinePhaseEnum(str, Enum):
    MONTHS_12_PLUS = "12+ months"
    MONTHS_9_12 = "9-12 months"
    MONTHS_6_9 = "6-9 months"
    MONTHS_3_6 = "3-6 months"
    MONTHS_1_3 = "1-3 months"
    MONTH_1 = "1 month"
    WEEK_1 = "1 week"
    DAY_OF = "day of"


class TaskModel(BaseModel):
    # Immutable fields
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC), frozen=True)
    id: UUID = Field(default_factory=uuid4, frozen=True)
    # Editable fields
    actual_cost: int | None = Field(default=None, ge=0)  # In cents
    category: str | None = None
    description: str | None = None
    due_date: datetime | None = None
    estimated_cost: int | None = Field(default=None, ge=0)  # In cents
    notes: str | None = None
    priority: PriorityEnum = PriorityEnum.MEDIUM
    status: TaskStatusEnum = TaskStatusEnum.TODO
    timeline_phase: TimelinePhaseEnum | None = None
    title: str = Field(min_length=1)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    vendor_id: str | None = None

    @property
    def label(self) -> str:
        return f"Task: {self.title}"
