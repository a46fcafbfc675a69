import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


class ReminderTypeEnum(str, Enum):
    """
    Classification of a reminder.

    Has no effect on scheduling.
    """

    CUSTOM = "custom"
    DEADLINE = "deadline"
    FOLLOW_UP = "follow_up"
    MEETING = "meeting"
    PAYMENT_DUE = "payment_due"


class RecurrenceEnum(str, Enum):
    DAILY = "daily"
    """Fire every day at the same time."""
    MONTHLY = "monthly"
    """Fire every calendar month, day clamped to the month length."""
    NONE = "none"
    """Fire once."""
    WEEKLY = "weekly"
    """Fire every 7 days at the same time."""


class StatusEnum(str, Enum):
    DISMISSED = "dismissed"
    """Terminal, set by the user."""
    PENDING = "pending"
    """Waiting for its next `remind_at`."""
    SENT = "sent"
    """Terminal for non-recurring reminders, set by the dispatcher."""
    SNOOZED = "snoozed"
    """Rescheduled by the user, back to pending once `remind_at` is reached."""


class ChannelEnum(str, Enum):
    BROWSER = "browser"
    """Push to the browser client inbox."""
    EMAIL = "email"
    """Send an email to the contact address."""


class InvalidTransitionError(Exception):
    pass


# Manual transitions, the dispatcher owns everything leading to "sent"
_MANUAL_TRANSITIONS: dict[StatusEnum, set[StatusEnum]] = {
    StatusEnum.DISMISSED: set(),
    StatusEnum.PENDING: {StatusEnum.DISMISSED, StatusEnum.SNOOZED},
    StatusEnum.SENT: {StatusEnum.PENDING},
    StatusEnum.SNOOZED: {StatusEnum.DISMISSED, StatusEnum.PENDING},
}


def to_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to UTC.

    Naive datetimes are considered as already being in UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_channels(value: Any) -> list[str]:
    """
    Parse persisted notification channels.

    Accepts a list of strings or its JSON serialization. Anything else is considered as "no channel configured" and returns an empty list, it never raises.
    """
    if isinstance(value, str | bytes):
        try:
            value = json.loads(value)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return []
    if not isinstance(value, list | tuple | set):
        return []
    channels: list[str] = []
    for channel in value:
        if isinstance(channel, Enum):
            channel = channel.value
        if not isinstance(channel, str):
            return []  # One bad item makes the whole list unreliable
        channel = channel.strip().lower()
        if channel and channel not in channels:
            channels.append(channel)
    return channels


def _empty_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _validate_subject(task_id: str | None, vendor_id: str | None) -> None:
    if task_id is None and vendor_id is None:
        raise ValueError("Either task_id or vendor_id must be provided")
    if task_id is not None and vendor_id is not None:
        raise ValueError("Only one of task_id or vendor_id can be provided")


class ReminderModel(BaseModel):
    # Immutable fields
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC), frozen=True)
    id: UUID = Field(default_factory=uuid4, frozen=True)
    # Editable fields
    message: str | None = None
    notification_channels: list[str] = []
    recurrence: RecurrenceEnum = RecurrenceEnum.NONE
    remind_at: datetime
    reminder_type: ReminderTypeEnum
    status: StatusEnum = StatusEnum.PENDING
    task_id: str | None = None
    title: str = Field(min_length=1)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    vendor_id: str | None = None

    @field_validator("created_at", "remind_at", "updated_at")
    @classmethod
    def _validate_utc(cls, value: datetime) -> datetime:
        return to_utc(value)

    @field_validator("notification_channels", mode="before")
    @classmethod
    def _validate_notification_channels(cls, value: Any) -> list[str]:
        return parse_channels(value)

    @field_validator("recurrence", mode="before")
    @classmethod
    def _validate_recurrence(cls, value: Any) -> Any:
        # Older records store null or an empty string for non-recurring reminders
        return _empty_to_none(value) or RecurrenceEnum.NONE

    @field_validator("task_id", "vendor_id", mode="before")
    @classmethod
    def _validate_references(cls, value: Any) -> Any:
        return _empty_to_none(value)

    @model_validator(mode="after")
    def _validate_model(self) -> "ReminderModel":
        _validate_subject(self.task_id, self.vendor_id)
        return self

    def apply(self, patch: "ReminderUpdateModel") -> "ReminderModel":
        """
        Apply a user update and return the new reminder.

        Status changes are checked against the manual transitions. Snoozing, and re-arming a sent reminder, require a new `remind_at`.

        Raises `InvalidTransitionError` or a Pydantic `ValidationError`.
        """
        update = patch.model_dump(exclude_unset=True)
        status = update.get("status")
        if status and status != self.status:
            if status not in _MANUAL_TRANSITIONS[self.status]:
                raise InvalidTransitionError(
                    f"Cannot change status from {self.status.value} to {status.value}"
                )
            if status in (StatusEnum.SNOOZED, StatusEnum.PENDING) and (
                self.status in (StatusEnum.PENDING, StatusEnum.SENT)
                and not update.get("remind_at")
            ):
                raise InvalidTransitionError(
                    f"A new remind_at is required to move to {status.value}"
                )
        return ReminderModel.model_validate(
            {
                **self.model_dump(),
                **update,
                "updated_at": datetime.now(UTC),
            }
        )


class ReminderCreateModel(BaseModel):
    message: str | None = None
    notification_channels: list[ChannelEnum] = Field(min_length=1)
    recurrence: RecurrenceEnum = RecurrenceEnum.NONE
    remind_at: datetime
    reminder_type: ReminderTypeEnum
    task_id: str | None = None
    title: str = Field(min_length=1)
    vendor_id: str | None = None

    @field_validator("task_id", "vendor_id", mode="before")
    @classmethod
    def _validate_references(cls, value: Any) -> Any:
        return _empty_to_none(value)

    @model_validator(mode="after")
    def _validate_model(self) -> "ReminderCreateModel":
        _validate_subject(self.task_id, self.vendor_id)
        return self

    def to_reminder(self) -> ReminderModel:
        return ReminderModel.model_validate(self.model_dump())


class ReminderUpdateModel(BaseModel):
    """
    Partial update of a reminder.

    Only the fields explicitly set are applied. Set `task_id` or `vendor_id` to `null` to move the reminder to the other subject.
    """

    message: str | None = None
    notification_channels: list[ChannelEnum] | None = Field(default=None, min_length=1)
    recurrence: RecurrenceEnum | None = None
    remind_at: datetime | None = None
    reminder_type: ReminderTypeEnum | None = None
    status: StatusEnum | None = None
    task_id: str | None = None
    title: str | None = Field(default=None, min_length=1)
    vendor_id: str | None = None


class ReminderSnoozeModel(BaseModel):
    remind_at: datetime
