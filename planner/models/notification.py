from datetime import UTC, datetime
from uuid import UUID

from pydantic import BaseModel, Field

from planner.models.reminder import ReminderModel, ReminderTypeEnum


class ContactModel(BaseModel):
    """
    Where to reach the user for a delivery attempt.
    """

    email: str | None = None


class NotificationModel(BaseModel):
    # Immutable fields
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC), frozen=True)
    # Editable fields
    body: str
    remind_at: datetime
    reminder_id: UUID
    reminder_type: ReminderTypeEnum
    subject: str | None = None
    title: str

    @classmethod
    def from_reminder(
        cls,
        reminder: ReminderModel,
        subject: str | None = None,
    ) -> "NotificationModel":
        """
        Build the notification shown to the user.

        The body falls back to the title when the reminder has no message. `subject` is the display label of the task or vendor, when it still exists.
        """
        return cls(
            body=reminder.message or reminder.title,
            remind_at=reminder.remind_at,
            reminder_id=reminder.id,
            reminder_type=reminder.reminder_type,
            subject=subject,
            title=reminder.title,
        )
