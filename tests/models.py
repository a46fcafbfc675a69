from collections.abc import Callable
from datetime import UTC, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError
from pytest_assume.plugin import assume

from planner.models.notification import NotificationModel
from planner.models.reminder import (
    ChannelEnum,
    InvalidTransitionError,
    RecurrenceEnum,
    ReminderCreateModel,
    ReminderModel,
    ReminderTypeEnum,
    ReminderUpdateModel,
    StatusEnum,
    parse_channels,
)


@pytest.mark.parametrize(
    "task_id, vendor_id",
    [
        pytest.param(None, None, id="neither"),
        pytest.param("", "  ", id="neither_blank"),
        pytest.param("task", "vendor", id="both"),
    ],
)
def test_subject_required(task_id: str | None, vendor_id: str | None) -> None:
    """
    A reminder is about exactly one task or vendor.
    """
    fields = {
        "notification_channels": [ChannelEnum.BROWSER],
        "remind_at": datetime(2025, 1, 1, tzinfo=UTC),
        "reminder_type": ReminderTypeEnum.CUSTOM,
        "task_id": task_id,
        "title": "Book the venue",
        "vendor_id": vendor_id,
    }
    with pytest.raises(ValidationError):
        ReminderCreateModel.model_validate(fields)
    with pytest.raises(ValidationError):
        ReminderModel.model_validate(fields)


def test_create_requires_channel() -> None:
    with pytest.raises(ValidationError):
        ReminderCreateModel(
            notification_channels=[],
            remind_at=datetime(2025, 1, 1, tzinfo=UTC),
            reminder_type=ReminderTypeEnum.CUSTOM,
            task_id="task",
            title="Book the venue",
        )


@pytest.mark.parametrize(
    "value, expected",
    [
        pytest.param(["email", "browser"], ["email", "browser"], id="list"),
        pytest.param('["Email", " browser ", "email"]', ["email", "browser"], id="json"),
        pytest.param([ChannelEnum.EMAIL], ["email"], id="enum"),
        pytest.param("not json", [], id="malformed"),
        pytest.param('{"email": true}', [], id="object"),
        pytest.param(["email", 42], [], id="bad_item"),
        pytest.param(None, [], id="null"),
        pytest.param("", [], id="empty"),
    ],
)
def test_parse_channels(value, expected: list[str]) -> None:
    assert parse_channels(value) == expected


def test_persisted_quirks(make_reminder: Callable[..., ReminderModel]) -> None:
    """
    Older records are read without failing.
    """
    reminder = make_reminder(
        notification_channels="[broken",
        recurrence=None,
        remind_at=datetime(2025, 1, 1, 12),
    )
    assume(reminder.notification_channels == [])
    assume(reminder.recurrence == RecurrenceEnum.NONE)
    # Naive times are UTC
    assume(reminder.remind_at == datetime(2025, 1, 1, 12, tzinfo=UTC))

    reminder = make_reminder(
        recurrence="",
        remind_at=datetime(2025, 1, 1, 14, tzinfo=timezone(timedelta(hours=2))),
    )
    assume(reminder.recurrence == RecurrenceEnum.NONE)
    assume(reminder.remind_at == datetime(2025, 1, 1, 12, tzinfo=UTC))
    assume(reminder.remind_at.tzinfo == UTC)


@pytest.mark.parametrize(
    "status, patch",
    [
        pytest.param(
            StatusEnum.PENDING,
            ReminderUpdateModel(status=StatusEnum.DISMISSED),
            id="pending_dismissed",
        ),
        pytest.param(
            StatusEnum.PENDING,
            ReminderUpdateModel(
                remind_at=datetime(2025, 2, 1, tzinfo=UTC), status=StatusEnum.SNOOZED
            ),
            id="pending_snoozed",
        ),
        pytest.param(
            StatusEnum.SNOOZED,
            ReminderUpdateModel(status=StatusEnum.PENDING),
            id="snoozed_pending",
        ),
        pytest.param(
            StatusEnum.SNOOZED,
            ReminderUpdateModel(status=StatusEnum.DISMISSED),
            id="snoozed_dismissed",
        ),
        pytest.param(
            StatusEnum.SENT,
            ReminderUpdateModel(
                remind_at=datetime(2025, 2, 1, tzinfo=UTC), status=StatusEnum.PENDING
            ),
            id="sent_rearmed",
        ),
    ],
)
def test_transition_allowed(
    make_reminder: Callable[..., ReminderModel],
    patch: ReminderUpdateModel,
    status: StatusEnum,
) -> None:
    reminder = make_reminder(status=status)
    updated = reminder.apply(patch)
    assume(updated.status == patch.status)
    assume(updated.id == reminder.id)
    assume(updated.created_at == reminder.created_at)
    assume(updated.updated_at >= reminder.updated_at)


@pytest.mark.parametrize(
    "status, patch",
    [
        pytest.param(
            StatusEnum.PENDING,
            ReminderUpdateModel(status=StatusEnum.SENT),
            id="pending_sent",
        ),
        pytest.param(
            StatusEnum.PENDING,
            ReminderUpdateModel(status=StatusEnum.SNOOZED),
            id="snoozed_without_time",
        ),
        pytest.param(
            StatusEnum.DISMISSED,
            ReminderUpdateModel(status=StatusEnum.PENDING),
            id="dismissed_pending",
        ),
        pytest.param(
            StatusEnum.SENT,
            ReminderUpdateModel(status=StatusEnum.PENDING),
            id="sent_without_time",
        ),
        pytest.param(
            StatusEnum.SENT,
            ReminderUpdateModel(status=StatusEnum.DISMISSED),
            id="sent_dismissed",
        ),
    ],
)
def test_transition_refused(
    make_reminder: Callable[..., ReminderModel],
    patch: ReminderUpdateModel,
    status: StatusEnum,
) -> None:
    reminder = make_reminder(status=status)
    with pytest.raises(InvalidTransitionError):
        reminder.apply(patch)


def test_update_keeps_unset_fields(make_reminder: Callable[..., ReminderModel]) -> None:
    reminder = make_reminder(message="Call the florist")
    updated = reminder.apply(ReminderUpdateModel(title="Florist"))
    assume(updated.title == "Florist")
    assume(updated.message == "Call the florist")
    assume(updated.task_id == reminder.task_id)


def test_update_moves_subject(make_reminder: Callable[..., ReminderModel]) -> None:
    reminder = make_reminder()
    updated = reminder.apply(
        ReminderUpdateModel(task_id=None, vendor_id="vendor")
    )
    assume(updated.task_id is None)
    assume(updated.vendor_id == "vendor")

    # Setting both is refused
    with pytest.raises(ValidationError):
        reminder.apply(ReminderUpdateModel(vendor_id="vendor"))


def test_notification_body(make_reminder: Callable[..., ReminderModel]) -> None:
    reminder = make_reminder(title="Pay the caterer")
    notification = NotificationModel.from_reminder(reminder, subject="Task: Catering")
    assume(notification.body == "Pay the caterer")
    assume(notification.subject == "Task: Catering")

    reminder = make_reminder(message="Deposit of 500 USD")
    assume(NotificationModel.from_reminder(reminder).body == "Deposit of 500 USD")
