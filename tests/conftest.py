import asyncio
import json
import random
import string
import tempfile
from collections.abc import Callable
from datetime import UTC, datetime
from os import environ
from uuid import uuid4

# Isolate the tests from any local config, before the package loads it
environ["CONFIG_JSON"] = json.dumps(
    {
        "channels": {
            "email": {
                "default_recipient": "couple@example.com",
                "mode": "console",
            },
        },
        "database": {
            "sqlite": {
                "path": tempfile.mkdtemp(prefix="planner-tests-"),
            },
        },
        "scheduler": {
            "enabled": False,
        },
    }
)

import pytest  # noqa: E402
from structlog.contextvars import get_contextvars  # noqa: E402

from planner.helpers.config_models.database import SqliteModel  # noqa: E402
from planner.helpers.config_models.scheduler import SchedulerModel  # noqa: E402
from planner.helpers.dispatcher import ReminderDispatcher  # noqa: E402
from planner.helpers.logging import logger  # noqa: E402
from planner.models.notification import ContactModel, NotificationModel  # noqa: E402
from planner.models.readiness import ReadinessEnum  # noqa: E402
from planner.models.reminder import (  # noqa: E402
    RecurrenceEnum,
    ReminderModel,
    ReminderTypeEnum,
)
from planner.persistence.ichannel import IChannel  # noqa: E402
from planner.persistence.sqlite import SqliteStore  # noqa: E402


class ChannelMock(IChannel):
    """
    Channel recording the notifications it accepts, and the channel name bound to the logging context of each call.

    Raises `error` on each send when set, after waiting `delay` seconds.
    """

    bound_channels: list[str | None]
    contacts: list[ContactModel]
    delay: float
    error: Exception | None
    sent: list[NotificationModel]

    def __init__(
        self,
        delay: float = 0,
        error: Exception | None = None,
    ) -> None:
        self.bound_channels = []
        self.contacts = []
        self.delay = delay
        self.error = error
        self.sent = []

    async def readiness(self) -> ReadinessEnum:
        return ReadinessEnum.OK

    async def send(
        self,
        notification: NotificationModel,
        contact: ContactModel,
    ) -> None:
        self.bound_channels.append(get_contextvars().get("channel.name"))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        logger.debug("Mock delivered reminder %s", notification.reminder_id)
        self.contacts.append(contact)
        self.sent.append(notification)


@pytest.fixture
def random_text() -> str:
    text = "".join(random.choice(string.ascii_letters) for _ in range(32))
    return text


@pytest.fixture
def store(tmp_path) -> SqliteStore:
    return SqliteStore(SqliteModel(path=str(tmp_path)))


@pytest.fixture
def make_reminder(random_text: str) -> Callable[..., ReminderModel]:
    """
    Build reminders about a random task, firing on the browser channel by default.
    """

    def _make(**kwargs) -> ReminderModel:
        fields = {
            "notification_channels": ["browser"],
            "recurrence": RecurrenceEnum.NONE,
            "remind_at": datetime(2025, 1, 1, 10, tzinfo=UTC),
            "reminder_type": ReminderTypeEnum.DEADLINE,
            "task_id": str(uuid4()),
            "title": random_text,
            **kwargs,
        }
        return ReminderModel.model_validate(fields)

    return _make


@pytest.fixture
def make_dispatcher(store: SqliteStore) -> Callable[..., ReminderDispatcher]:
    """
    Build dispatchers on the test store, with the given channels.
    """

    def _make(
        channels: dict[str, IChannel],
        claim_ttl_sec: float = 300,
        send_timeout_sec: float = 10,
    ) -> ReminderDispatcher:
        return ReminderDispatcher(
            channels=channels,
            config=SchedulerModel(
                claim_ttl_sec=claim_ttl_sec,
                interval_sec=0.05,
                send_timeout_sec=send_timeout_sec,
            ),
            default_contact=ContactModel(email="couple@example.com"),
            store=store,
        )

    return _make
