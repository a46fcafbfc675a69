from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from http import HTTPStatus
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from pytest_assume.plugin import assume

from planner import main
from planner.helpers.config_models.channels import BrowserModel
from planner.helpers.dispatcher import ReminderDispatcher
from planner.persistence.browser import BrowserChannel
from planner.persistence.ichannel import IChannel
from planner.persistence.sqlite import SqliteStore
from tests.conftest import ChannelMock


@pytest.fixture
def channels() -> dict[str, IChannel]:
    return {
        "browser": BrowserChannel(BrowserModel()),
        "email": ChannelMock(),
    }


@pytest.fixture
def client(
    channels: dict[str, IChannel],
    make_dispatcher: Callable[..., ReminderDispatcher],
    monkeypatch: pytest.MonkeyPatch,
    store: SqliteStore,
) -> TestClient:
    """
    API client on the test store and channels, without the scheduler running.
    """
    monkeypatch.setattr(main, "_channels", channels)
    monkeypatch.setattr(main, "_db", store)
    monkeypatch.setattr(main, "_dispatcher", make_dispatcher(channels))
    return TestClient(main.api)


def _reminder_body(**kwargs) -> dict:
    return {
        "notification_channels": ["browser", "email"],
        "remind_at": "2025-01-01T10:00:00Z",
        "reminder_type": "payment_due",
        "task_id": str(uuid4()),
        "title": "Pay the photographer",
        **kwargs,
    }


def test_health(client: TestClient) -> None:
    assume(client.get("/health/liveness").status_code == HTTPStatus.OK)

    res = client.get("/health/readiness")
    assume(res.status_code == HTTPStatus.OK)
    assume(res.json()["status"] == "ok")
    assume(
        {check["id"] for check in res.json()["checks"]}
        == {"store", "channel.browser", "channel.email"}
    )


def test_reminder_crud(client: TestClient) -> None:
    res = client.post("/api/reminders", json=_reminder_body())
    assert res.status_code == HTTPStatus.CREATED
    reminder = res.json()
    assume(reminder["status"] == "pending")
    assume(reminder["recurrence"] == "none")

    # Read
    res = client.get(f"/api/reminders/{reminder['id']}")
    assume(res.status_code == HTTPStatus.OK)
    assume(res.json() == reminder)
    res = client.get("/api/reminders", params={"task_id": reminder["task_id"]})
    assume([item["id"] for item in res.json()] == [reminder["id"]])
    res = client.get("/api/reminders", params={"status": "sent"})
    assume(res.json() == [])

    # Update
    res = client.put(
        f"/api/reminders/{reminder['id']}",
        json={"message": "Second installment"},
    )
    assume(res.status_code == HTTPStatus.OK)
    assume(res.json()["message"] == "Second installment")
    assume(res.json()["title"] == reminder["title"])

    # Delete
    res = client.delete(f"/api/reminders/{reminder['id']}")
    assume(res.status_code == HTTPStatus.NO_CONTENT)
    res = client.get(f"/api/reminders/{reminder['id']}")
    assume(res.status_code == HTTPStatus.NOT_FOUND)
    assume(reminder["id"] in res.json()["error"]["message"])
    res = client.delete(f"/api/reminders/{reminder['id']}")
    assume(res.status_code == HTTPStatus.NOT_FOUND)


@pytest.mark.parametrize(
    "body",
    [
        pytest.param(_reminder_body(vendor_id=str(uuid4())), id="both_subjects"),
        pytest.param(_reminder_body(task_id=None), id="no_subject"),
        pytest.param(_reminder_body(notification_channels=[]), id="no_channel"),
        pytest.param(_reminder_body(notification_channels=["sms"]), id="bad_channel"),
        pytest.param(_reminder_body(title=""), id="empty_title"),
        pytest.param(_reminder_body(recurrence="yearly"), id="bad_recurrence"),
    ],
)
def test_reminder_invalid(body: dict, client: TestClient) -> None:
    res = client.post("/api/reminders", json=body)
    assume(res.status_code == HTTPStatus.UNPROCESSABLE_ENTITY)
    assume(res.json()["error"]["message"] == "Validation error")
    assume(res.json()["error"]["details"])


def test_reminder_transitions(client: TestClient) -> None:
    reminder = client.post("/api/reminders", json=_reminder_body()).json()
    url = f"/api/reminders/{reminder['id']}"

    # Snooze
    res = client.post(f"{url}/snooze", json={"remind_at": "2025-01-02T10:00:00Z"})
    assume(res.status_code == HTTPStatus.OK)
    assume(res.json()["status"] == "snoozed")
    assume(res.json()["remind_at"] == "2025-01-02T10:00:00Z")

    # Dispatcher owns the sent status
    res = client.put(url, json={"status": "sent"})
    assume(res.status_code == HTTPStatus.CONFLICT)

    # Dismiss, which is final
    res = client.post(f"{url}/dismiss")
    assume(res.status_code == HTTPStatus.OK)
    assume(res.json()["status"] == "dismissed")
    res = client.post(f"{url}/snooze", json={"remind_at": "2025-01-03T10:00:00Z"})
    assume(res.status_code == HTTPStatus.CONFLICT)
    res = client.put(url, json={"status": "pending"})
    assume(res.status_code == HTTPStatus.CONFLICT)

    res = client.post(f"/api/reminders/{uuid4()}/dismiss")
    assume(res.status_code == HTTPStatus.NOT_FOUND)


def test_reminder_process(
    channels: dict[str, IChannel],
    client: TestClient,
) -> None:
    email = channels["email"]
    assert isinstance(email, ChannelMock)

    future = (datetime.now(UTC) + timedelta(days=30)).isoformat()
    not_due = client.post("/api/reminders", json=_reminder_body(remind_at=future))
    res = client.post(f"/api/reminders/{not_due.json()['id']}/process")
    assume(res.status_code == HTTPStatus.BAD_REQUEST)
    assume("not yet due" in res.json()["error"]["message"])

    due = client.post("/api/reminders", json=_reminder_body()).json()
    res = client.post(
        f"/api/reminders/{due['id']}/process",
        params={"email": "planner@example.com"},
    )
    assume(res.status_code == HTTPStatus.OK)
    assume(res.json()["status"] == "sent")
    assume(res.json()["delivered"])
    assume(
        {outcome["outcome"] for outcome in res.json()["outcomes"]} == {"delivered"}
    )
    assume(email.contacts[0].email == "planner@example.com")

    res = client.post(f"/api/reminders/{due['id']}/process")
    assume(res.status_code == HTTPStatus.CONFLICT)
    assume("already processed" in res.json()["error"]["message"])

    res = client.post(f"/api/reminders/{uuid4()}/process")
    assume(res.status_code == HTTPStatus.NOT_FOUND)


def test_scan_and_notifications(client: TestClient) -> None:
    once = client.post("/api/reminders", json=_reminder_body()).json()
    weekly = client.post(
        "/api/reminders", json=_reminder_body(recurrence="weekly")
    ).json()
    future = (datetime.now(UTC) + timedelta(days=30)).isoformat()
    client.post("/api/reminders", json=_reminder_body(remind_at=future))

    res = client.get("/api/reminders/due")
    assume({item["id"] for item in res.json()} == {once["id"], weekly["id"]})

    res = client.post("/api/reminders/scan")
    assume(res.status_code == HTTPStatus.OK)
    statuses = {item["reminder_id"]: item["status"] for item in res.json()["results"]}
    assume(statuses == {once["id"]: "sent", weekly["id"]: "rescheduled"})
    assume(client.get("/api/reminders/due").json() == [])

    # Browser drains its inbox
    res = client.get("/api/notifications")
    assume({item["reminder_id"] for item in res.json()} == {once["id"], weekly["id"]})
    assume(client.get("/api/notifications").json() == [])


def test_records(client: TestClient) -> None:
    res = client.post(
        "/api/vendors",
        json={"category": "photographer", "name": "Lumière", "id": "ignored"},
    )
    assert res.status_code == HTTPStatus.CREATED
    vendor = res.json()
    assume(vendor["status"] == "considering")
    assume(vendor["id"] != "ignored")

    res = client.post(
        "/api/budget-items",
        json={
            "category": "Photography",
            "estimated_amount": 250000,
            "vendor_id": vendor["id"],
        },
    )
    assume(res.status_code == HTTPStatus.CREATED)
    assume(res.json()["payment_status"] == "unpaid")

    # Read
    assume(client.get(f"/api/vendors/{vendor['id']}").json() == vendor)
    res = client.get("/api/vendors", params={"category": "photographer"})
    assume([item["id"] for item in res.json()] == [vendor["id"]])
    res = client.get("/api/vendors", params={"category": "florist"})
    assume(res.json() == [])
    res = client.get("/api/budget-items", params={"vendor_id": vendor["id"]})
    assume(len(res.json()) == 1)

    # Update
    res = client.put(f"/api/vendors/{vendor['id']}", json={"status": "booked"})
    assume(res.status_code == HTTPStatus.OK)
    assume(res.json()["status"] == "booked")
    res = client.put(f"/api/vendors/{vendor['id']}", json={"status": "maybe"})
    assume(res.status_code == HTTPStatus.UNPROCESSABLE_ENTITY)

    # Delete
    res = client.delete(f"/api/vendors/{vendor['id']}")
    assume(res.status_code == HTTPStatus.NO_CONTENT)
    res = client.get(f"/api/vendors/{vendor['id']}")
    assume(res.status_code == HTTPStatus.NOT_FOUND)


def test_records_invalid(client: TestClient) -> None:
    res = client.post("/api/tasks", json={"priority": "high"})
    assume(res.status_code == HTTPStatus.UNPROCESSABLE_ENTITY)
    assume(res.json()["error"]["message"] == "Validation error")

    res = client.get("/api/tasks", params={"title": "Cake"})
    assume(res.status_code == HTTPStatus.UNPROCESSABLE_ENTITY)

    res = client.get("/api/guests")
    assume(res.status_code == HTTPStatus.NOT_FOUND)
    assume(res.json()["error"]["message"] == "Path /api/guests not found")
