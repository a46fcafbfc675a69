import asyncio
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from http import HTTPStatus
from typing import Any
from uuid import UUID

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError, ValidationException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from planner.helpers.config import CONFIG
from planner.helpers.dispatcher import (
    AlreadyProcessedError,
    NotDueError,
    ReminderDispatcher,
)
from planner.helpers.http import aiohttp_session
from planner.helpers.logging import logger
from planner.helpers.monitoring import SpanAttributeEnum, start_as_current_span
from planner.models.dispatch import DispatchResultModel, ScanResultModel
from planner.models.error import ErrorInnerModel, ErrorModel
from planner.models.notification import ContactModel, NotificationModel
from planner.models.readiness import ReadinessCheckModel, ReadinessEnum, ReadinessModel
from planner.models.reminder import (
    InvalidTransitionError,
    ReminderCreateModel,
    ReminderModel,
    ReminderSnoozeModel,
    ReminderUpdateModel,
    StatusEnum,
)
from planner.persistence.browser import BrowserChannel
from planner.persistence.istore import (
    ConcurrentModificationError,
    NotFoundError,
    RecordKindEnum,
)

# First log
logger.info(
    "wedding-planner v%s",
    CONFIG.version,
)

# Persistences
_db = CONFIG.database.instance
_channels = CONFIG.channels.instances

# Scheduling
_dispatcher = ReminderDispatcher(
    channels=_channels,
    config=CONFIG.scheduler,
    default_contact=ContactModel(email=CONFIG.channels.email.default_recipient),
    store=_db,
)

# Public paths of the plain records
_RECORD_PATHS: dict[str, RecordKindEnum] = {
    "budget-items": RecordKindEnum.BUDGET_ITEM,
    "tasks": RecordKindEnum.TASK,
    "vendors": RecordKindEnum.VENDOR,
}


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    scheduler_task = None
    stop_event = asyncio.Event()

    try:
        if CONFIG.scheduler.enabled:
            scheduler_task = asyncio.create_task(_dispatcher.run(stop_event))
        else:
            logger.info("Reminder scheduler is disabled")
        yield

    # Let the running scan finish, commits are per reminder
    finally:
        stop_event.set()
        if scheduler_task:
            await scheduler_task

    # Close HTTP session
    await (await aiohttp_session()).close()


# FastAPI
api = FastAPI(
    description="Plan a wedding: tasks, vendors, budget, and reminders delivered by email or in the browser.",
    lifespan=lifespan,
    title="wedding-planner",
    version=CONFIG.version,
)
api.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_headers=["*"],
    allow_methods=["*"],
    allow_origins=CONFIG.api.cors_origins,
)


@api.get("/health/liveness")
@start_as_current_span("health_liveness_get")
async def health_liveness_get() -> None:
    """
    Check if the service is running.

    No parameters are expected.

    Returns a 200 OK if the service is technically running.
    """
    return


@api.get(
    "/health/readiness",
    status_code=HTTPStatus.OK,
)
@start_as_current_span("health_readiness_get")
async def health_readiness_get() -> JSONResponse:
    """
    Check if the service is ready to serve requests.

    No parameters are expected. Services tested are: store, and each enabled channel.

    Returns a 200 OK if the service is ready to serve requests. If the service is not ready, it should return a 503 Service Unavailable.
    """
    # Check all components in parallel
    store_check, *channel_checks = await asyncio.gather(
        _db.readiness(),
        *[channel.readiness() for channel in _channels.values()],
    )
    readiness = ReadinessModel(
        status=ReadinessEnum.OK,
        checks=[
            ReadinessCheckModel(id="store", status=store_check),
            *[
                ReadinessCheckModel(id=f"channel.{name}", status=check)
                for name, check in zip(_channels, channel_checks)
            ],
        ],
    )
    # If one of the checks fails, the whole readiness fails
    status_code = HTTPStatus.OK
    for check in readiness.checks:
        if check.status != ReadinessEnum.OK:
            readiness.status = ReadinessEnum.FAIL
            status_code = HTTPStatus.SERVICE_UNAVAILABLE
            break
    return JSONResponse(
        content=readiness.model_dump(mode="json"),
        status_code=status_code,
    )


@api.get("/api/reminders")
@start_as_current_span("reminder_list_get")
async def reminder_list_get(
    status: StatusEnum | None = None,
    task_id: str | None = None,
    vendor_id: str | None = None,
) -> list[ReminderModel]:
    """
    REST API to list reminders, earliest first.

    Optional URL parameters:
    - status: Filter by status
    - task_id: Filter by task
    - vendor_id: Filter by vendor
    """
    return await _db.reminder_list(
        status=status,
        task_id=task_id,
        vendor_id=vendor_id,
    )


@api.post(
    "/api/reminders",
    status_code=HTTPStatus.CREATED,
)
@start_as_current_span("reminder_post")
async def reminder_post(create: ReminderCreateModel) -> ReminderModel:
    """
    REST API to create a reminder.

    Required body parameters is a JSON object `ReminderCreateModel`. Exactly one of `task_id` or `vendor_id` must be set.

    Returns the created reminder, in JSON format.
    """
    reminder = await _db.reminder_create(create.to_reminder())
    SpanAttributeEnum.REMINDER_ID.attribute(str(reminder.id))
    logger.info("Created reminder %s at %s", reminder.id, reminder.remind_at)
    return reminder


@api.get("/api/reminders/due")
@start_as_current_span("reminder_due_get")
async def reminder_due_get() -> list[ReminderModel]:
    """
    REST API to list the pending reminders due now or earlier, earliest first.
    """
    return await _db.reminder_list_due(datetime.now(UTC))


@api.post("/api/reminders/scan")
@start_as_current_span("reminder_scan_post")
async def reminder_scan_post() -> ScanResultModel:
    """
    REST API to run a scan cycle now, without waiting for the scheduler.

    Returns the result of each dispatched reminder.
    """
    return await _dispatcher.scan()


@api.get("/api/reminders/{reminder_id}")
@start_as_current_span("reminder_get")
async def reminder_get(reminder_id: UUID) -> ReminderModel:
    SpanAttributeEnum.REMINDER_ID.attribute(str(reminder_id))
    reminder = await _db.reminder_get(reminder_id)
    if not reminder:
        raise NotFoundError(f"Reminder {reminder_id} not found")
    return reminder


@api.put("/api/reminders/{reminder_id}")
@start_as_current_span("reminder_put")
async def reminder_put(
    reminder_id: UUID,
    patch: ReminderUpdateModel,
) -> ReminderModel:
    """
    REST API to update a reminder.

    Only the fields present in the body are updated. Status changes are checked, see `ReminderModel.apply`.

    Returns the updated reminder. A 409 Conflict if the status change is not allowed.
    """
    SpanAttributeEnum.REMINDER_ID.attribute(str(reminder_id))
    return await _db.reminder_update(reminder_id, patch)


@api.delete(
    "/api/reminders/{reminder_id}",
    status_code=HTTPStatus.NO_CONTENT,
)
@start_as_current_span("reminder_delete")
async def reminder_delete(reminder_id: UUID) -> Response:
    SpanAttributeEnum.REMINDER_ID.attribute(str(reminder_id))
    if not await _db.reminder_delete(reminder_id):
        raise NotFoundError(f"Reminder {reminder_id} not found")
    return Response(status_code=HTTPStatus.NO_CONTENT)


@api.post("/api/reminders/{reminder_id}/process")
@start_as_current_span("reminder_process_post")
async def reminder_process_post(
    reminder_id: UUID,
    email: str | None = None,
) -> DispatchResultModel:
    """
    REST API to deliver a due reminder right away.

    Optional URL parameters:
    - email: Send the email to this address instead of the configured recipient

    Returns the dispatch result. A 409 Conflict if the reminder is not pending, a 400 Bad Request if it is not yet due.
    """
    SpanAttributeEnum.REMINDER_ID.attribute(str(reminder_id))
    return await _dispatcher.process(
        contact=ContactModel(email=email) if email else None,
        reminder_id=reminder_id,
    )


@api.post("/api/reminders/{reminder_id}/dismiss")
@start_as_current_span("reminder_dismiss_post")
async def reminder_dismiss_post(reminder_id: UUID) -> ReminderModel:
    SpanAttributeEnum.REMINDER_ID.attribute(str(reminder_id))
    return await _db.reminder_update(
        reminder_id,
        ReminderUpdateModel(status=StatusEnum.DISMISSED),
    )


@api.post("/api/reminders/{reminder_id}/snooze")
@start_as_current_span("reminder_snooze_post")
async def reminder_snooze_post(
    reminder_id: UUID,
    snooze: ReminderSnoozeModel,
) -> ReminderModel:
    """
    REST API to postpone a reminder.

    Required body parameters is a JSON object `ReminderSnoozeModel`. The reminder comes back to pending on the first scan after the new time.
    """
    SpanAttributeEnum.REMINDER_ID.attribute(str(reminder_id))
    return await _db.reminder_update(
        reminder_id,
        ReminderUpdateModel(
            remind_at=snooze.remind_at,
            status=StatusEnum.SNOOZED,
        ),
    )


@api.get("/api/notifications")
@start_as_current_span("notification_list_get")
async def notification_list_get() -> list[NotificationModel]:
    """
    Pop the notifications waiting for the browser, oldest first.

    Returns an empty list if the browser channel is disabled.
    """
    browser = _channels.get("browser")
    if not isinstance(browser, BrowserChannel):
        return []
    return browser.drain()


@api.get("/api/{kind}")
@start_as_current_span("record_list_get")
async def record_list_get(kind: str, request: Request) -> list[dict[str, Any]]:
    """
    REST API to list tasks, vendors or budget items, newest first.

    URL parameters are filters on the record fields, for example `?status=booked` for vendors. Vendors also accept `?search=` on their name, city and notes.
    """
    records = await _db.record_list(
        filters=dict(request.query_params),
        kind=_record_kind(kind),
    )
    return [record.model_dump(mode="json") for record in records]


@api.post(
    "/api/{kind}",
    status_code=HTTPStatus.CREATED,
)
@start_as_current_span("record_post")
async def record_post(kind: str, request: Request) -> dict[str, Any]:
    """
    REST API to create a task, vendor or budget item.

    Required body parameters is a JSON object of the record.
    """
    record_kind = _record_kind(kind)
    body = await request.json()
    if not isinstance(body, dict):
        raise RequestValidationError(["Body must be a JSON object"])
    # Identity and timestamps are generated
    for key in ("created_at", "id", "updated_at"):
        body.pop(key, None)
    try:
        record = record_kind.model.model_validate(body)
    except ValidationError as e:
        raise RequestValidationError([str(e)]) from e
    record = await _db.record_create(record_kind, record)
    return record.model_dump(mode="json")


@api.get("/api/{kind}/{record_id}")
@start_as_current_span("record_get")
async def record_get(kind: str, record_id: UUID) -> dict[str, Any]:
    record_kind = _record_kind(kind)
    record = await _db.record_get(record_kind, record_id)
    if not record:
        raise NotFoundError(f"{record_kind.model.__name__} {record_id} not found")
    return record.model_dump(mode="json")


@api.put("/api/{kind}/{record_id}")
@start_as_current_span("record_put")
async def record_put(
    kind: str,
    record_id: UUID,
    request: Request,
) -> dict[str, Any]:
    """
    REST API to update a task, vendor or budget item.

    Only the fields present in the body are updated.
    """
    record_kind = _record_kind(kind)
    body = await request.json()
    if not isinstance(body, dict):
        raise RequestValidationError(["Body must be a JSON object"])
    record = await _db.record_update(record_kind, record_id, body)
    return record.model_dump(mode="json")


@api.delete(
    "/api/{kind}/{record_id}",
    status_code=HTTPStatus.NO_CONTENT,
)
@start_as_current_span("record_delete")
async def record_delete(kind: str, record_id: UUID) -> Response:
    record_kind = _record_kind(kind)
    if not await _db.record_delete(record_kind, record_id):
        raise NotFoundError(f"{record_kind.model.__name__} {record_id} not found")
    return Response(status_code=HTTPStatus.NO_CONTENT)


@api.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request,  # noqa: ARG001
    exc: StarletteHTTPException,
) -> JSONResponse:
    """
    Handle HTTP exceptions and return the error in a standard format.
    """
    return _standard_error(
        message=exc.detail,
        status_code=HTTPStatus(exc.status_code),
    )


@api.exception_handler(NotFoundError)
async def not_found_exception_handler(
    request: Request,  # noqa: ARG001
    exc: NotFoundError,
) -> JSONResponse:
    return _standard_error(
        message=str(exc),
        status_code=HTTPStatus.NOT_FOUND,
    )


@api.exception_handler(AlreadyProcessedError)
@api.exception_handler(ConcurrentModificationError)
@api.exception_handler(InvalidTransitionError)
async def conflict_exception_handler(
    request: Request,  # noqa: ARG001
    exc: Exception,
) -> JSONResponse:
    """
    Handle requests conflicting with the current state of a reminder.
    """
    return _standard_error(
        message=str(exc),
        status_code=HTTPStatus.CONFLICT,
    )


@api.exception_handler(NotDueError)
async def not_due_exception_handler(
    request: Request,  # noqa: ARG001
    exc: NotDueError,
) -> JSONResponse:
    return _standard_error(
        message=str(exc),
        status_code=HTTPStatus.BAD_REQUEST,
    )


@api.exception_handler(RequestValidationError)
@api.exception_handler(ValueError)
async def validation_exception_handler(
    request: Request,  # noqa: ARG001
    exc: Exception,
) -> JSONResponse:
    """
    Handle validation exceptions and return the error in a standard format.
    """
    return _validation_error(exc)


def _record_kind(path: str) -> RecordKindEnum:
    """
    Get the record kind served at a path.

    Raises a 404 Not Found for unknown paths.
    """
    kind = _RECORD_PATHS.get(path)
    if not kind:
        raise HTTPException(
            detail=f"Path /api/{path} not found",
            status_code=HTTPStatus.NOT_FOUND,
        )
    return kind


def _validation_error(e: Exception) -> JSONResponse:
    """
    Generate a standard validation error response.
    """
    messages = []
    if isinstance(e, ValidationError | ValidationException):
        messages = [
            str(x) for x in e.errors()
        ]  # Pydantic returns well formatted errors, use them
    elif isinstance(e, ValueError):
        messages = [str(e)]
    return _standard_error(
        details=messages,
        message="Validation error",
        status_code=HTTPStatus.UNPROCESSABLE_ENTITY,
    )


def _standard_error(
    message: str,
    status_code: HTTPStatus,
    details: list[str] | None = None,
) -> JSONResponse:
    """
    Generate a standard error response.
    """
    model = ErrorModel(
        error=ErrorInnerModel(
            details=details or [],
            message=message,
        )
    )
    return JSONResponse(
        content=model.model_dump(mode="json"),
        status_code=status_code,
    )
