import asyncio
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from aiosqlite import Connection, connect as sqlite_connect
from opentelemetry.instrumentation.sqlite3 import SQLite3Instrumentor
from pydantic import BaseModel, TypeAdapter, ValidationError

from planner.helpers.config_models.database import SqliteModel
from planner.helpers.logging import logger
from planner.models.readiness import ReadinessEnum
from planner.models.reminder import ReminderModel, ReminderUpdateModel, StatusEnum
from planner.persistence.istore import (
    ConcurrentModificationError,
    IStore,
    NotFoundError,
    RecordKindEnum,
)

# Instrument sqlite
SQLite3Instrumentor().instrument()

_datetime_adapter = TypeAdapter(datetime)

# Optimistic updates are retried this many times before giving up
_UPDATE_ATTEMPTS = 3

_REMINDERS_TABLE = "reminders"


def _sortable(value: datetime) -> str:
    """
    Format a datetime as a fixed-width UTC string.

    Lexicographic order of the result is the chronological order, so it can be compared and indexed directly by SQLite.
    """
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _json_datetime(value: datetime) -> str:
    """
    Serialize a datetime the same way Pydantic does in the JSON documents.
    """
    return _datetime_adapter.dump_python(value.astimezone(UTC), mode="json")


class SqliteStore(IStore):
    _config: SqliteModel
    _db_path: str
    _init_done: bool
    _init_lock: asyncio.Lock

    def __init__(self, config: SqliteModel):
        logger.info("Using SQLite database at %s", config.full_path())
        self._config = config
        self._db_path = config.full_path()
        self._init_done = False
        self._init_lock = asyncio.Lock()

        # Create folder if does not exist
        db_folder = os.path.dirname(self._db_path)
        if db_folder:
            os.makedirs(name=db_folder, exist_ok=True)

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the SQLite database.

        This checks if the database is reachable and can be queried.
        """
        try:
            async with self._use_db() as db:
                await db.execute("SELECT 1")
            return ReadinessEnum.OK
        except Exception:
            logger.exception("Unknown error while checking SQLite readiness")
        return ReadinessEnum.FAIL

    async def reminder_create(self, reminder: ReminderModel) -> ReminderModel:
        data = reminder.model_dump_json()
        logger.debug("Saving reminder %s: %s", reminder.id, data)
        async with self._use_db() as db:
            await db.execute(
                f"INSERT INTO {_REMINDERS_TABLE} (id, status, remind_at, data) VALUES (?, ?, ?, ?)",
                (
                    str(reminder.id),  # id
                    reminder.status.value,  # status
                    _sortable(reminder.remind_at),  # remind_at
                    data,  # data
                ),
            )
            await db.commit()
        return reminder

    async def reminder_get(self, reminder_id: UUID) -> ReminderModel | None:
        logger.debug("Loading reminder %s", reminder_id)
        async with self._use_db() as db:
            reminders = await self._reminder_select(
                db=db,
                params=(str(reminder_id),),
                where="id = ?",
            )
        return reminders[0] if reminders else None

    async def reminder_list(
        self,
        status: StatusEnum | None = None,
        task_id: str | None = None,
        vendor_id: str | None = None,
    ) -> list[ReminderModel]:
        logger.debug(
            "Listing reminders, status %s, task %s, vendor %s",
            status,
            task_id,
            vendor_id,
        )
        clauses: list[str] = []
        params: list[Any] = []
        if status:
            clauses.append("status = ?")
            params.append(status.value)
        if task_id:
            clauses.append("JSON_EXTRACT(data, '$.task_id') = ?")
            params.append(task_id)
        if vendor_id:
            clauses.append("JSON_EXTRACT(data, '$.vendor_id') = ?")
            params.append(vendor_id)
        async with self._use_db() as db:
            return await self._reminder_select(
                db=db,
                params=tuple(params),
                where=" AND ".join(clauses) or None,
            )

    async def reminder_update(
        self,
        reminder_id: UUID,
        patch: ReminderUpdateModel,
    ) -> ReminderModel:
        async with self._use_db() as db:
            for _ in range(_UPDATE_ATTEMPTS):
                cursor = await db.execute(
                    f"SELECT data FROM {_REMINDERS_TABLE} WHERE id = ?",
                    (str(reminder_id),),
                )
                row = await cursor.fetchone()
                if not row:
                    raise NotFoundError(f"Reminder {reminder_id} not found")
                reminder = ReminderModel.model_validate_json(row[0])
                updated = reminder.apply(patch)

                # Scheduling changed, in-flight deliveries of the old occurrence must not commit
                reschedule = (
                    updated.status != reminder.status
                    or updated.remind_at != reminder.remind_at
                )
                cursor = await db.execute(
                    f"UPDATE {_REMINDERS_TABLE} SET status = ?, remind_at = ?, data = ?{', claim_token = NULL, claim_until = NULL' if reschedule else ''} WHERE id = ? AND data = ?",
                    (
                        updated.status.value,  # status
                        _sortable(updated.remind_at),  # remind_at
                        updated.model_dump_json(),  # data
                        str(reminder_id),  # id
                        row[0],  # data, as read
                    ),
                )
                await db.commit()
                if cursor.rowcount:
                    logger.debug("Updated reminder %s", reminder_id)
                    return updated
                logger.debug("Reminder %s changed while updating, retrying", reminder_id)
        raise ConcurrentModificationError(
            f"Reminder {reminder_id} kept changing while updating"
        )

    async def reminder_delete(self, reminder_id: UUID) -> bool:
        logger.debug("Deleting reminder %s", reminder_id)
        async with self._use_db() as db:
            cursor = await db.execute(
                f"DELETE FROM {_REMINDERS_TABLE} WHERE id = ?",
                (str(reminder_id),),
            )
            await db.commit()
        return cursor.rowcount > 0

    async def reminder_list_due(self, now: datetime) -> list[ReminderModel]:
        async with self._use_db() as db:
            reminders = await self._reminder_select(
                db=db,
                params=(StatusEnum.PENDING.value, _sortable(now)),
                where="status = ? AND remind_at <= ?",
            )
        logger.debug("Found %i due reminders at %s", len(reminders), now)
        return reminders

    async def reminder_claim(
        self,
        reminder_id: UUID,
        remind_at: datetime,
        ttl_sec: float,
    ) -> str:
        claim_token = str(uuid4())
        # Lease is on the wall clock, whatever time the caller scans for
        now = datetime.now(UTC).timestamp()
        async with self._use_db() as db:
            cursor = await db.execute(
                f"UPDATE {_REMINDERS_TABLE} SET claim_token = ?, claim_until = ? WHERE id = ? AND status = ? AND remind_at = ? AND (claim_until IS NULL OR claim_until <= ?)",
                (
                    claim_token,  # claim_token
                    now + ttl_sec,  # claim_until
                    str(reminder_id),  # id
                    StatusEnum.PENDING.value,  # status
                    _sortable(remind_at),  # remind_at
                    now,  # claim_until, expired
                ),
            )
            await db.commit()
            if not cursor.rowcount:
                await self._raise_not_committed(db, reminder_id)
        logger.debug("Claimed reminder %s with token %s", reminder_id, claim_token)
        return claim_token

    async def reminder_release(self, reminder_id: UUID, claim_token: str) -> None:
        async with self._use_db() as db:
            await db.execute(
                f"UPDATE {_REMINDERS_TABLE} SET claim_token = NULL, claim_until = NULL WHERE id = ? AND claim_token = ?",
                (
                    str(reminder_id),  # id
                    claim_token,  # claim_token
                ),
            )
            await db.commit()
        logger.debug("Released reminder %s", reminder_id)

    async def reminder_mark_processed(
        self,
        reminder_id: UUID,
        remind_at: datetime,
        next_remind_at: datetime | None = None,
        claim_token: str | None = None,
    ) -> ReminderModel:
        status = StatusEnum.PENDING if next_remind_at else StatusEnum.SENT
        new_remind_at = next_remind_at or remind_at
        where = "id = ? AND status = ? AND remind_at = ?"
        params: list[Any] = [
            str(reminder_id),  # id
            StatusEnum.PENDING.value,  # status
            _sortable(remind_at),  # remind_at
        ]
        if claim_token:
            where += " AND claim_token = ?"
            params.append(claim_token)

        async with self._use_db() as db:
            cursor = await db.execute(
                f"UPDATE {_REMINDERS_TABLE} SET status = ?, remind_at = ?, claim_token = NULL, claim_until = NULL, data = JSON_SET(data, '$.status', ?, '$.remind_at', ?, '$.updated_at', ?) WHERE {where}",
                (
                    status.value,  # status
                    _sortable(new_remind_at),  # remind_at
                    status.value,  # data.status
                    _json_datetime(new_remind_at),  # data.remind_at
                    _json_datetime(datetime.now(UTC)),  # data.updated_at
                    *params,
                ),
            )
            await db.commit()
            if not cursor.rowcount:
                await self._raise_not_committed(db, reminder_id)
            reminders = await self._reminder_select(
                db=db,
                params=(str(reminder_id),),
                where="id = ?",
            )

        if not reminders:
            raise NotFoundError(f"Reminder {reminder_id} not found")
        logger.debug(
            "Reminder %s processed, now %s at %s",
            reminder_id,
            status.value,
            new_remind_at,
        )
        return reminders[0]

    async def reminder_wake_snoozed(self, now: datetime) -> int:
        async with self._use_db() as db:
            cursor = await db.execute(
                f"UPDATE {_REMINDERS_TABLE} SET status = ?, data = JSON_SET(data, '$.status', ?, '$.updated_at', ?) WHERE status = ? AND remind_at <= ?",
                (
                    StatusEnum.PENDING.value,  # status
                    StatusEnum.PENDING.value,  # data.status
                    _json_datetime(datetime.now(UTC)),  # data.updated_at
                    StatusEnum.SNOOZED.value,  # status, current
                    _sortable(now),  # remind_at
                ),
            )
            await db.commit()
        if cursor.rowcount:
            logger.info("Woke %i snoozed reminders", cursor.rowcount)
        return cursor.rowcount

    async def record_create(
        self,
        kind: RecordKindEnum,
        record: BaseModel,
    ) -> BaseModel:
        record = kind.model.model_validate(record.model_dump())
        data = record.model_dump_json()
        record_id = str(record.id)  # pyright: ignore
        logger.debug("Saving %s %s: %s", kind.value, record_id, data)
        async with self._use_db() as db:
            await db.execute(
                f"INSERT INTO {kind.value} (id, data) VALUES (?, ?)",
                (
                    record_id,  # id
                    data,  # data
                ),
            )
            await db.commit()
        return record

    async def record_get(
        self,
        kind: RecordKindEnum,
        record_id: UUID,
    ) -> BaseModel | None:
        logger.debug("Loading %s %s", kind.value, record_id)
        async with self._use_db() as db:
            cursor = await db.execute(
                f"SELECT data FROM {kind.value} WHERE id = ?",
                (str(record_id),),
            )
            row = await cursor.fetchone()
        if not row:
            return None
        try:
            return kind.model.model_validate_json(row[0])
        except ValidationError as e:
            logger.debug("Parsing error: %s", e.errors())
        return None

    async def record_list(
        self,
        kind: RecordKindEnum,
        filters: dict[str, str] | None = None,
    ) -> list[BaseModel]:
        filters = dict(filters or {})
        search = filters.pop("search", None) if kind.search_fields else None
        unknown = set(filters) - kind.filters
        if unknown:
            raise ValueError(
                f"Cannot filter {kind.value} by {', '.join(sorted(unknown))}"
            )

        # Keys are checked against the allow list above, values are bound
        clauses = [f"JSON_EXTRACT(data, '$.{key}') = ?" for key in filters]
        params: list[Any] = list(filters.values())
        if search:
            # Wildcards typed by the user are literal
            escaped = (
                search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            )
            pattern = f"%{escaped}%"
            clauses.append(
                "("
                + " OR ".join(
                    f"JSON_EXTRACT(data, '$.{field}') LIKE ? ESCAPE '\\'"
                    for field in kind.search_fields
                )
                + ")"
            )
            params += [pattern] * len(kind.search_fields)
        where = " AND ".join(clauses)

        records: list[BaseModel] = []
        async with self._use_db() as db:
            cursor = await db.execute(
                f"SELECT data FROM {kind.value} {f'WHERE {where}' if where else ''} ORDER BY JULIANDAY(JSON_EXTRACT(data, '$.created_at')) DESC, rowid DESC",
                tuple(params),
            )
            rows = await cursor.fetchall()
        for row in rows:
            try:
                records.append(kind.model.model_validate_json(row[0]))
            except ValidationError as e:
                logger.debug("Parsing error: %s", e.errors())
        return records

    async def record_update(
        self,
        kind: RecordKindEnum,
        record_id: UUID,
        patch: dict[str, Any],
    ) -> BaseModel:
        # Immutable fields are silently ignored
        patch = {
            key: value
            for key, value in patch.items()
            if key not in ("created_at", "id", "updated_at")
        }
        async with self._use_db() as db:
            for _ in range(_UPDATE_ATTEMPTS):
                cursor = await db.execute(
                    f"SELECT data FROM {kind.value} WHERE id = ?",
                    (str(record_id),),
                )
                row = await cursor.fetchone()
                if not row:
                    raise NotFoundError(f"{kind.model.__name__} {record_id} not found")
                record = kind.model.model_validate_json(row[0])
                updated = kind.model.model_validate(
                    {
                        **record.model_dump(),
                        **patch,
                        "updated_at": datetime.now(UTC),
                    }
                )
                cursor = await db.execute(
                    f"UPDATE {kind.value} SET data = ? WHERE id = ? AND data = ?",
                    (
                        updated.model_dump_json(),  # data
                        str(record_id),  # id
                        row[0],  # data, as read
                    ),
                )
                await db.commit()
                if cursor.rowcount:
                    return updated
        raise ConcurrentModificationError(
            f"{kind.model.__name__} {record_id} kept changing while updating"
        )

    async def record_delete(
        self,
        kind: RecordKindEnum,
        record_id: UUID,
    ) -> bool:
        logger.debug("Deleting %s %s", kind.value, record_id)
        async with self._use_db() as db:
            cursor = await db.execute(
                f"DELETE FROM {kind.value} WHERE id = ?",
                (str(record_id),),
            )
            await db.commit()
        return cursor.rowcount > 0

    async def _reminder_select(
        self,
        db: Connection,
        params: tuple,
        where: str | None = None,
    ) -> list[ReminderModel]:
        """
        Select reminders, earliest `remind_at` first.

        Rows which cannot be parsed are skipped.
        """
        cursor = await db.execute(
            f"SELECT data FROM {_REMINDERS_TABLE} {f'WHERE {where}' if where else ''} ORDER BY remind_at ASC",
            params,
        )
        rows = await cursor.fetchall()
        reminders: list[ReminderModel] = []
        for row in rows:
            try:
                reminders.append(ReminderModel.model_validate_json(row[0]))
            except ValidationError as e:
                logger.warning("Skipping unreadable reminder: %s", e.errors())
        return reminders

    async def _raise_not_committed(self, db: Connection, reminder_id: UUID) -> None:
        """
        Tell apart an unknown reminder from a failed optimistic guard.
        """
        cursor = await db.execute(
            f"SELECT 1 FROM {_REMINDERS_TABLE} WHERE id = ?",
            (str(reminder_id),),
        )
        if not await cursor.fetchone():
            raise NotFoundError(f"Reminder {reminder_id} not found")
        raise ConcurrentModificationError(
            f"Reminder {reminder_id} was modified concurrently"
        )

    async def _init_db(self, db: Connection) -> None:
        """
        Initialize the database.

        Reminders keep their scheduling fields in dedicated columns, so the due query and the optimistic guards are plain indexed comparisons. Other records are JSON documents indexed by ID.

        See: https://sqlite.org/cgi/src/doc/wal2/doc/wal2.md
        """
        logger.info("Init database %s", self._db_path)
        # Optimize performance for concurrent writes
        await db.execute("PRAGMA journal_mode=WAL")
        # Create tables
        await db.execute(
            f"CREATE TABLE IF NOT EXISTS {_REMINDERS_TABLE} (id VARCHAR(36) PRIMARY KEY, status TEXT NOT NULL, remind_at TEXT NOT NULL, claim_token VARCHAR(36), claim_until REAL, data TEXT NOT NULL)"
        )
        for kind in RecordKindEnum:
            await db.execute(
                f"CREATE TABLE IF NOT EXISTS {kind.value} (id VARCHAR(36) PRIMARY KEY, data TEXT NOT NULL)"
            )
        # Create indexes
        await db.execute(
            f"CREATE INDEX IF NOT EXISTS {_REMINDERS_TABLE}_status_remind_at ON {_REMINDERS_TABLE} (status, remind_at)"
        )
        await db.execute(
            f"CREATE INDEX IF NOT EXISTS {_REMINDERS_TABLE}_data_task_id ON {_REMINDERS_TABLE} (JSON_EXTRACT(data, '$.task_id'))"
        )
        await db.execute(
            f"CREATE INDEX IF NOT EXISTS {_REMINDERS_TABLE}_data_vendor_id ON {_REMINDERS_TABLE} (JSON_EXTRACT(data, '$.vendor_id'))"
        )

        # Write changes to disk
        await db.commit()

    @asynccontextmanager
    async def _use_db(self) -> AsyncGenerator[Connection, None]:
        """
        Generate the SQLite client and close it after use.

        Schema is created on the first connection of the process.
        """
        async with sqlite_connect(
            database=self._db_path,
        ) as client:
            if not self._init_done:
                async with self._init_lock:
                    if not self._init_done:
                        await self._init_db(client)
                        self._init_done = True
            yield client
