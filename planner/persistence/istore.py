from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from planner.helpers.monitoring import start_as_current_span
from planner.models.budget_item import BudgetItemModel
from planner.models.readiness import ReadinessEnum
from planner.models.reminder import ReminderModel, ReminderUpdateModel, StatusEnum
from planner.models.task import TaskModel
from planner.models.vendor import VendorModel


class NotFoundError(Exception):
    pass


class ConcurrentModificationError(Exception):
    pass


class RecordKindEnum(str, Enum):
    """
    Plain records, stored as-is and indexed by their ID.
    """

    BUDGET_ITEM = "budget_items"
    TASK = "tasks"
    VENDOR = "vendors"

    @property
    def model(self) -> type[BaseModel]:
        return _RECORD_MODELS[self]

    @property
    def filters(self) -> set[str]:
        """
        Fields usable to filter a listing.
        """
        return _RECORD_FILTERS[self]

    @property
    def search_fields(self) -> tuple[str, ...]:
        """
        Text fields matched by the `search` filter, empty if the kind cannot be searched.
        """
        return _RECORD_SEARCH_FIELDS.get(self, ())


_RECORD_MODELS: dict[RecordKindEnum, type[BaseModel]] = {
    RecordKindEnum.BUDGET_ITEM: BudgetItemModel,
    RecordKindEnum.TASK: TaskModel,
    RecordKindEnum.VENDOR: VendorModel,
}

_RECORD_FILTERS: dict[RecordKindEnum, set[str]] = {
    RecordKindEnum.BUDGET_ITEM: {"category", "payment_status", "vendor_id"},
    RecordKindEnum.TASK: {"category", "priority", "status", "timeline_phase", "vendor_id"},
    RecordKindEnum.VENDOR: {"category", "status"},
}

_RECORD_SEARCH_FIELDS: dict[RecordKindEnum, tuple[str, ...]] = {
    RecordKindEnum.VENDOR: ("name", "city", "notes"),
}


class IStore(ABC):
    @abstractmethod
    @start_as_current_span("store_readiness")
    async def readiness(self) -> ReadinessEnum:
        pass

    @abstractmethod
    @start_as_current_span("store_reminder_create")
    async def reminder_create(
        self,
        reminder: ReminderModel,
    ) -> ReminderModel:
        pass

    @abstractmethod
    @start_as_current_span("store_reminder_get")
    async def reminder_get(
        self,
        reminder_id: UUID,
    ) -> ReminderModel | None:
        pass

    @abstractmethod
    @start_as_current_span("store_reminder_list")
    async def reminder_list(
        self,
        status: StatusEnum | None = None,
        task_id: str | None = None,
        vendor_id: str | None = None,
    ) -> list[ReminderModel]:
        pass

    @abstractmethod
    @start_as_current_span("store_reminder_update")
    async def reminder_update(
        self,
        reminder_id: UUID,
        patch: ReminderUpdateModel,
    ) -> ReminderModel:
        """
        Apply a user update to a reminder.

        Raises `NotFoundError`, `InvalidTransitionError` or a Pydantic `ValidationError`.
        """

    @abstractmethod
    @start_as_current_span("store_reminder_delete")
    async def reminder_delete(
        self,
        reminder_id: UUID,
    ) -> bool:
        pass

    @abstractmethod
    @start_as_current_span("store_reminder_list_due")
    async def reminder_list_due(
        self,
        now: datetime,
    ) -> list[ReminderModel]:
        """
        List pending reminders with `remind_at <= now`, earliest first.
        """

    @abstractmethod
    @start_as_current_span("store_reminder_claim")
    async def reminder_claim(
        self,
        reminder_id: UUID,
        remind_at: datetime,
        ttl_sec: float,
    ) -> str:
        """
        Reserve the occurrence `remind_at` of a pending reminder for a delivery attempt.

        The claim expires `ttl_sec` after it is taken, on the wall clock, so a crashed worker does not block the reminder forever.

        Returns the claim token. Raises `NotFoundError`, or `ConcurrentModificationError` if the reminder is not pending at this occurrence or is already claimed.
        """

    @abstractmethod
    @start_as_current_span("store_reminder_release")
    async def reminder_release(
        self,
        reminder_id: UUID,
        claim_token: str,
    ) -> None:
        pass

    @abstractmethod
    @start_as_current_span("store_reminder_mark_processed")
    async def reminder_mark_processed(
        self,
        reminder_id: UUID,
        remind_at: datetime,
        next_remind_at: datetime | None = None,
        claim_token: str | None = None,
    ) -> ReminderModel:
        """
        Commit a successful delivery of the occurrence `remind_at`.

        Without `next_remind_at`, the reminder becomes sent. With it, the reminder stays pending and `remind_at` is advanced in place. The commit only applies if the reminder is still pending at `remind_at` (and still holds `claim_token`, if given).

        Raises `NotFoundError`, or `ConcurrentModificationError` if the guard fails.
        """

    @abstractmethod
    @start_as_current_span("store_reminder_wake_snoozed")
    async def reminder_wake_snoozed(
        self,
        now: datetime,
    ) -> int:
        """
        Move snoozed reminders with `remind_at <= now` back to pending.

        Returns the number of reminders woken.
        """

    @abstractmethod
    @start_as_current_span("store_record_create")
    async def record_create(
        self,
        kind: RecordKindEnum,
        record: BaseModel,
    ) -> BaseModel:
        pass

    @abstractmethod
    @start_as_current_span("store_record_get")
    async def record_get(
        self,
        kind: RecordKindEnum,
        record_id: UUID,
    ) -> BaseModel | None:
        pass

    @abstractmethod
    @start_as_current_span("store_record_list")
    async def record_list(
        self,
        kind: RecordKindEnum,
        filters: dict[str, str] | None = None,
    ) -> list[BaseModel]:
        """
        List records, newest first.

        Filters are exact matches on the fields allowed by the kind. The `search` filter is a substring match on any of its `search_fields`, ignoring ASCII case.

        Raises `ValueError` on an unknown filter.
        """

    @abstractmethod
    @start_as_current_span("store_record_update")
    async def record_update(
        self,
        kind: RecordKindEnum,
        record_id: UUID,
        patch: dict[str, Any],
    ) -> BaseModel:
        pass

    @abstractmethod
    @start_as_current_span("store_record_delete")
    async def record_delete(
        self,
        kind: RecordKindEnum,
        record_id: UUID,
    ) -> bool:
        pass
