import asyncio
from datetime import UTC, datetime
from uuid import UUID

from planner.helpers.config_models.scheduler import SchedulerModel
from planner.helpers.logging import logger
from planner.helpers.monitoring import (
    SpanAttributeEnum,
    channel_delivery,
    counter_add,
    reminder_dispatch,
    reminder_woken,
    start_as_current_span,
    tracer,
)
from planner.helpers.recurrence import next_occurrence
from planner.models.dispatch import (
    ChannelOutcomeEnum,
    ChannelOutcomeModel,
    DispatchResultModel,
    DispatchStatusEnum,
    ScanResultModel,
)
from planner.models.notification import ContactModel, NotificationModel
from planner.models.reminder import RecurrenceEnum, ReminderModel, StatusEnum
from planner.models.task import TaskModel
from planner.models.vendor import VendorModel
from planner.persistence.ichannel import (
    ChannelTransportError,
    ChannelUnconfiguredError,
    IChannel,
)
from planner.persistence.istore import (
    ConcurrentModificationError,
    IStore,
    NotFoundError,
    RecordKindEnum,
)


class AlreadyProcessedError(Exception):
    pass


class NotDueError(Exception):
    pass


class ReminderDispatcher:
    """
    Deliver due reminders to their channels and commit the result.

    Each occurrence of a reminder is claimed before any channel is called, then committed with an optimistic check on its status and `remind_at`. Concurrent dispatchers, in the same process or not, deliver an occurrence at most once.
    """

    _channels: dict[str, IChannel]
    _config: SchedulerModel
    _default_contact: ContactModel
    _store: IStore

    def __init__(
        self,
        channels: dict[str, IChannel],
        config: SchedulerModel,
        default_contact: ContactModel,
        store: IStore,
    ):
        self._channels = channels
        self._config = config
        self._default_contact = default_contact
        self._store = store

    @start_as_current_span("dispatcher_dispatch")
    async def dispatch(
        self,
        reminder: ReminderModel,
        now: datetime,
        contact: ContactModel | None = None,
    ) -> DispatchResultModel:
        """
        Deliver one occurrence of a reminder and commit it.

        Never raises for channel or concurrency failures, they are reported in the result.
        """
        SpanAttributeEnum.REMINDER_ID.attribute(str(reminder.id))
        SpanAttributeEnum.REMINDER_RECURRENCE.attribute(reminder.recurrence.value)
        remind_at = reminder.remind_at

        # Reserve the occurrence, another worker may already deliver it
        try:
            claim_token = await self._store.reminder_claim(
                reminder_id=reminder.id,
                remind_at=remind_at,
                ttl_sec=self._config.claim_ttl_sec,
            )
        except (ConcurrentModificationError, NotFoundError) as e:
            logger.debug("Skipping reminder %s, cannot claim it: %s", reminder.id, e)
            return self._result(
                reminder=reminder,
                status=DispatchStatusEnum.CONFLICT,
            )

        try:
            notification = NotificationModel.from_reminder(
                reminder=reminder,
                subject=await self._subject(reminder),
            )
            outcomes = await asyncio.gather(
                *[
                    self._send(
                        channel=channel,
                        contact=contact or self._default_contact,
                        notification=notification,
                    )
                    for channel in reminder.notification_channels
                ]
            )
        # Includes cancellation, the next scan retries the reminder
        except BaseException:
            await asyncio.shield(
                self._store.reminder_release(reminder.id, claim_token)
            )
            raise

        # Nothing delivered, keep the reminder as-is for the next scan
        if not any(
            outcome.outcome == ChannelOutcomeEnum.DELIVERED for outcome in outcomes
        ):
            logger.warning(
                "No channel delivered reminder %s, will retry: %s",
                reminder.id,
                ", ".join(
                    f"{outcome.channel}={outcome.reason}" for outcome in outcomes
                )
                or "no channel configured",
            )
            await self._store.reminder_release(reminder.id, claim_token)
            return self._result(
                outcomes=outcomes,
                reminder=reminder,
                status=DispatchStatusEnum.RETRY,
            )

        next_remind_at = None
        if reminder.recurrence != RecurrenceEnum.NONE:
            next_remind_at = next_occurrence(
                now=now,
                recurrence=reminder.recurrence,
                value=remind_at,
            )

        # Commit, only if nobody changed the reminder meanwhile
        try:
            committed = await self._store.reminder_mark_processed(
                claim_token=claim_token,
                next_remind_at=next_remind_at,
                remind_at=remind_at,
                reminder_id=reminder.id,
            )
        except (ConcurrentModificationError, NotFoundError) as e:
            logger.debug("Reminder %s changed while delivering: %s", reminder.id, e)
            return self._result(
                outcomes=outcomes,
                reminder=reminder,
                status=DispatchStatusEnum.CONFLICT,
            )

        if next_remind_at:
            logger.info(
                "Reminder %s delivered, next occurrence at %s",
                reminder.id,
                next_remind_at,
            )
            status = DispatchStatusEnum.RESCHEDULED
        else:
            logger.info("Reminder %s delivered", reminder.id)
            status = DispatchStatusEnum.SENT
        return self._result(
            outcomes=outcomes,
            reminder=committed,
            status=status,
        )

    @start_as_current_span("dispatcher_scan")
    async def scan(self, now: datetime | None = None) -> ScanResultModel:
        """
        Wake snoozed reminders, then dispatch all due reminders, earliest first.

        A failing reminder never prevents the others from being dispatched.
        """
        now = now or datetime.now(UTC)
        woken = await self._store.reminder_wake_snoozed(now)
        if woken:
            counter_add(reminder_woken, woken)

        reminders = await self._store.reminder_list_due(now)
        results: list[DispatchResultModel] = []
        for reminder in reminders:
            try:
                results.append(await self.dispatch(reminder, now))
            except Exception:
                logger.exception("Error while dispatching reminder %s", reminder.id)
                results.append(
                    self._result(
                        reminder=reminder,
                        status=DispatchStatusEnum.ERROR,
                    )
                )

        if results:
            logger.info("Scanned %i due reminders", len(results))
        return ScanResultModel(
            results=results,
            scanned_at=now,
            woken=woken,
        )

    @start_as_current_span("dispatcher_process")
    async def process(
        self,
        reminder_id: UUID,
        now: datetime | None = None,
        contact: ContactModel | None = None,
    ) -> DispatchResultModel:
        """
        Dispatch a single reminder right away.

        Raises `NotFoundError`, `AlreadyProcessedError` if the reminder is not pending, or `NotDueError` if its time is not reached.
        """
        now = now or datetime.now(UTC)
        reminder = await self._store.reminder_get(reminder_id)
        if not reminder:
            raise NotFoundError(f"Reminder {reminder_id} not found")
        if reminder.status != StatusEnum.PENDING:
            raise AlreadyProcessedError(
                f"Reminder {reminder_id} is already processed, status is {reminder.status.value}"
            )
        if reminder.remind_at > now:
            raise NotDueError(
                f"Reminder {reminder_id} is not yet due, scheduled at {reminder.remind_at.isoformat()}"
            )
        return await self.dispatch(
            contact=contact,
            now=now,
            reminder=reminder,
        )

    async def run(self, stop_event: asyncio.Event) -> None:
        """
        Scan periodically until `stop_event` is set.

        Errors are logged and the next cycle runs as planned.
        """
        logger.info(
            "Starting reminder scheduler, every %s seconds", self._config.interval_sec
        )
        while not stop_event.is_set():
            with tracer.start_as_current_span("dispatcher_run"):
                try:
                    await self.scan()
                except Exception:
                    logger.exception("Error while scanning reminders")

            # Wait for the next cycle, or stop right away
            try:
                await asyncio.wait_for(
                    stop_event.wait(),
                    timeout=self._config.interval_sec,
                )
            except TimeoutError:
                pass
        logger.info("Reminder scheduler stopped")

    @start_as_current_span("dispatcher_send")
    async def _send(
        self,
        channel: str,
        contact: ContactModel,
        notification: NotificationModel,
    ) -> ChannelOutcomeModel:
        """
        Deliver a notification to one channel and report the outcome.

        Never raises, except on cancellation.
        """
        # Each channel runs in its own task, bindings stay local to it
        SpanAttributeEnum.CHANNEL_NAME.attribute(channel)
        instance = self._channels.get(channel)
        if not instance:
            logger.warning("Unsupported channel %s", channel)
            outcome = ChannelOutcomeModel(
                channel=channel,
                outcome=ChannelOutcomeEnum.SKIPPED,
                reason="unsupported_channel",
            )
        else:
            try:
                async with asyncio.timeout(self._config.send_timeout_sec):
                    await instance.send(
                        contact=contact,
                        notification=notification,
                    )
                outcome = ChannelOutcomeModel(
                    channel=channel,
                    outcome=ChannelOutcomeEnum.DELIVERED,
                )
            except TimeoutError:
                logger.warning("Channel %s timed out", channel)
                outcome = self._failed(channel, "timeout")
            except ChannelUnconfiguredError as e:
                logger.warning("Channel %s cannot deliver: %s", channel, e)
                outcome = self._failed(channel, "unconfigured")
            except ChannelTransportError as e:
                logger.warning("Channel %s failed: %s", channel, e)
                outcome = self._failed(channel, str(e) or "transport_error")
            except Exception:
                logger.exception("Unknown error with channel %s", channel)
                outcome = self._failed(channel, "error")

        counter_add(
            attributes={
                SpanAttributeEnum.CHANNEL_NAME.value: channel,
                SpanAttributeEnum.CHANNEL_OUTCOME.value: outcome.outcome.value,
            },
            metric=channel_delivery,
            value=1,
        )
        return outcome

    async def _subject(self, reminder: ReminderModel) -> str | None:
        """
        Get the display label of the task or vendor the reminder is about.

        Lookup is best effort, a missing or unreadable subject only loses the label.
        """
        try:
            if reminder.task_id:
                record = await self._store.record_get(
                    RecordKindEnum.TASK, UUID(reminder.task_id)
                )
            elif reminder.vendor_id:
                record = await self._store.record_get(
                    RecordKindEnum.VENDOR, UUID(reminder.vendor_id)
                )
            else:
                return None
        except Exception:
            logger.warning(
                "Cannot load subject of reminder %s", reminder.id, exc_info=True
            )
            return None
        if isinstance(record, TaskModel | VendorModel):
            return record.label
        return None

    @staticmethod
    def _failed(channel: str, reason: str) -> ChannelOutcomeModel:
        return ChannelOutcomeModel(
            channel=channel,
            outcome=ChannelOutcomeEnum.FAILED,
            reason=reason,
        )

    @staticmethod
    def _result(
        reminder: ReminderModel,
        status: DispatchStatusEnum,
        outcomes: list[ChannelOutcomeModel] | None = None,
    ) -> DispatchResultModel:
        SpanAttributeEnum.DISPATCH_STATUS.attribute(status.value)
        counter_add(reminder_dispatch, 1)
        return DispatchResultModel(
            outcomes=outcomes or [],
            remind_at=reminder.remind_at,
            reminder_id=reminder.id,
            status=status,
        )
