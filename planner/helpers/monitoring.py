from enum import Enum
from functools import wraps
from inspect import iscoroutinefunction
from os import environ

from azure.monitor.opentelemetry import configure_azure_monitor
from opentelemetry import metrics, trace
from opentelemetry.instrumentation.aiohttp_client import AioHttpClientInstrumentor
from opentelemetry.metrics import Counter
from opentelemetry.semconv.attributes import service_attributes
from opentelemetry.trace.span import INVALID_SPAN
from opentelemetry.util.types import Attributes, AttributeValue
from structlog.contextvars import bind_contextvars, get_contextvars

MODULE_NAME = "wedding-planner"
VERSION = environ.get("VERSION", "0.0.0-unknown")


class SpanAttributeEnum(str, Enum):
    """
    OpenTelemetry attributes.

    These attributes are used to track a reminder delivery in the logs and metrics.
    """

    CHANNEL_NAME = "channel.name"
    """Notification channel (e.g. browser, email, ...)."""
    CHANNEL_OUTCOME = "channel.outcome"
    """Outcome of a channel delivery (delivered, failed, skipped)."""
    DISPATCH_STATUS = "dispatch.status"
    """Result of a reminder dispatch."""
    REMINDER_ID = "reminder.id"
    """Technical reminder identifier."""
    REMINDER_RECURRENCE = "reminder.recurrence"
    """Recurrence of the reminder."""

    def attribute(
        self,
        value: AttributeValue,
    ) -> None:
        """
        Set an attribute on the current span.
        """
        # Enrich logging
        bind_contextvars(**{self.value: value})

        # Enrich span
        span = trace.get_current_span()
        if span == INVALID_SPAN:
            return
        span.set_attribute(self.value, value)


class SpanMeterEnum(str, Enum):
    CHANNEL_DELIVERY = "channel.delivery"
    """Channel deliveries, by outcome."""
    REMINDER_DISPATCH = "reminder.dispatch"
    """Reminders dispatched, by status."""
    REMINDER_WOKEN = "reminder.woken"
    """Snoozed reminders moved back to pending."""

    def counter(
        self,
        unit: str,
    ) -> Counter:
        """
        Create a counter metric to track a span counter.
        """
        return meter.create_counter(
            description=self.__doc__ or "",
            name=self.value,
            unit=unit,
        )


def _configure_exporter() -> None:
    """
    Export traces and metrics to Azure Application Insights.

    Without a connection string, spans and metrics are still created, but not exported.
    """
    if not environ.get("APPLICATIONINSIGHTS_CONNECTION_STRING"):
        print(  # noqa: T201
            "APPLICATIONINSIGHTS_CONNECTION_STRING is not set, telemetry will not be exported"
        )
        return
    # Configure Azure Application Insights exporter
    configure_azure_monitor()
    # Instrument aiohttp, used for outgoing emails
    AioHttpClientInstrumentor().instrument()


_configure_exporter()

# Attributes
_default_attributes = {
    service_attributes.SERVICE_NAME: MODULE_NAME,
    service_attributes.SERVICE_VERSION: VERSION,
}

# Create a tracer and meter that will be used across the application
tracer = trace.get_tracer(
    attributes=_default_attributes,
    instrumenting_module_name=MODULE_NAME,
)
meter = metrics.get_meter(
    name=MODULE_NAME,
)

# Init metrics
channel_delivery = SpanMeterEnum.CHANNEL_DELIVERY.counter("deliveries")
reminder_dispatch = SpanMeterEnum.REMINDER_DISPATCH.counter("reminders")
reminder_woken = SpanMeterEnum.REMINDER_WOKEN.counter("reminders")


def counter_add(
    metric: Counter,
    value: float | int,
    attributes: Attributes = None,
):
    """
    Add a counter metric value.

    Measurement attributes are, by priority: `attributes`, the logging context, then the service attributes.
    """
    metric.add(
        amount=value,
        attributes={
            **_default_attributes,
            **get_contextvars(),
            **(attributes or {}),
        },
    )


def start_as_current_span(
    name: str,
    attributes: Attributes = None,
):
    """
    Decorator to run a coroutine function in a new OTEL span, set as the current.

    Exceptions raised by the function are recorded on the span, which is then marked as failed.
    """

    def _wrapper(func):
        if not iscoroutinefunction(func):
            raise TypeError(f"Cannot trace {func.__qualname__}, it is not async")

        @wraps(func)
        async def _inner(*args, **kwargs):
            with tracer.start_as_current_span(
                attributes=attributes,
                name=name,
            ):
                return await func(*args, **kwargs)

        return _inner

    return _wrapper
