from abc import ABC, abstractmethod

from planner.helpers.monitoring import start_as_current_span
from planner.models.notification import ContactModel, NotificationModel
from planner.models.readiness import ReadinessEnum


class ChannelUnconfiguredError(Exception):
    """
    The channel cannot attempt the delivery, like an email without recipient.
    """


class ChannelTransportError(Exception):
    """
    The delivery was attempted and failed.

    The message is a short reason, reported in the channel outcome.
    """


class IChannel(ABC):
    @abstractmethod
    @start_as_current_span("channel_readiness")
    async def readiness(self) -> ReadinessEnum:
        pass

    @abstractmethod
    @start_as_current_span("channel_send")
    async def send(
        self,
        notification: NotificationModel,
        contact: ContactModel,
    ) -> None:
        """
        Deliver a notification.

        Returns when the notification is accepted by the channel. Raises `ChannelUnconfiguredError` or `ChannelTransportError`.
        """
