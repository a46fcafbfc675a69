from collections import deque

from planner.helpers.config_models.channels import BrowserModel
from planner.helpers.logging import logger
from planner.models.notification import ContactModel, NotificationModel
from planner.models.readiness import ReadinessEnum
from planner.persistence.ichannel import IChannel


class BrowserChannel(IChannel):
    """
    In-memory inbox, drained by the browser client which shows the notifications.

    Inbox is per process and is lost on restart.
    """

    _config: BrowserModel
    _inbox: deque[NotificationModel]

    def __init__(self, config: BrowserModel):
        logger.info("Using browser inbox of %i notifications", config.max_size)
        self._config = config
        self._inbox = deque(maxlen=config.max_size)

    async def readiness(self) -> ReadinessEnum:
        return ReadinessEnum.OK

    async def send(
        self,
        notification: NotificationModel,
        contact: ContactModel,  # noqa: ARG002
    ) -> None:
        if len(self._inbox) == self._inbox.maxlen:
            logger.warning(
                "Browser inbox full, dropping notification for reminder %s",
                self._inbox[0].reminder_id,
            )
        self._inbox.append(notification)
        logger.debug("Queued browser notification for reminder %s", notification.reminder_id)

    def drain(self) -> list[NotificationModel]:
        """
        Pop all queued notifications, oldest first.
        """
        notifications = list(self._inbox)
        self._inbox.clear()
        return notifications
