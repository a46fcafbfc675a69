from planner.helpers.config_models.channels import ConsoleModel
from planner.helpers.logging import logger
from planner.models.notification import ContactModel, NotificationModel
from planner.models.readiness import ReadinessEnum
from planner.persistence.ichannel import ChannelUnconfiguredError, IChannel


class ConsoleEmailChannel(IChannel):
    _config: ConsoleModel

    def __init__(self, config: ConsoleModel):
        logger.info("Using console email output, no email will be sent")
        self._config = config

    async def readiness(self) -> ReadinessEnum:
        return ReadinessEnum.OK

    async def send(
        self,
        notification: NotificationModel,
        contact: ContactModel,
    ) -> None:
        if not contact.email:
            raise ChannelUnconfiguredError("No recipient email address")
        logger.info(
            "Email to %s, subject %r: %s",
            contact.email,
            f"Wedding Reminder: {notification.title}",
            notification.body,
        )
