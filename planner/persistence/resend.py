from http import HTTPStatus

from aiohttp import ClientConnectionError, ClientError
from jinja2 import Environment, FileSystemLoader
from tenacity import (
    retry,
    retry_any,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from planner.helpers.config_models.channels import ResendModel
from planner.helpers.http import aiohttp_session
from planner.helpers.logging import logger
from planner.helpers.resources import resources_dir
from planner.models.notification import ContactModel, NotificationModel
from planner.models.readiness import ReadinessEnum
from planner.persistence.ichannel import (
    ChannelTransportError,
    ChannelUnconfiguredError,
    IChannel,
)

# Jinja configuration
_jinja = Environment(
    auto_reload=False,  # Disable auto-reload for performance
    autoescape=True,
    enable_async=True,
    loader=FileSystemLoader(resources_dir("email")),
)


class _ThrottledError(ChannelTransportError):
    """
    Resend asked to retry later, or failed on its side.
    """


class ResendEmailChannel(IChannel):
    """
    Send emails with the Resend API.

    See: https://resend.com/docs/api-reference/emails/send-email
    """

    _config: ResendModel

    def __init__(self, config: ResendModel):
        logger.info("Using Resend from %s", config.from_email)
        self._config = config

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the Resend email service.

        This only checks the API key is configured, Resend has no side-effect free endpoint for sending keys.
        """
        if not self._config.api_key:
            logger.warning("Resend API key is not configured")
            return ReadinessEnum.FAIL
        return ReadinessEnum.OK

    async def send(
        self,
        notification: NotificationModel,
        contact: ContactModel,
    ) -> None:
        if not self._config.api_key:
            raise ChannelUnconfiguredError("No Resend API key")
        if not contact.email:
            raise ChannelUnconfiguredError("No recipient email address")

        template = _jinja.get_template("reminder.html.jinja")
        html = await template.render_async(notification=notification)
        payload = {
            "from": self._config.from_email,
            "html": html,
            "subject": f"Wedding Reminder: {notification.title}",
            "to": [contact.email],
        }

        logger.info("Sending email to %s", contact.email)
        try:
            await self._post(payload)
        except ClientError as e:
            raise ChannelTransportError(type(e).__name__) from e
        logger.debug("Email sent to %s", contact.email)

    @retry(
        reraise=True,
        retry=retry_any(
            retry_if_exception_type(ClientConnectionError),  # Catch for network errors
            retry_if_exception_type(_ThrottledError),
        ),
        stop=stop_after_attempt(3),
        wait=wait_random_exponential(multiplier=0.8, max=8),
    )
    async def _post(self, payload: dict) -> None:
        assert self._config.api_key
        session = await aiohttp_session()
        async with session.post(
            headers={
                "Authorization": f"Bearer {self._config.api_key.get_secret_value()}"
            },
            json=payload,
            url=self._config.endpoint,
        ) as res:
            if res.ok:
                return
            details = await res.text()
            logger.warning("Resend error %i: %s", res.status, details)
            if (
                res.status == HTTPStatus.TOO_MANY_REQUESTS
                or res.status >= HTTPStatus.INTERNAL_SERVER_ERROR
            ):
                raise _ThrottledError(f"http_{res.status}")
            raise ChannelTransportError(f"http_{res.status}")
