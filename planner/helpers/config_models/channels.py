from enum import Enum
from functools import cached_property

from pydantic import BaseModel, Field, SecretStr, model_validator

from planner.models.reminder import ChannelEnum
from planner.persistence.ichannel import IChannel


class BrowserModel(BaseModel, frozen=True):
    enabled: bool = True
    max_size: int = Field(default=100, ge=1)
    """Notifications kept until the browser drains them, oldest are dropped first."""

    @cached_property
    def instance(self) -> IChannel:
        from planner.persistence.browser import BrowserChannel

        return BrowserChannel(self)


class EmailModeEnum(str, Enum):
    CONSOLE = "console"
    """Log emails instead of sending them, for local development."""
    RESEND = "resend"
    """Send emails with Resend."""


class ConsoleModel(BaseModel, frozen=True):
    """
    Represents the configuration for the console email output.

    Model is purely empty to fit to the `IChannel` interface and the "mode" enum code organization.
    """

    @cached_property
    def instance(self) -> IChannel:
        from planner.persistence.console import ConsoleEmailChannel

        return ConsoleEmailChannel(self)


class ResendModel(BaseModel, frozen=True):
    api_key: SecretStr | None = None
    endpoint: str = "https://api.resend.com/emails"
    from_email: str = "wedding-planner@example.com"

    @cached_property
    def instance(self) -> IChannel:
        from planner.persistence.resend import ResendEmailChannel

        return ResendEmailChannel(self)


class EmailModel(BaseModel):
    console: ConsoleModel | None = ConsoleModel()  # Object is fully defined by default
    default_recipient: str | None = None
    """Address used when a delivery does not name its own contact."""
    enabled: bool = True
    mode: EmailModeEnum = EmailModeEnum.CONSOLE
    resend: ResendModel | None = None

    @model_validator(mode="after")
    def _validate_mode(self) -> "EmailModel":
        if self.mode == EmailModeEnum.CONSOLE and self.console is None:
            raise ValueError("Console config required")
        if self.mode == EmailModeEnum.RESEND and self.resend is None:
            raise ValueError("Resend config required")
        return self

    @cached_property
    def instance(self) -> IChannel:
        if self.mode == EmailModeEnum.CONSOLE:
            assert self.console
            return self.console.instance

        assert self.resend
        return self.resend.instance


class ChannelsModel(BaseModel):
    browser: BrowserModel = BrowserModel()  # Object is fully defined by default
    email: EmailModel = EmailModel()  # Object is fully defined by default

    @cached_property
    def instances(self) -> dict[str, IChannel]:
        """
        Enabled channels, by the name reminders use to reference them.
        """
        channels: dict[str, IChannel] = {}
        if self.browser.enabled:
            channels[ChannelEnum.BROWSER.value] = self.browser.instance
        if self.email.enabled:
            channels[ChannelEnum.EMAIL.value] = self.email.instance
        return channels
