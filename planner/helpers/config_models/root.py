from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from planner.helpers.config_models.api import ApiModel
from planner.helpers.config_models.channels import ChannelsModel
from planner.helpers.config_models.database import DatabaseModel
from planner.helpers.config_models.monitoring import MonitoringModel
from planner.helpers.config_models.scheduler import SchedulerModel


class RootModel(BaseSettings):
    """
    Application config.

    Every section is fully defined by default, so an empty config file starts a local instance with the console email and the SQLite file under `.local`.
    """

    model_config = SettingsConfigDict(
        env_ignore_empty=True,
        env_nested_delimiter="__",
        env_prefix="",
    )

    version: str = Field(default="0.0.0-unknown", frozen=True)
    api: ApiModel = ApiModel()
    channels: ChannelsModel = ChannelsModel()
    database: DatabaseModel = DatabaseModel()
    monitoring: MonitoringModel = MonitoringModel()
    scheduler: SchedulerModel = SchedulerModel()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],  # noqa: ARG003
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """
        Environment variables win over the `.env` file, which wins over secrets, which win over the loaded config document.
        """
        return env_settings, dotenv_settings, file_secret_settings, init_settings
