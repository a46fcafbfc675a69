from enum import Enum

from pydantic import BaseModel


class LoggingLevelEnum(str, Enum):
    CRITICAL = "CRITICAL"
    DEBUG = "DEBUG"
    ERROR = "ERROR"
    INFO = "INFO"
    WARNING = "WARNING"


class LogFormatEnum(str, Enum):
    CONSOLE = "console"
    """Colored, human readable lines."""
    JSON = "json"
    """One JSON object per line."""


class LoggingModel(BaseModel):
    app_level: LoggingLevelEnum = LoggingLevelEnum.INFO
    """Level of the application loggers."""
    format: LogFormatEnum = LogFormatEnum.CONSOLE
    sys_level: LoggingLevelEnum = LoggingLevelEnum.WARNING
    """Level of the dependencies, like the HTTP server or the database driver."""


class MonitoringModel(BaseModel):
    logging: LoggingModel = LoggingModel()  # Object is fully defined by default
