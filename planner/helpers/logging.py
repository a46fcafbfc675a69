from logging import Logger, _nameToLevel, basicConfig

from structlog import (
    configure_once,
    get_logger as structlog_get_logger,
    make_filtering_bound_logger,
)
from structlog.contextvars import merge_contextvars
from structlog.dev import ConsoleRenderer
from structlog.processors import (
    JSONRenderer,
    StackInfoRenderer,
    TimeStamper,
    UnicodeDecoder,
    add_log_level,
    dict_tracebacks,
)
from structlog.stdlib import PositionalArgumentsFormatter
from structlog.typing import Processor

from planner.helpers.config import CONFIG
from planner.helpers.config_models.monitoring import LogFormatEnum

_config = CONFIG.monitoring.logging

# Default logging level for all the dependencies
basicConfig(level=_config.sys_level.value)

# Renderer depends on who reads the logs
_renderers: list[Processor] = (
    [
        # Exceptions as structured fields
        dict_tracebacks,
        # One JSON object per line, for log collectors
        JSONRenderer(),
    ]
    if _config.format == LogFormatEnum.JSON
    else [
        # Pretty printing in a terminal session
        ConsoleRenderer(),
    ]
)

# Configure application logging
configure_once(
    cache_logger_on_first_use=True,
    context_class=dict,
    wrapper_class=make_filtering_bound_logger(_nameToLevel[_config.app_level.value]),
    processors=[
        # Add contextvars support, reminder and channel attributes are bound there
        merge_contextvars,
        # Add log level
        add_log_level,
        # Enable %s-style formatting
        PositionalArgumentsFormatter(),
        # Add timestamp
        TimeStamper(fmt="iso", utc=True),
        # Add exceptions info
        StackInfoRenderer(),
        # Decode Unicode to str
        UnicodeDecoder(),
        *_renderers,
    ],
)

# Framework does not exactly expose Logger, but that's easier to work with
logger: Logger = structlog_get_logger("wedding-planner")
