"""
Logging setup for the prospect data service.

Standard library handlers do the output (rotating file plus console);
structlog sits on top so services can log key/value events through
``structlog.get_logger(__name__).bind(component=...)``.
"""

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Any, Dict, List
import structlog

# Logger name -> level; names match the modules that log in this service
COMPONENT_LOG_LEVELS: Dict[str, int] = {
    "services.prospect_cache": logging.INFO,
    # Raw database rows
    "services.prospect_cache.responses": logging.DEBUG,
    "services.data_collector": logging.INFO,
    "utils.cache": logging.INFO,
    "prospect_server": logging.INFO,
    "main": logging.INFO,

    # Supabase client stack
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "hpack": logging.WARNING,
    "postgrest": logging.WARNING,
}

FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def _build_handlers(
    log_file: str,
    max_bytes: int,
    backup_count: int,
    console_level: str,
    file_level: str
) -> List[logging.Handler]:
    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )
    file_handler.setLevel(logging.getLevelName(file_level.upper()))
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.getLevelName(console_level.upper()))
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))

    return [file_handler, console_handler]


def _configure_structlog() -> None:
    if os.getenv("ENV") == "development":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def setup_logging(
    log_file: str = "logs/prospect_service.log",
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    console_level: str = "INFO",
    file_level: str = "DEBUG"
) -> None:
    """
    Configure root handlers, component levels and structlog.

    Args:
        log_file: Path to the rotating log file
        max_bytes: Size at which the log file rotates
        backup_count: Number of rotated files to keep
        console_level: Level name for console output
        file_level: Level name for file output
    """
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers = _build_handlers(log_file, max_bytes, backup_count, console_level, file_level)

    configure_component_loggers()
    _configure_structlog()

    logging.getLogger(__name__).info(
        f"Logging to {log_file} (console {console_level}, file {file_level})"
    )


def configure_component_loggers(levels: Dict[str, int] = COMPONENT_LOG_LEVELS) -> None:
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_api_response(logger: logging.Logger, api_name: str, response_data: Any, truncate: int = 500):
    """
    Log a backend response at debug level.

    Args:
        logger: Logger to write to
        api_name: Label for the call (e.g. "supabase select")
        response_data: Response payload
        truncate: Maximum characters to log (0 for no truncation)
    """
    response_str = str(response_data)
    if truncate > 0 and len(response_str) > truncate:
        response_str = response_str[:truncate] + "... (truncated)"

    logger.debug(f"{api_name} response: {response_str}")
