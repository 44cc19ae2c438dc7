"""
Structured logging for the sniper
structlog over stdlib logging; JSON lines for files and pipelines, console for a terminal
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import structlog
from structlog.typing import EventDict, Processor


SERVICE_NAME = "tokensniper"

# Third-party loggers that are chatty at INFO
NOISY_LOGGERS = ("aiohttp.access", "aiohttp.client", "asyncio")

# Event keys whose values never reach a log line
SECRET_KEYS = frozenset({"api_key", "moralis_api_key", "private_key", "authorization"})
REDACTED = "***"


def add_timestamp(logger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def add_log_level(logger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["level"] = method_name
    return event_dict


def add_service(logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Tag every event so mixed log streams can be filtered by service"""
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def redact_secrets(logger, method_name: str, event_dict: EventDict) -> EventDict:
    for key in SECRET_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def build_processors(format: str = "json", colors: bool = False) -> List[Processor]:
    """
    Processor chain ending in the renderer for `format`

    Anything other than "json" renders for a console.
    """
    processors: List[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        add_log_level,
        add_timestamp,
        add_service,
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(colors=colors, exception_formatter=structlog.dev.plain_traceback)
        )
    return processors


def setup_logging(
    level: str = "INFO",
    format: str = "json",
    output_file: Optional[str] = None
) -> None:
    """
    Configure logging for the CLI and long-running sessions

    Args:
        level: DEBUG, INFO, WARNING or ERROR
        format: "json" or "console"
        output_file: Also append to this file (parent directories are created)
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if output_file:
        log_path = Path(output_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(format="%(message)s", level=numeric_level, handlers=handlers, force=True)

    # Scan passes fan out many HTTP calls; keep the client libraries quiet
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    # Escape codes would end up in the log file
    colors = sys.stdout.isatty() and not output_file

    structlog.configure(
        processors=build_processors(format, colors=colors),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Logger for a module, usually get_logger(__name__)"""
    return structlog.get_logger(name)
