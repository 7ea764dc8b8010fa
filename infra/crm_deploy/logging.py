"""
Structured logging for the deploy CLI and the CDK app.

Logs go to stderr; stdout is reserved for cdk output and Rich tables.

Usage:
    from crm_deploy.logging import get_logger

    logger = get_logger(__name__)
    logger.info("cdk_command_started", action="deploy", app_dir="infra")
"""

import logging
import sys

import structlog
from structlog.types import EventDict, Processor

# Third-party loggers that are noisy below WARNING
QUIET_LOGGERS = ("botocore", "boto3", "urllib3")


def _drop_unset_values(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Remove keys bound to None, e.g. profile when no --profile was given."""
    return {key: value for key, value in event_dict.items() if value is not None}


def _duration_ms_to_seconds(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    if "duration_ms" in event_dict:
        event_dict["duration_s"] = round(event_dict.pop("duration_ms") / 1000, 2)
    return event_dict


def _renderer(json_format: bool) -> Processor:
    if json_format:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(json_format: bool = False, log_level: str = "INFO") -> None:
    """
    Route structlog and stdlib logging through one stderr handler.

    Args:
        json_format: If True, output JSON lines (CI). Otherwise console output,
                     colored when stderr is a terminal.
        log_level: Minimum log level to output.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _drop_unset_values,
        _duration_ms_to_seconds,
    ]
    if json_format:
        shared_processors.append(structlog.processors.format_exc_info)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(json_format),
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name, typically __name__ of the calling module.
    """
    return structlog.get_logger(name)


def bind_contextvars(**kwargs: object) -> None:
    """Attach key-value pairs to every later log line of this invocation."""
    structlog.contextvars.bind_contextvars(**kwargs)
