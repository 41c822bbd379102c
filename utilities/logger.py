"""
Logging system using structlog.
Provides structured logging with different output formats and levels.
"""

import logging
import sys
from pathlib import Path
from typing import Optional
import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[str] = None,
    debug: bool = False
) -> None:
    """
    Set up structured logging with configurable output formats.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format (json or console)
        log_file: Optional log file path
        debug: Add call site information to every event
    """

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper())
    )

    # Configure structlog processors
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if debug:
        processors.append(structlog.processors.CallsiteParameterAdder())

    # Add format-specific processors
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True
    )

    # Set up file logging if specified
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(getattr(logging, log_level.upper()))
        file_handler.setFormatter(logging.Formatter('%(message)s'))

        logging.getLogger().addHandler(file_handler)

    logger = structlog.get_logger(__name__)
    logger.info(
        "Logging system initialized",
        level=log_level,
        format=log_format,
        file=str(log_file) if log_file else None,
        debug=debug
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


class CycleLogger:
    """
    Specialized logger for polling cycle events.
    """

    def __init__(self, name: str = "dispatcher"):
        self.logger = structlog.get_logger(name)

    def log_cycle_start(self, cycle_id: str, trigger: str) -> None:
        self.logger.info(
            "Cycle started",
            cycle_id=cycle_id,
            trigger=trigger
        )

    def log_cycle_complete(
        self,
        cycle_id: str,
        outcome: str,
        deltas: int,
        notified: bool,
        duration_seconds: float
    ) -> None:
        self.logger.info(
            "Cycle completed",
            cycle_id=cycle_id,
            outcome=outcome,
            deltas=deltas,
            notified=notified,
            duration_seconds=round(duration_seconds, 3)
        )

    def log_cycle_failed(self, cycle_id: str, stage: str, error: str) -> None:
        self.logger.error(
            "Cycle failed",
            cycle_id=cycle_id,
            stage=stage,
            error=error
        )

    def log_retry(self, url: str, attempt: int, max_attempts: int, delay: float) -> None:
        """Log retry attempt."""
        self.logger.warning(
            "Retrying request",
            url=url,
            attempt=attempt,
            max_attempts=max_attempts,
            delay_seconds=delay
        )

    def log_send(self, transport: str, success: bool, error: Optional[str] = None) -> None:
        """Log a notification send attempt."""
        level = "info" if success else "error"
        getattr(self.logger, level)(
            "Notification send",
            transport=transport,
            success=success,
            error=error
        )
