"""
Main entry point for the Garden Stock Notifier.
Runs the HTTP API and the polling scheduler in one process.
"""

import uvicorn

from utilities.config import config
from utilities.logger import setup_logging, get_logger


def main():
    """Run the API server; the scheduler starts with the application lifespan."""
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.get_log_file_path(),
        debug=config.debug
    )

    logger = get_logger(__name__)
    logger.info(
        "Starting Garden Stock Notifier",
        host=config.host,
        port=config.port,
        alignment=config.schedule_alignment,
        interval_minutes=config.poll_interval_minutes,
        webhook_configured=config.has_webhook(),
        bot_channel_configured=config.has_bot_channel()
    )

    uvicorn.run(
        "api.main:app",
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
        access_log=True
    )


if __name__ == "__main__":
    main()
