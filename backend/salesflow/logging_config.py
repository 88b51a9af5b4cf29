# Overview: Logging setup shared by the app factory and the CLI.

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(app) -> None:
    """
    Route the salesflow package loggers through one stream handler.

    Service modules log via logging.getLogger(__name__), routes via app.logger;
    both end up under the level configured by LOG_LEVEL.
    """
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    package_logger = logging.getLogger("salesflow")
    package_logger.setLevel(level)
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        package_logger.addHandler(handler)

    app.logger.setLevel(level)
