"""Logging bootstrap with TRACE and VERBOSE levels."""

import logging

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)-8s - %(message)s'


def configure_logging(log_level: str) -> None:
    """
    Configure the root logger once.

    TRACE enables everything. VERBOSE keeps the root at DEBUG but opens the
    HTTP client and connector loggers for delivery debugging. Any other value
    is a standard level name; HTTP internals stay at WARNING.
    """
    log_level_str = log_level.upper()
    if log_level_str == "TRACE":
        level = TRACE
    elif log_level_str == "VERBOSE":
        level = logging.DEBUG
    else:
        level = getattr(logging, log_level_str, logging.INFO)

    root = logging.getLogger()
    if root.hasHandlers():
        return

    logging.basicConfig(level=level, format=LOG_FORMAT)

    if log_level_str == "TRACE":
        http_level = TRACE
        connectors_level = TRACE
        scheduler_level = TRACE
    elif log_level_str == "VERBOSE":
        http_level = logging.DEBUG
        connectors_level = TRACE
        scheduler_level = logging.DEBUG
        root.info("VERBOSE mode enabled: HTTP details and connector traces active for debugging.")
    else:
        http_level = logging.WARNING
        connectors_level = logging.DEBUG if level <= logging.DEBUG else level
        scheduler_level = logging.WARNING

    root.setLevel(level)
    logging.getLogger("httpcore").setLevel(http_level)
    logging.getLogger("httpx").setLevel(http_level)
    logging.getLogger("apscheduler").setLevel(scheduler_level)
    logging.getLogger("webhook_scheduler.connectors").setLevel(connectors_level)

    root.debug("Debug logging enabled at startup.")
