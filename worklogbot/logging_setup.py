import logging

from worklogbot import config

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging() -> logging.Logger:
    level = getattr(logging, config.LOG_LEVEL, logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # httpx пишет каждую строку запроса на INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return logging.getLogger("worklogbot")
