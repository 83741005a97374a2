import logging
import logging.config
import os
import sys


class ColourizedFormatter(logging.Formatter):
    """
    Formatter that colors the level name when writing to a terminal.
    """
    GREY = "\x1b[90m"
    GREEN = "\x1b[32m"
    YELLOW = "\x1b[33m"
    RED = "\x1b[31m"
    BOLD_RED = "\x1b[31;1m"
    RESET = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def __init__(self, fmt: str | None = None, datefmt: str | None = None, use_colors: bool | None = None):
        super().__init__(fmt=fmt, datefmt=datefmt)
        if use_colors is None:
            use_colors = sys.stdout.isatty() and not os.getenv("NO_COLOR")
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno)
        if not self.use_colors or color is None:
            return super().format(record)

        plain_levelname = record.levelname
        record.levelname = f"{color}{plain_levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = plain_levelname


def get_logging_config() -> dict:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_dir = os.getenv("LOG_DIR")

    handlers: dict[str, dict] = {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
            "formatter": "colored",
        },
    }
    active = ["console"]
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "filename": os.path.join(log_dir, "categorizer.log"),
            "formatter": "plain",
        }
        active.append("file")

    fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    server_logger = {"handlers": active, "level": "INFO", "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "colored": {
                "()": "household_categorizer.logger.ColourizedFormatter",
                "fmt": fmt,
            },
            "plain": {"format": fmt},
        },
        "handlers": handlers,
        "loggers": {
            "": {"handlers": active, "level": level},
            "httpx": {"handlers": active, "level": "WARNING", "propagate": False},
            "uvicorn": dict(server_logger),
            "uvicorn.error": dict(server_logger),
            "uvicorn.access": dict(server_logger),
        },
    }


def setup_logging() -> None:
    logging.config.dictConfig(get_logging_config())


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
