import logging
from logging.config import dictConfig

SERVICE_LOGGERS = ("api", "core", "ledger", "promotion", "webhooks")


def build_logging_config(level: str = "INFO") -> dict:
    level = level.upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "uvicorn": {"handlers": ["console"], "level": "INFO", "propagate": False},
            "fastapi": {"handlers": ["console"], "level": "INFO", "propagate": False},
            **{name: {"handlers": ["console"], "level": level, "propagate": False} for name in SERVICE_LOGGERS},
        },
        "root": {"level": level, "handlers": ["console"]},
    }


def setup_logging(level: str = "INFO") -> None:
    """Apply the service logging configuration."""
    dictConfig(build_logging_config(level))
    logging.getLogger(__name__).debug("Logging configured at level %s", level.upper())
