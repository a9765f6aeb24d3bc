"""Logging setup for pipeline runs, configured via ``logging.config.dictConfig``."""

import logging
import logging.config


LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def setup_logging(level: str = "INFO") -> None:
    """
    Configure console logging for the pipeline modules.

    Args:
        level: Base log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    level = level.upper()
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {"format": LOG_FORMAT},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "level": level,
            },
        },
        "root": {"handlers": ["console"], "level": "WARNING"},
        "loggers": {
            name: {"level": level, "propagate": True}
            for name in (
                "pipeline",
                "cleansing_engine",
                "dimensional_builder",
                "validation_engine",
                "table_store",
            )
        },
    })
    # Spark's py4j bridge is chatty at INFO.
    logging.getLogger("py4j").setLevel(logging.WARNING)
