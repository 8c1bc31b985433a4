"""
Logging for the detection pipeline.

Library modules log through `logging.getLogger(__name__)`, so everything
under the package root logger is configured by one setup_logger() call
from the CLI (or left alone when the caller configures logging itself).
"""

import logging
import sys
from pathlib import Path
from typing import Optional

# Package root logger; module loggers (src.detection.*) propagate to it
ROOT_LOGGER_NAME = __name__.split(".")[0]

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _parse_level(level: str) -> int:
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    level: str = "INFO",
    log_file: Optional[str] = None,
    console: bool = True,
) -> logging.Logger:
    """
    Configure `name` to write to stdout and/or a log file.

    Calling it again for the same name replaces the previous handlers, so
    the CLI can reconfigure after loading its config.

    Args:
        name: Logger to configure; defaults to the package root.
        level: Level name, e.g. "DEBUG" or "warning".
        log_file: Also append records here (parent dirs are created).
        console: Write records to stdout.

    Raises:
        ValueError: Unknown level name.
    """
    logger = logging.getLogger(name)
    logger.setLevel(_parse_level(level))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handlers = []
    if console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """
    Logger for `name`, configured with defaults only if nothing would
    otherwise handle its records (neither it nor any ancestor has handlers).
    """
    logger = logging.getLogger(name)
    if not logger.hasHandlers():
        logger = setup_logger(name)
    return logger


class LoggerMixin:
    """Gives a class a `logger` named after its module and class."""

    @property
    def logger(self) -> logging.Logger:
        try:
            return self._logger
        except AttributeError:
            cls = type(self)
            self._logger = get_logger(f"{cls.__module__}.{cls.__name__}")
            return self._logger


class ProgressLogger:
    """
    Context manager that reports how far a batch job has got.

    One line on entry, one each time another `log_interval` percent of
    `total` is done (and always on the last item), and a closing line that
    says whether the block finished or raised.

    Usage:
        with ProgressLogger(len(paths), logger, "Post-processing") as progress:
            for path in paths:
                ...
                progress.update()
    """

    def __init__(
        self,
        total: int,
        logger: Optional[logging.Logger] = None,
        description: str = "Processing",
        log_interval: int = 10,
    ):
        self.total = total
        self.logger = logger or get_logger()
        self.description = description
        self.log_interval = log_interval

        self.current = 0
        self.next_log_pct = log_interval

    def update(self, n: int = 1) -> None:
        self.current += n
        pct = 100 * self.current // self.total if self.total > 0 else 100

        if pct < self.next_log_pct and self.current < self.total:
            return

        self.logger.info(f"{self.description}: {self.current}/{self.total} ({pct}%)")
        self.next_log_pct = (pct // self.log_interval + 1) * self.log_interval

    def __enter__(self) -> "ProgressLogger":
        self.logger.info(f"{self.description}: Starting ({self.total} items)")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is None:
            self.logger.info(f"{self.description}: Completed")
        else:
            self.logger.error(f"{self.description}: Failed - {exc_val}")
