"""Logging configuration for Router Monitor.

Everything logs under the ``routermon`` namespace. The log file keeps the
thread name on every line because poll tasks, timer ticks and the event
bus worker all log concurrently; the console shows the short form.

Usage:
    from config.logging_config import setup_logging, get_logger

    setup_logging(data_dir=Path.home() / ".router-monitor")

    logger = get_logger(__name__)
    logger.info("Scheduler started")
"""
import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from config.constants import STORAGE


# Module-level logger cache
_loggers: dict = {}
_initialized: bool = False
_root_logger: Optional[logging.Logger] = None

ROOT_LOGGER_NAME = 'routermon'

FILE_FORMAT = '%(asctime)s [%(threadName)s] %(name)s %(levelname)s: %(message)s'
CONSOLE_FORMAT = '%(asctime)s %(levelname)s %(name)s: %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Libraries that are chatty at INFO/DEBUG about every request or PDU
NOISY_LIBRARIES = ('urllib3', 'requests', 'pysnmp', 'asyncio')


class RouterMonitorFormatter(logging.Formatter):
    """Console formatter that colors the level name on a TTY."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        self.use_colors = use_colors and sys.stderr.isatty()
        super().__init__(fmt=CONSOLE_FORMAT, datefmt=DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_colors:
            return super().format(record)
        # Copy so the file handler never sees escape codes
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{self.COLORS.get(record.levelname, '')}{record.levelname}{self.RESET}"
        return super().format(record)


def _quiet_libraries(debug: bool) -> None:
    level = logging.INFO if debug else logging.WARNING
    for name in NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(level)


def setup_logging(
    data_dir: Optional[Path] = None,
    debug: bool = False,
    console_output: bool = True,
    log_to_file: bool = True
) -> logging.Logger:
    """Initialize the logging system.

    Safe to call again (tests do); existing handlers are closed and replaced.

    Args:
        data_dir: Directory for the log file. Defaults to ~/.router-monitor/
        debug: Enable debug-level logging.
        console_output: Also log to stderr.
        log_to_file: Write logs to a rotating file in ``data_dir``.

    Returns:
        The ``routermon`` logger.
    """
    global _initialized, _root_logger

    if data_dir is None:
        data_dir = Path.home() / STORAGE.DATA_DIR_NAME
    data_dir = Path(data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    if log_to_file:
        file_handler = RotatingFileHandler(
            data_dir / STORAGE.LOG_FILE,
            maxBytes=STORAGE.LOG_MAX_BYTES,
            backupCount=STORAGE.LOG_BACKUP_COUNT,
            encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        root_logger.addHandler(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
        console_handler.setFormatter(RouterMonitorFormatter())
        root_logger.addHandler(console_handler)

    _quiet_libraries(debug)

    root_logger.info(
        f"Logging initialized - level={'DEBUG' if debug else 'INFO'}, "
        f"file={log_to_file}, console={console_output}"
    )

    _initialized = True
    _root_logger = root_logger
    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Logger for a module, named ``routermon.<package>.<module>``.

    Works before ``setup_logging`` (falls back to ``basicConfig``).
    """
    # "monitor.scheduler" rather than a full dotted path
    short_name = '.'.join(name.split('.')[-2:])

    if short_name not in _loggers:
        if not _initialized:
            logging.basicConfig(level=logging.INFO)
        _loggers[short_name] = logging.getLogger(f'{ROOT_LOGGER_NAME}.{short_name}')

    return _loggers[short_name]


def log_exception(logger: logging.Logger, message: str, exc: Exception) -> None:
    """Log an exception with traceback and its type as an ``extra`` field."""
    logger.error(
        f"{message}: {type(exc).__name__}: {exc}",
        exc_info=True,
        extra={'exception_type': type(exc).__name__}
    )


class LogContext:
    """Context manager that logs how long an operation took.

    ``duration_ms`` is available after the block exits, so callers can
    publish it (the scheduler puts it in POLL_COMPLETED).

    Example:
        >>> with LogContext(logger, "Poll cycle") as ctx:
        ...     scheduler.run_cycle()
        >>> ctx.duration_ms
    """

    def __init__(self, logger: logging.Logger, operation: str, level: int = logging.DEBUG):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.start_time: Optional[datetime] = None
        self.duration_ms: float = 0.0

    def __enter__(self):
        self.start_time = datetime.now()
        self.logger.log(self.level, f"{self.operation} starting...")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (datetime.now() - self.start_time).total_seconds() * 1000

        if exc_type:
            self.logger.error(
                f"{self.operation} failed after {self.duration_ms:.0f}ms: {exc_val}"
            )
        else:
            self.logger.log(
                self.level,
                f"{self.operation} completed in {self.duration_ms:.0f}ms"
            )

        return False  # Don't suppress exceptions
