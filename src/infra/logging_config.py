"""
Logging configuration module.

Console output plus one log file per calendar day under LOG_DIR:

    logs/form_scheduler_YYYYMMDD_<START_HHMMSS>.log

START_HHMMSS is fixed at process start, so every restart of the scheduler
opens a new file and a crash/restart sequence is visible from the file names
alone. Files older than the retention window are removed on rollover.
"""

import logging
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

# Parent logger of every module logger in this project (src.scheduler.*, src.api.*)
ROOT_LOGGER_NAME = "src"

LOG_FILE_PREFIX = "form_scheduler"
DEFAULT_RETENTION_DAYS = 14

# Process start time is captured once and reused for all daily logs
_PROCESS_START_TIME: Optional[str] = None


def process_start_stamp() -> str:
    """HHMMSS of the first call in this process."""
    global _PROCESS_START_TIME
    if _PROCESS_START_TIME is None:
        _PROCESS_START_TIME = datetime.now().strftime("%H%M%S")
    return _PROCESS_START_TIME


class DailyRotatingFileHandler(logging.FileHandler):
    """
    File handler that switches to a new file when the local date changes.

    Unlike TimedRotatingFileHandler the active file is never renamed; each day
    is written to its own dated name from the start.
    """

    def __init__(
        self,
        log_dir: str | Path = "logs",
        retention_days: int = DEFAULT_RETENTION_DAYS,
        clock: Callable[[], datetime] = datetime.now,
        encoding: str = "utf-8",
    ):
        """
        Args:
            log_dir: Directory for log files (created if missing)
            retention_days: Dated files older than this are deleted on
                rollover; 0 keeps everything
            clock: Local-time source (injectable for tests)
            encoding: File encoding
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.retention_days = retention_days
        self._clock = clock
        self._start_hhmmss = process_start_stamp()
        self._day = self._clock().date()

        super().__init__(self.path_for(self._day), mode="a", encoding=encoding)
        self.purge_expired()

    @property
    def current_day(self) -> date:
        return self._day

    def path_for(self, day: date) -> str:
        return str(self.log_dir / f"{LOG_FILE_PREFIX}_{day:%Y%m%d}_{self._start_hhmmss}.log")

    def emit(self, record: logging.LogRecord) -> None:
        today = self._clock().date()
        if today != self._day:
            self._roll_over(today)
        super().emit(record)

    def _roll_over(self, day: date) -> None:
        if self.stream is not None:
            self.stream.close()
            self.stream = None
        self._day = day
        self.baseFilename = self.path_for(day)
        self.stream = self._open()
        self.purge_expired()

    def purge_expired(self) -> list[Path]:
        """
        Delete this project's dated log files older than the retention window.

        Returns:
            The removed paths
        """
        if self.retention_days <= 0:
            return []

        cutoff = self._day - timedelta(days=self.retention_days)
        removed = []
        for path in self.log_dir.glob(f"{LOG_FILE_PREFIX}_*.log"):
            stamp = path.stem[len(LOG_FILE_PREFIX) + 1:].split("_", 1)[0]
            try:
                day = datetime.strptime(stamp, "%Y%m%d").date()
            except ValueError:
                continue
            if day < cutoff:
                path.unlink(missing_ok=True)
                removed.append(path)
        return removed


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[str | Path] = "logs",
    retention_days: int = DEFAULT_RETENTION_DAYS,
) -> logging.Logger:
    """
    Configure project logging and return the project root logger.

    Console output always; a daily file under `log_dir` unless log_dir is None.

    Args:
        log_level (str): Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files, or None to disable file logging
        retention_days: Days of log files kept (0 = keep all)

    Returns:
        logging.Logger: Configured logger instance
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(numeric_level)

    # Prevent propagation to root logger (avoid duplicate logs)
    logger.propagate = False

    # Remove existing handlers (prevent duplicates)
    if logger.handlers:
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_dir is not None:
        file_handler = DailyRotatingFileHandler(log_dir=log_dir, retention_days=retention_days)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        logger.info(f"Logging started - level: {log_level}, file: {file_handler.baseFilename}")
    else:
        logger.info(f"Logging started - level: {log_level}")

    return logger
