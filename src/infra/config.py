"""
Settings for the form submission scheduler.

Values come from environment variables; a local .env file is loaded first
(python-dotenv) without overriding variables already set.

Environment Variables:
- SCHEDULER_DB_PATH: SQLite job store (default: data/scheduler.db)
- SCHEDULER_POLL_INTERVAL: Seconds between poller ticks (default: 60)
- SCHEDULER_MIN_LEAD_TIME: Seconds a new job must lie in the future (default: 60)
- SCHEDULER_FORWARD_BUFFER: Seconds ahead of now a job counts as due (default: 60)
- SCHEDULER_BACKWARD_TOLERANCE: Seconds behind now a job still counts as due
  (default: 60; negative = unbounded)
- SCHEDULER_INTER_JOB_DELAY: Seconds between two jobs of a batch (default: 3)
- SCHEDULER_STALE_PROCESSING_TIMEOUT: Seconds before a PROCESSING job left by a
  crash is failed at startup (default: 600)
- SCHEDULER_AUTOSTART: Start the poller with the API server (default: true)
- STORE_FAILURE_THRESHOLD: Consecutive store failures before the circuit opens (default: 3)
- STORE_RESET_TIMEOUT: Seconds the store circuit stays open (default: 30)
- FORM_SUBMIT_URL: Form response endpoint (empty = submitter disabled)
- FORM_SUBMIT_TIMEOUT: Submit request timeout in seconds (default: 60)
- FORM_FIELD_MAP: JSON object mapping payload keys to form field names
- LOG_LEVEL: Logging level (default: INFO)
- LOG_DIR: Log file directory (default: logs)
- LOG_RETENTION_DAYS: Days of daily log files kept (default: 14; 0 = keep all)
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


logger = logging.getLogger(__name__)


def _get_env_bool(key: str, default: bool = False) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def _get_env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Invalid integer for {key}={value!r}, using default {default}")
        return default


def _get_env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Invalid number for {key}={value!r}, using default {default}")
        return default


def _get_env_json_map(key: str) -> Optional[dict[str, str]]:
    value = os.getenv(key)
    if not value:
        return None
    try:
        data = json.loads(value)
    except json.JSONDecodeError:
        logger.warning(f"{key} is not valid JSON, ignoring")
        return None
    if not isinstance(data, dict):
        logger.warning(f"{key} must be a JSON object, ignoring")
        return None
    return {str(k): str(v) for k, v in data.items()}


@dataclass(frozen=True)
class SchedulerSettings:
    db_path: Path = Path("data/scheduler.db")
    poll_interval: float = 60.0
    min_lead_time: float = 60.0
    forward_buffer: float = 60.0
    backward_tolerance: Optional[float] = 60.0
    inter_job_delay: float = 3.0
    stale_processing_timeout: float = 600.0
    autostart: bool = True
    store_failure_threshold: int = 3
    store_reset_timeout: float = 30.0
    submit_url: str = ""
    submit_timeout: float = 60.0
    field_map: Optional[dict[str, str]] = field(default=None, hash=False)
    log_level: str = "INFO"
    log_dir: Path = Path("logs")
    log_retention_days: int = 14


def load_settings(env_file: Optional[str | Path] = None) -> SchedulerSettings:
    """
    Build SchedulerSettings from the environment.

    Args:
        env_file: Optional explicit .env path (default: search from cwd)
    """
    load_dotenv(dotenv_path=env_file, override=False)

    backward = _get_env_float("SCHEDULER_BACKWARD_TOLERANCE", 60.0)

    return SchedulerSettings(
        db_path=Path(os.getenv("SCHEDULER_DB_PATH", "data/scheduler.db")),
        poll_interval=_get_env_float("SCHEDULER_POLL_INTERVAL", 60.0),
        min_lead_time=_get_env_float("SCHEDULER_MIN_LEAD_TIME", 60.0),
        forward_buffer=_get_env_float("SCHEDULER_FORWARD_BUFFER", 60.0),
        backward_tolerance=backward if backward >= 0 else None,
        inter_job_delay=_get_env_float("SCHEDULER_INTER_JOB_DELAY", 3.0),
        stale_processing_timeout=_get_env_float("SCHEDULER_STALE_PROCESSING_TIMEOUT", 600.0),
        autostart=_get_env_bool("SCHEDULER_AUTOSTART", True),
        store_failure_threshold=_get_env_int("STORE_FAILURE_THRESHOLD", 3),
        store_reset_timeout=_get_env_float("STORE_RESET_TIMEOUT", 30.0),
        submit_url=os.getenv("FORM_SUBMIT_URL", "").strip(),
        submit_timeout=_get_env_float("FORM_SUBMIT_TIMEOUT", 60.0),
        field_map=_get_env_json_map("FORM_FIELD_MAP"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_dir=Path(os.getenv("LOG_DIR", "logs")),
        log_retention_days=_get_env_int("LOG_RETENTION_DAYS", 14),
    )
