"""
Pytest configuration and shared fixtures.
"""

import os

import pytest


SCHEDULER_ENV_VARS = (
    "SCHEDULER_DB_PATH",
    "SCHEDULER_POLL_INTERVAL",
    "SCHEDULER_MIN_LEAD_TIME",
    "SCHEDULER_FORWARD_BUFFER",
    "SCHEDULER_BACKWARD_TOLERANCE",
    "SCHEDULER_INTER_JOB_DELAY",
    "SCHEDULER_STALE_PROCESSING_TIMEOUT",
    "SCHEDULER_AUTOSTART",
    "STORE_FAILURE_THRESHOLD",
    "STORE_RESET_TIMEOUT",
    "FORM_SUBMIT_URL",
    "FORM_SUBMIT_TIMEOUT",
    "FORM_FIELD_MAP",
    "LOG_LEVEL",
    "LOG_DIR",
    "LOG_RETENTION_DAYS",
)


@pytest.fixture(autouse=True, scope="function")
def isolate_scheduler_env():
    """
    Clear scheduler environment variables before each test.

    Tests set what they need with monkeypatch; values from the developer's
    shell or a previous test never leak in.
    """
    original = {key: os.environ.get(key) for key in SCHEDULER_ENV_VARS}
    for key in SCHEDULER_ENV_VARS:
        os.environ.pop(key, None)

    yield

    for key, value in original.items():
        if value is not None:
            os.environ[key] = value
        else:
            os.environ.pop(key, None)
