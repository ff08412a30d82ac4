"""
Configuration and logging tests.
"""
import json
import logging

import pytest
from pydantic import ValidationError

from compute_fabric.api.config import Settings
from compute_fabric.core.logging import (
    LOG_FILE_NAME,
    CorrelationIdFilter,
    JsonFormatter,
    configure_logging,
    log_with_context,
    set_correlation_id,
)


def test_default_settings(monkeypatch):
    """Defaults match the published pricing and container limits."""
    monkeypatch.delenv("COMPUTE_RATE_PER_MINUTE", raising=False)
    settings = Settings(_env_file=None)
    assert settings.COMPUTE_RATE_PER_MINUTE == 0.10
    assert settings.PROVIDER_PAYOUT_SHARE == 0.8
    assert settings.FAILED_JOB_COST_FACTOR == 0.5
    assert settings.STRIPE_SECRET_KEY is None
    assert settings.CONTAINER_MEMORY_LIMIT == "4g"
    assert settings.SCHEDULER_INTERVAL_SECONDS == 10.0
    assert settings.LOG_DIR is None


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("COMPUTE_RATE_PER_MINUTE", "0.25")
    monkeypatch.setenv("SCHEDULER_ENABLED", "false")
    settings = Settings(_env_file=None)
    assert settings.COMPUTE_RATE_PER_MINUTE == 0.25
    assert settings.SCHEDULER_ENABLED is False


@pytest.mark.parametrize("limit", ["4g", "4G", "512M", "1024", "2b"])
def test_container_memory_limit_accepts_docker_sizes(limit):
    assert Settings(_env_file=None, CONTAINER_MEMORY_LIMIT=limit).CONTAINER_MEMORY_LIMIT == limit


@pytest.mark.parametrize("limit", ["lots", "4 GB", "4gb", "", "-1g"])
def test_container_memory_limit_rejected_at_startup(limit):
    """A bad limit fails when settings load, not when the first job is matched."""
    with pytest.raises(ValidationError):
        Settings(_env_file=None, CONTAINER_MEMORY_LIMIT=limit)


@pytest.mark.parametrize("cpus", [0, -1.5])
def test_container_cpu_limit_must_be_positive(cpus):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, CONTAINER_CPU_LIMIT=cpus)


def test_scheduler_refuses_in_memory_database():
    """The scheduler thread cannot share the single in-memory connection."""
    with pytest.raises(ValidationError):
        Settings(_env_file=None, DATABASE_URL="sqlite://", SCHEDULER_ENABLED=True)
    with pytest.raises(ValidationError):
        Settings(_env_file=None, DATABASE_URL="sqlite:///:memory:", SCHEDULER_ENABLED=True)

    assert Settings(_env_file=None, DATABASE_URL="sqlite://", SCHEDULER_ENABLED=False).DATABASE_URL == "sqlite://"


def test_json_formatter_includes_correlation_and_context():
    set_correlation_id("cid-42")
    logger = logging.getLogger("compute_fabric.tests")
    records = []

    class Capture(logging.Handler):
        def emit(self, record):
            records.append(record)

    handler = Capture()
    handler.addFilter(CorrelationIdFilter())
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    try:
        log_with_context(logger, "info", "charged", job_id="job_1", amount="0.50")
    finally:
        logger.removeHandler(handler)
        set_correlation_id("")

    payload = json.loads(JsonFormatter().format(records[0]))
    assert payload["message"] == "charged"
    assert payload["level"] == "INFO"
    assert payload["correlation_id"] == "cid-42"
    assert payload["job_id"] == "job_1"
    assert payload["amount"] == "0.50"


def test_configure_logging_writes_to_log_dir(tmp_path):
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    log_dir = tmp_path / "logs"
    try:
        configure_logging("INFO", log_dir=log_dir)
        logging.getLogger("compute_fabric.tests").info("hello file")
        for handler in root.handlers:
            handler.flush()
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)

    content = (log_dir / LOG_FILE_NAME).read_text()
    assert "hello file" in content
    assert "[-]" in content
