from __future__ import annotations

import json
import logging

import pytest

from liftlog_metrics.config import Config
from liftlog_metrics.errors import ConfigError, LiftlogError
from liftlog_metrics.logging import JSONFormatter, TextFormatter

_ENV = (
    "DATABASE_URL",
    "LIFTLOG_DOCUMENTS_TABLE",
    "LIFTLOG_LOG_FORMAT",
    "LIFTLOG_LOG_LEVEL",
    "LIFTLOG_TIMEZONE",
    "LIFTLOG_METRICS_OUTBOX",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)


def test_config_defaults() -> None:
    cfg = Config.from_env()
    assert cfg.database_url is None
    assert cfg.documents_table == "documents"
    assert cfg.log_format == "json"
    assert cfg.log_level == "INFO"
    assert cfg.timezone is None
    assert cfg.metrics_outbox is False


def test_config_requires_database_url_when_asked() -> None:
    with pytest.raises(ConfigError, match="DATABASE_URL must be set"):
        Config.from_env(require_database=True)


def test_config_error_is_liftlog_error() -> None:
    assert issubclass(ConfigError, LiftlogError)


def test_config_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgresql://app@db/liftlog")
    monkeypatch.setenv("LIFTLOG_DOCUMENTS_TABLE", "liftlog_documents")
    monkeypatch.setenv("LIFTLOG_LOG_FORMAT", "text")
    monkeypatch.setenv("LIFTLOG_LOG_LEVEL", "debug")
    monkeypatch.setenv("LIFTLOG_TIMEZONE", "Europe/Berlin")
    monkeypatch.setenv("LIFTLOG_METRICS_OUTBOX", "yes")

    cfg = Config.from_env(require_database=True)
    assert cfg.database_url == "postgresql://app@db/liftlog"
    assert cfg.documents_table == "liftlog_documents"
    assert cfg.log_format == "text"
    assert cfg.log_level == "DEBUG"
    assert cfg.timezone == "Europe/Berlin"
    assert cfg.metrics_outbox is True


def test_config_rejects_unknown_timezone(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LIFTLOG_TIMEZONE", "Mars/Olympus")
    with pytest.raises(ConfigError, match="LIFTLOG_TIMEZONE"):
        Config.from_env()


def test_json_formatter_includes_liftlog_extras() -> None:
    record = logging.LogRecord(
        name="liftlog_metrics.engine",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Wrote session %s",
        args=("s1",),
        exc_info=None,
    )
    record.liftlog_user_id = "user-1"
    record.unrelated = "dropped"

    entry = json.loads(JSONFormatter().format(record))
    assert entry["message"] == "Wrote session s1"
    assert entry["level"] == "INFO"
    assert entry["liftlog_user_id"] == "user-1"
    assert "unrelated" not in entry


def test_text_formatter_appends_context() -> None:
    record = logging.LogRecord(
        name="liftlog_metrics.metrics_updater",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Rebuilt metrics",
        args=(),
        exc_info=None,
    )
    record.liftlog_exercise_id = "bench"

    line = TextFormatter().format(record)
    assert line.endswith("Rebuilt metrics [exercise_id=bench]")
