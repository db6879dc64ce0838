import os
from dataclasses import dataclass

from .errors import ConfigError
from .utils import normalize_timezone_name

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    database_url: str | None = None
    documents_table: str = "documents"
    log_format: str = "json"
    log_level: str = "INFO"
    timezone: str | None = None
    metrics_outbox: bool = False

    @classmethod
    def from_env(cls, *, require_database: bool = False) -> "Config":
        database_url = os.environ.get("DATABASE_URL") or None
        if require_database and not database_url:
            raise ConfigError("DATABASE_URL must be set")

        raw_timezone = os.environ.get("LIFTLOG_TIMEZONE")
        timezone_name = normalize_timezone_name(raw_timezone)
        if raw_timezone and timezone_name is None:
            raise ConfigError(f"LIFTLOG_TIMEZONE is not a valid IANA timezone: {raw_timezone!r}")

        return cls(
            database_url=database_url,
            documents_table=os.environ.get("LIFTLOG_DOCUMENTS_TABLE", "documents"),
            log_format=os.environ.get("LIFTLOG_LOG_FORMAT", "json"),
            log_level=os.environ.get("LIFTLOG_LOG_LEVEL", "INFO").upper(),
            timezone=timezone_name,
            metrics_outbox=os.environ.get("LIFTLOG_METRICS_OUTBOX", "").strip().lower() in _TRUTHY,
        )
