"""Ledger configuration via environment variables."""

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from ledger.days import LOCAL_TIMEZONE, LedgerCalendar
from ledger.rules import ScoringRules

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_LOG_FORMATS = {"json", "console", ""}


class LedgerSettings(BaseSettings):
    model_config = {"env_prefix": "LEDGER_", "env_nested_delimiter": "__"}

    data_path: str = Field(default="backend/data/ledger.json", min_length=1)
    log_dir: str | None = None
    log_level: str = "INFO"
    log_format: str = ""
    timezone: str = LOCAL_TIMEZONE  # "local" or an IANA zone name
    rules: ScoringRules = ScoringRules()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in _VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(sorted(_VALID_LOG_LEVELS))}")
        return level

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        fmt = v.lower()
        if fmt not in _VALID_LOG_FORMATS:
            raise ValueError("log_format must be 'json', 'console', or empty")
        return fmt

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        if v == LOCAL_TIMEZONE:
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown time zone '{v}'") from exc
        return v

    @property
    def json_logs(self) -> bool:
        return self.log_format == "json"

    def calendar(self) -> LedgerCalendar:
        return LedgerCalendar.from_name(self.timezone)
