from datetime import tzinfo
from pathlib import Path
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from studyloop.domain.constants import REQUEST_TIMEOUT

from .providers import local_timezone


def config_file_candidates() -> list[Path]:
    return [
        Path.home() / ".config/studyloop/config.toml",
        Path.home() / ".studyloop.toml",
    ]


class AppConfig(BaseSettings):
    """
    Configuration model for studyloop.
    Supports loading from:
    1. Config file (~/.config/studyloop/config.toml or ~/.studyloop.toml)
    2. Environment variables (STUDYLOOP_*)
    3. Manual overrides (CLI / HTTP), which win
    """

    model_config = SettingsConfigDict(
        env_prefix="STUDYLOOP_",
        extra="ignore",
    )

    # Identity
    owner: str = "local"

    # Store selection
    store: Literal["memory", "sqlite", "hosted"] = "sqlite"
    db_path: Path = Field(
        default_factory=lambda: Path.home() / ".local/share/studyloop/studyloop.db"
    )
    hosted_url: str | None = None
    hosted_api_key: str | None = None
    request_timeout: float = REQUEST_TIMEOUT

    # Calendar bucketing; None means the host's local zone
    timezone: str | None = None

    # Logging: 0 warnings only, 1 info, 2 debug
    verbose: int = 0

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        from pydantic_settings import TomlConfigSettingsSource

        # Find the first existing file
        toml_file = None
        for f in config_file_candidates():
            if f.exists():
                toml_file = f
                break

        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        else:
            return (
                init_settings,
                env_settings,
            )

    @field_validator("db_path", mode="before")
    @classmethod
    def expand_path(cls, v: Any) -> Path:
        return Path(v).expanduser()

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v: str | None) -> str | None:
        if v is None:
            return None
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone: {v}") from None
        return v

    def tzinfo(self) -> tzinfo:
        return ZoneInfo(self.timezone) if self.timezone else local_timezone()


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. TOML config file (if exists)
    3. Environment variables (STUDYLOOP_*)
    4. cli_overrides (None values are ignored)
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    return AppConfig(**overrides)
