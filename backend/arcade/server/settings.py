"""Arcade server configuration via environment variables."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Self

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from shared.validators import RawOriginsEnvSource, parse_origins

if TYPE_CHECKING:
    from pydantic_settings.sources.base import PydanticBaseSettingsSource


class ArcadeSettings(BaseSettings):
    model_config = {"env_prefix": "ARCADE_"}

    default_rounds: int = Field(default=5, ge=1, le=50)
    intro_delay_seconds: float = Field(default=4, ge=0)
    auth_prompt_delay_seconds: float = Field(default=7, ge=0)
    load_error_exit_seconds: float = Field(default=3, ge=0)
    tick_seconds: float = Field(default=1, gt=0)
    playlist_count: int = Field(default=10, ge=1)
    max_sessions: int = Field(default=1000, ge=1)
    max_devices: int = Field(default=10000, ge=1)

    catalog_path: str | None = None  # None: packaged config/games.yaml
    draft_dir: str = Field(default="backend/data/drafts", min_length=1)
    log_dir: str = Field(default="backend/logs/arcade", min_length=1)
    cors_origins: list[str] = ["http://localhost:5173"]

    store_backend: Literal["sqlite", "http"] = "sqlite"
    database_path: str = Field(default="backend/data/arcade.db", min_length=1)
    remote_url: str = ""
    remote_api_key: str = ""

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        return parse_origins(v)

    @model_validator(mode="after")
    def _check_remote(self) -> Self:
        if self.store_backend == "http" and not self.remote_url:
            raise ValueError("ARCADE_REMOTE_URL is required when ARCADE_STORE_BACKEND=http")
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return init_settings, RawOriginsEnvSource(settings_cls), dotenv_settings, file_secret_settings
