"""Organizer configuration via pydantic-settings (.env + env vars)."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger
from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError
from .models import DEFAULT_EXCLUDED_DIRS, ProviderName

if TYPE_CHECKING:
    from .api.base import MetadataProvider


class OrganizerConfig(BaseSettings):
    """All organizer configuration with layered resolution:
    .env file < environment variables < constructor kwargs.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # -- Directories --
    data_dir: Path = Path.home() / ".local" / "share" / "audiobook-organizer"
    log_dir: Path = Path.home() / ".local" / "state" / "audiobook-organizer"
    cache_filename: str = "metadata_cache.json"
    library_filename: str = "library.json"

    # -- Behavior --
    log_level: str = "INFO"
    recursive_scan: bool = True
    match_on_scan: bool = False
    read_tags: bool = True
    excluded_dirs: list[str] = list(DEFAULT_EXCLUDED_DIRS)
    rename_pattern: str = "{Author} - {Series} {SeriesPosition} - {Title}"

    # -- Cache --
    cache_save_delay: float = 0.3

    # -- Providers (tried in this order) --
    providers: list[ProviderName] = [ProviderName.GOOGLE_BOOKS, ProviderName.OPEN_LIBRARY]
    provider_timeout: float = 10.0
    google_books_api_key: str = ""
    audible_region: str = "com"
    max_parallel_matches: int = 4

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        if value.upper() not in ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return value.upper()

    @property
    def cache_path(self) -> Path:
        """Path to the metadata cache JSON file."""
        return self.data_dir / self.cache_filename

    @property
    def library_path(self) -> Path:
        """Path to the persisted library snapshot."""
        return self.data_dir / self.library_filename

    @property
    def lock_dir(self) -> Path:
        return self.data_dir / "locks"

    def ensure_dirs(self) -> None:
        """Create all required directories if they don't exist."""
        for d in (self.data_dir, self.log_dir, self.lock_dir):
            d.mkdir(parents=True, exist_ok=True)

    def build_providers(self) -> list[MetadataProvider]:
        """Instantiate providers in configured priority order."""
        from .api.audible import AudibleProvider
        from .api.google_books import GoogleBooksProvider
        from .api.open_library import OpenLibraryProvider

        built: list[MetadataProvider] = []
        for name in self.providers:
            if name == ProviderName.GOOGLE_BOOKS:
                built.append(GoogleBooksProvider(
                    api_key=self.google_books_api_key, timeout=self.provider_timeout,
                ))
            elif name == ProviderName.OPEN_LIBRARY:
                built.append(OpenLibraryProvider(timeout=self.provider_timeout))
            elif name == ProviderName.AUDIBLE:
                built.append(AudibleProvider(
                    region=self.audible_region, timeout=self.provider_timeout,
                ))
        return built

    def setup_logging(self) -> None:
        """Configure loguru for the organizer."""
        logger.remove()  # Remove default stderr handler

        log_format = (
            "{time:YYYY-MM-DDTHH:mm:ssZ} | {level:<8} | "
            "{extra[stage]:<10} | {message}"
        )

        def _default_extra(record):
            record["extra"].setdefault("stage", "")
            return True

        logger.add(
            sys.stderr,
            format=log_format,
            level=self.log_level,
            filter=_default_extra,
        )

        self.log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(self.log_dir / "organizer.log"),
            format=log_format,
            level="DEBUG",
            rotation="10 MB",
            retention="30 days",
            filter=_default_extra,
        )


def load_config(**overrides) -> OrganizerConfig:
    """Build the config, reporting invalid values as ConfigError."""
    try:
        return OrganizerConfig(**overrides)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
