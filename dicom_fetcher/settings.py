"""
Configuration settings for DICOM Fetcher.

This module provides a settings class for DICOM Fetcher, with support for loading
configuration from TOML files and environment variables.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)


class Settings(BaseSettings):
    """Main settings class for DICOM Fetcher.

    This class handles loading configuration from TOML files and environment variables,
    with support for custom settings sources.
    """

    model_config = SettingsConfigDict(
        toml_file=["settings.toml", "settings.custom.toml"],
        env_prefix="FETCHER_",
        extra="ignore",
        populate_by_name=True,
    )

    # Server settings
    port: int = 8080
    host: str = "127.0.0.1"
    debug: bool = False

    # Upstream Orthanc settings
    orthanc_url: str = "http://localhost:8042"
    # Pre-encoded Basic auth token, same variable the viewer proxy routes use
    orthanc_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("orthanc_token", "FETCHER_ORTHANC_TOKEN", "ORTHANC_TOKEN"),
    )
    orthanc_username: str | None = None
    orthanc_password: str | None = None
    request_timeout: float = 30.0
    max_connections: int = 100

    # Batch fetch settings
    max_concurrency: int = 16
    batch_timeout: float = 120.0
    fetch_retry_count: int = 2
    fetch_retry_delay: float = 0.5
    fetch_retry_max_delay: float = 5.0
    fetch_retry_jitter: bool = True

    # Cache settings
    cache_ttl_hours: float = 24.0
    cache_max_size_mb: int = 512
    study_cache_max_entries: int = 256
    cache_cleanup_interval: int = 300

    # Logging settings
    log_level: str = "INFO"
    log_to_file: bool = False
    log_dir: str | None = None
    log_rotation: str = "20 MB"
    log_retention: str = "1 week"
    log_format: str | None = None  # Use default if None

    @property
    def cache_ttl_seconds(self) -> float:
        """Get cache time-to-live in seconds."""
        return self.cache_ttl_hours * 3600

    @property
    def cache_max_size_bytes(self) -> int:
        """Get the image cache byte cap."""
        return self.cache_max_size_mb * 1024**2

    @property
    def has_orthanc_credentials(self) -> bool:
        """Whether any form of upstream credentials is configured."""
        return bool(self.orthanc_token or (self.orthanc_username and self.orthanc_password))

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize the sources for settings.

        Priority order: explicit arguments, environment variables, then TOML config files
        """
        return init_settings, env_settings, TomlConfigSettingsSource(settings_cls)

    def get_log_dir(self) -> Path:
        """Get the log directory path.

        Returns:
            Path to the log directory. Uses log_dir if specified,
            otherwise a ``logs`` directory under the current working directory.
        """
        if self.log_dir:
            return Path(self.log_dir)
        return Path.cwd() / "logs"


@lru_cache
def get_settings() -> Settings:
    """Get the settings instance, with caching.

    Returns:
        Cached Settings instance
    """
    return Settings()


# Create a global settings instance for easy imports
settings = get_settings()
