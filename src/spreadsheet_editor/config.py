"""Configuration management for the spreadsheet editor.

This module provides centralized configuration using pydantic-settings.
All configuration options can be set via environment variables with the
SSE_ prefix, or via a .env file in the project root.

Environment Variables:
    SSE_MAX_FILE_SIZE_MB: Maximum file upload size in MB (default: 10)
    SSE_STORAGE_DIR: Directory for document records and raw uploads
    SSE_DEFAULT_ROW_COUNT: Rows in a blank or newly added sheet (default: 50)
    SSE_DEFAULT_COLUMN_COUNT: Columns in a blank or newly added sheet (default: 26)
    SSE_EXPORT_FILE_NAME: Export file name when the document has none
    SSE_SAVE_MAX_ATTEMPTS: Write attempts before a save fails (default: 3)
    SSE_SAVE_RETRY_DELAY_SECONDS: Back-off base between save attempts (default: 0.3)
    SSE_PERSIST_LIVE_STYLES: Bake live formatting into saved data (default: false)
    SSE_AUTOSAVE_INTERVAL_SECONDS: Autosave delay, or "off" (default: 5)
    SSE_LOG_LEVEL: Logging level (default: INFO)
    SSE_DEBUG: Enable debug mode (default: false)
    SSE_CORS_ORIGINS: Comma-separated CORS origins (default: *)
    SSE_SERVER_HOST: Server bind host (default: 0.0.0.0)
    SSE_SERVER_PORT: Server bind port (default: 8000)
"""

import logging
from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables prefixed with SSE_
    or via a .env file.

    Example .env file:
        SSE_STORAGE_DIR=/var/lib/spreadsheet-editor
        SSE_LOG_LEVEL=DEBUG
        SSE_SAVE_MAX_ATTEMPTS=5
    """

    model_config = SettingsConfigDict(
        env_prefix="SSE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # =========================================================================
    # Upload & Storage Settings
    # =========================================================================

    max_file_size_mb: int = 10
    """Maximum file upload size in megabytes."""

    storage_dir: str = "/tmp/sse_documents"
    """Directory holding document records and raw uploaded bytes."""

    # =========================================================================
    # Workbook Settings
    # =========================================================================

    default_row_count: int = 50
    """Row count of blank fallback sheets and newly added sheets."""

    default_column_count: int = 26
    """Column count of blank fallback sheets and newly added sheets."""

    export_file_name: str = "export.xlsx"
    """File name used for exports when the document has no name."""

    # =========================================================================
    # Save Settings
    # =========================================================================

    save_max_attempts: int = 3
    """Number of write attempts before a save is reported as failed (1-10)."""

    save_retry_delay_seconds: float = 0.3
    """Base delay between save attempts; attempt N waits N times this value."""

    persist_live_styles: bool = False
    """Bake live formatting overrides into the saved payload."""

    autosave_interval_seconds: float | None = 5.0
    """Quiet period after the last change before an autosave; None disables it.

    Delays below the minimum gap between autosaves are raised to that gap.
    """

    # =========================================================================
    # Logging Settings
    # =========================================================================

    log_level: str = "INFO"
    """Logging level: DEBUG, INFO, WARNING, ERROR, or CRITICAL."""

    debug: bool = False
    """Enable debug mode with additional logging and error details."""

    # =========================================================================
    # Server Settings
    # =========================================================================

    cors_origins: str = "*"
    """Comma-separated list of allowed CORS origins, or * for all."""

    server_host: str = "0.0.0.0"
    """Host address for the server to bind to."""

    server_port: int = 8000
    """Port for the server to listen on."""

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid Python logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(valid_levels)}"
            )
        return upper_v

    @field_validator("max_file_size_mb")
    @classmethod
    def validate_file_size(cls, v: int) -> int:
        """Validate file size is positive and reasonable."""
        if not 1 <= v <= 500:
            raise ValueError(f"max_file_size_mb must be between 1 and 500, got {v}")
        return v

    @field_validator("default_row_count", "default_column_count")
    @classmethod
    def validate_default_dimension(cls, v: int) -> int:
        """Validate default sheet dimensions are positive."""
        if v < 1:
            raise ValueError(f"Default sheet dimensions must be at least 1, got {v}")
        return v

    @field_validator("save_max_attempts")
    @classmethod
    def validate_save_attempts(cls, v: int) -> int:
        """Validate save attempts is reasonable."""
        if not 1 <= v <= 10:
            raise ValueError(f"save_max_attempts must be between 1 and 10, got {v}")
        return v

    @field_validator("save_retry_delay_seconds")
    @classmethod
    def validate_retry_delay(cls, v: float) -> float:
        """Validate retry delay is not negative."""
        if v < 0:
            raise ValueError(f"save_retry_delay_seconds must be >= 0, got {v}")
        return v

    @field_validator("autosave_interval_seconds", mode="before")
    @classmethod
    def validate_autosave_interval(cls, v: Any) -> Any:
        """Accept "off" for disabled autosave; reject non-positive delays."""
        if v is None or (isinstance(v, str) and v.strip().lower() in {"off", ""}):
            return None
        if float(v) <= 0:
            raise ValueError(
                f"autosave_interval_seconds must be > 0 or \"off\", got {v}"
            )
        return v

    @field_validator("export_file_name")
    @classmethod
    def validate_export_file_name(cls, v: str) -> str:
        """Validate export file name is non-empty."""
        if not v.strip():
            raise ValueError("export_file_name must be a non-empty string")
        return v.strip()

    @field_validator("server_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError(f"server_port must be between 1 and 65535, got {v}")
        return v

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def max_file_size_bytes(self) -> int:
        """Get max file size in bytes."""
        return self.max_file_size_mb * 1024 * 1024

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def log_level_int(self) -> int:
        """Get log level as integer for logging module."""
        level: int = getattr(logging, self.log_level)
        return level

    def to_safe_dict(self) -> dict[str, Any]:
        """Convert settings to a dictionary suitable for logging.

        Returns:
            Dictionary representation of the settings.
        """
        return {
            "max_file_size_mb": self.max_file_size_mb,
            "storage_dir": self.storage_dir,
            "default_row_count": self.default_row_count,
            "default_column_count": self.default_column_count,
            "export_file_name": self.export_file_name,
            "save_max_attempts": self.save_max_attempts,
            "save_retry_delay_seconds": self.save_retry_delay_seconds,
            "persist_live_styles": self.persist_live_styles,
            "autosave_interval_seconds": self.autosave_interval_seconds,
            "log_level": self.log_level,
            "debug": self.debug,
            "cors_origins": self.cors_origins,
            "server_host": self.server_host,
            "server_port": self.server_port,
        }


def validate_settings_on_startup(s: Settings) -> None:
    """Validate settings on application startup.

    Args:
        s: Settings instance to validate.
    """
    logger = logging.getLogger(__name__)

    if s.cors_origins == "*" and not s.debug:
        logger.warning(
            "CORS is configured to allow all origins (*). "
            "Consider restricting this in production."
        )

    if s.persist_live_styles:
        logger.info("Live formatting will be baked into saved documents")

    logger.info(
        f"Configuration loaded: log_level={s.log_level}, debug={s.debug}, "
        f"max_file_size_mb={s.max_file_size_mb}, storage_dir={s.storage_dir}, "
        f"save_max_attempts={s.save_max_attempts}"
    )


# Create the global settings instance
settings = Settings()
