"""Configuration settings for buildstash.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.

Settings are only read at the edges (the CLI); the core takes an explicit
CoordinatorConfig built from them.
"""

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_data_dir() -> Path:
    """Return the default data directory."""
    return Path.home() / ".local" / "share" / "buildstash"


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = _default_data_dir() / "stash.sqlite"
    return f"sqlite:///{db_path}"


def _default_lock_dir() -> Path:
    """Return the default lock directory."""
    return Path.home() / ".cache" / "buildstash" / "locks"


def _default_work_dir() -> Path:
    """Return the default directory for build logs and image id files."""
    return _default_data_dir() / "builds"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the BUILDSTASH_
    prefix. The CodeArtifact demo values also accept the unprefixed AWS
    variable names.
    """

    model_config = SettingsConfigDict(
        env_prefix="BUILDSTASH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Demo credential surface
    codeartifact_domain: str = Field(
        default="elisabethtest",
        validation_alias=AliasChoices(
            "BUILDSTASH_CODEARTIFACT_DOMAIN", "AWS_CODEARTIFACT_DOMAIN"
        ),
        description="CodeArtifact domain passed as a build argument",
    )
    aws_account_id: str = Field(
        default="1234567890",
        validation_alias=AliasChoices("BUILDSTASH_AWS_ACCOUNT_ID", "AWS_ACCOUNT_ID"),
        description="AWS account id passed as a build argument",
    )
    aws_region: str = Field(
        default="us-east-1",
        validation_alias=AliasChoices("BUILDSTASH_AWS_REGION", "AWS_REGION"),
        description="AWS region passed as a build argument",
    )
    codeartifact_auth_token: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "BUILDSTASH_CODEARTIFACT_AUTH_TOKEN", "CODEARTIFACT_AUTH_TOKEN"
        ),
        description="Static token used when no token endpoint is configured",
    )
    token_url: str | None = Field(
        default=None,
        description="HTTP endpoint issuing short-lived tokens",
    )
    token_field: str = Field(
        default="authorizationToken",
        description="JSON field holding the token in the endpoint response",
    )

    # Paths
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database URL for persisted stash records",
    )
    lock_dir: Path = Field(
        default_factory=_default_lock_dir,
        description="Directory for cross-process stash lock files",
    )
    work_dir: Path = Field(
        default_factory=_default_work_dir,
        description="Directory for build logs and image id files",
    )

    # Operational
    secret_arg_name: str = Field(
        default="CODEARTIFACT_TOKEN",
        description="Build argument that receives the staged secret",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Timeouts (in seconds)
    fetch_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single credential fetch",
    )
    build_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for builds",
    )
    lock_timeout: float = Field(
        default=300.0,
        gt=0,
        description="Timeout for acquiring a stash lock",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Secret fields are rendered masked.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
