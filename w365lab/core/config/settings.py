# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application configuration settings using Pydantic Settings.

This module provides centralized configuration management for w365lab.
Settings are loaded from environment variables (and an optional .env file)
with sensible defaults.

The Settings class is the main entry point and aggregates all subsettings.
A singleton instance is provided via get_settings().

Example:
    >>> from w365lab.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> print(settings.lab.max_students)
    100
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Self

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GraphSettings(BaseSettings):
    """Microsoft Graph connection and app-only credential configuration.

    The app registration needs application permissions for users, groups,
    administrative units, directory roles and Intune RBAC
    (DeviceManagementRBAC.ReadWrite.All).

    Attributes:
        tenant_id: Entra ID tenant (directory) identifier.
        client_id: Application (client) identifier.
        client_secret: Client secret for the client credentials flow.
        authority_host: Login endpoint host.
        base_url: Graph v1.0 endpoint.
        beta_url: Graph beta endpoint (Intune RBAC lives here).
        timeout: Request timeout in seconds.
        max_retries: Retries on throttling (429/503/504) responses.
        access_token: Pre-acquired bearer token; when set, no client
            credentials are needed.
    """

    model_config = SettingsConfigDict(
        env_prefix="GRAPH_",
        extra="ignore",
    )

    tenant_id: str = ""
    client_id: str = ""
    client_secret: SecretStr = SecretStr("")
    authority_host: str = "https://login.microsoftonline.com"
    base_url: str = "https://graph.microsoft.com/v1.0"
    beta_url: str = "https://graph.microsoft.com/beta"
    timeout: float = 30.0
    max_retries: int = 3
    access_token: SecretStr | None = None

    @property
    def authority(self) -> str:
        """Build the tenant-specific authority URL."""
        return f"{self.authority_host.rstrip('/')}/{self.tenant_id}"

    @property
    def scopes(self) -> list[str]:
        """Scopes requested for the app-only Graph token."""
        return ["https://graph.microsoft.com/.default"]


class PropagationSettings(BaseSettings):
    """Read-after-write propagation policy for directory writes.

    Entra ID and Intune are eventually consistent: an entity created a
    moment ago may not be returned by the next lookup. After every create
    the provisioners wait initial_delay seconds, then retry the lookup with
    exponential backoff until max_attempts lookups have been made.

    Attributes:
        initial_delay: Seconds to wait after a create before the first lookup.
        backoff_factor: Multiplier applied to the delay after each miss.
        max_delay: Upper bound for a single wait.
        max_attempts: Number of lookups before giving up.
    """

    model_config = SettingsConfigDict(
        env_prefix="PROPAGATION_",
        extra="ignore",
    )

    initial_delay: float = 2.0
    backoff_factor: float = 2.0
    max_delay: float = 30.0
    max_attempts: int = 5


class LabSettings(BaseSettings):
    """Training lab conventions.

    Attributes:
        domain: Verified domain for lab accounts. Falls back to the tenant's
            default domain when empty.
        max_students: Upper bound accepted for the student count.
        directory_role_template: Directory role granted per administrative unit.
        role_display_name: Display name of the shared custom Intune role.
        usage_location: Usage location set on created users (needed for licensing).
        log_dir: Directory for timestamped run logs.
        output_dir: Directory for credential and outcome CSV files.
    """

    model_config = SettingsConfigDict(
        env_prefix="LAB_",
        extra="ignore",
    )

    domain: str = ""
    max_students: int = 100
    directory_role_template: str = "User Administrator"
    role_display_name: str = "Lab Intune Admin"
    usage_location: str = "US"
    log_dir: Path = Path("logs")
    output_dir: Path = Path("output")


class Settings(BaseSettings):
    """Main application settings aggregating all subsettings.

    Use get_settings() to obtain a cached singleton instance.

    Attributes:
        environment: Current environment (development, staging, production).
        debug: Enable debug mode.
        log_level: Logging level.
        graph: Microsoft Graph settings.
        propagation: Read-after-write propagation policy.
        lab: Training lab conventions.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    graph: GraphSettings = Field(default_factory=GraphSettings)
    propagation: PropagationSettings = Field(default_factory=PropagationSettings)
    lab: LabSettings = Field(default_factory=LabSettings)

    @model_validator(mode="after")
    def validate_lab_bounds(self) -> Self:
        """Validate lab limits.

        Raises:
            ValueError: If max_students is outside 1..100.
        """
        if not 1 <= self.lab.max_students <= 100:
            raise ValueError("LAB_MAX_STUDENTS must be between 1 and 100.")
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Call this if you need to reload settings from environment.
    Useful for testing.
    """
    get_settings.cache_clear()
