"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - The service refuses to start without a database or signing keys.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_JWT_SECRET_LENGTH = 32


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""


class Settings(BaseSettings):
    """Credential service settings, read from the environment or .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # PostgreSQL - no default, the primary must be configured explicitly
    database_url: str = ""
    database_read_url: str | None = None
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = True

    # HTTP
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Banking Intelligence API"
    api_version: str = "0.1.0"
    api_description: str = "Credential and session lifecycle for the Banking Intelligence platform"

    # Signing keys: two independent secrets (openssl rand -hex 32)
    jwt_secret: str = ""
    jwt_refresh_secret: str = ""
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    refresh_token_expire_days: int = 7
    api_token_expire_days: int = 30

    # TOTP
    totp_issuer: str = "Banking Intelligence API"
    totp_valid_window: int = 1  # 30s steps accepted either side of now
    backup_code_count: int = 10
    two_factor_disable_requires_code: bool = False

    # Accounts
    password_min_length: int = 8
    default_usage_quota: int = 1000

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"  # json | console
    metrics_enabled: bool = True
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "banking-intelligence-auth"
    trace_sample_rate: float = 1.0

    def _database_errors(self) -> list[str]:
        if not self.database_url:
            return ["DATABASE_URL is required but empty or missing"]
        if not self.database_url.startswith(("postgresql", "postgres")):
            return [f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."]
        return []

    def _secret_errors(self) -> list[str]:
        errors = []
        for env_name, value in (
            ("JWT_SECRET", self.jwt_secret),
            ("JWT_REFRESH_SECRET", self.jwt_refresh_secret),
        ):
            if not value:
                errors.append(f"{env_name} is required but empty or missing")
            elif len(value) < MIN_JWT_SECRET_LENGTH:
                errors.append(f"{env_name} must be at least {MIN_JWT_SECRET_LENGTH} characters")
        if self.jwt_secret and self.jwt_secret == self.jwt_refresh_secret:
            errors.append("JWT_REFRESH_SECRET must differ from JWT_SECRET")
        return errors

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """FAIL FAST: report every problem at once, then refuse to start."""
        errors = self._database_errors() + self._secret_errors()
        if errors:
            banner = "=" * 60
            report = "\n".join(
                ["", banner, "CRITICAL CONFIGURATION ERROR - SERVICE CANNOT START", banner]
                + [f"  ✗ {e}" for e in errors]
                + [banner, ""]
            )
            print(report, file=sys.stderr)
            raise ConfigurationError(report)
        return self

    @property
    def read_database_url(self) -> str:
        """Replica URL when configured, otherwise the primary."""
        return self.database_read_url or self.database_url


# Validated at import time
settings = Settings()


def get_settings() -> Settings:
    return settings
