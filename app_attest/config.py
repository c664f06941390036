"""
Configuration management for the attestation client.
Uses Pydantic settings for type-safe configuration with environment variable support.
"""

import re
from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_ID_PATTERN = re.compile(r"^[A-Z0-9]{10}\.[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)+$")


class TLSPolicy(str, Enum):
    """How the transport decides whether to trust the verifier's certificate."""

    PLATFORM = "platform"
    CA_BUNDLE = "ca_bundle"
    TRUST_ALL = "trust_all"


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="APP_ATTEST_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Verifier configuration
    verifier_base_url: str = Field(default="https://localhost:3000")
    request_timeout: float = Field(default=10.0, gt=0)

    # Identity bound into every payload
    app_id: str = Field(default="A1B2C3D4E5.com.example.appattest")
    user_id: str = Field(default="foo")

    # Deployment
    environment: str = Field(default="development")

    # TLS/SSL configuration
    tls_policy: TLSPolicy = Field(default=TLSPolicy.PLATFORM)
    ca_cert_path: Optional[str] = Field(default=None)

    # Local key storage
    defaults_path: str = Field(default="~/.app_attest/defaults.json")

    # TPM2 configuration
    tpm2tools_tcti: str = Field(default="swtpm:host=127.0.0.1,port=2321")
    ak_handle: str = Field(default="0x8101000A")
    tpm_work_dir: str = Field(default="~/.app_attest/tpm")

    # Logging configuration
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")

    # OpenTelemetry configuration
    otel_enabled: bool = Field(default=False)
    otel_endpoint: Optional[str] = Field(default=None)

    @field_validator("app_id")
    @classmethod
    def _check_app_id(cls, value: str) -> str:
        if not APP_ID_PATTERN.match(value):
            raise ValueError(
                "app_id must be '<10-char team identifier>.<bundle identifier>', "
                f"got {value!r}"
            )
        return value

    @field_validator("verifier_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("console", "json"):
            raise ValueError("log_format must be 'console' or 'json'")
        return value

    @model_validator(mode="after")
    def _check_tls_policy(self) -> "Settings":
        if self.tls_policy is TLSPolicy.TRUST_ALL and self.is_production:
            raise ValueError("tls_policy 'trust_all' is not allowed in production")
        if self.tls_policy is TLSPolicy.CA_BUNDLE and not self.ca_cert_path:
            raise ValueError("tls_policy 'ca_bundle' requires ca_cert_path")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("prod", "production")


@lru_cache()
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
