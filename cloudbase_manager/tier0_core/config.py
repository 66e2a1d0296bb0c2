"""
cloudbase_manager.tier0_core.config
────────────────────────────────────
Typed configuration with env layering. Reads from .env → environment
variables. All fields are typed via Pydantic; names follow the platform's
own environment variables so code running inside a cloud function picks up
the injected credentials without extra wiring.

Minimal stack: pydantic-settings + python-dotenv
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Value of TENCENTCLOUD_RUNENV inside a managed cloud-function runtime
RUN_ENV_SCF = "SCF"

DEFAULT_REGION = "ap-shanghai"
DEFAULT_REQUEST_TIMEOUT = 60.0


class CredentialSettings(BaseSettings):
    """
    The credential variables alone. Never cached: a managed runtime rotates
    its temporary keys, so they are read again for every request.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    secret_id: str | None = Field(default=None, alias="TENCENTCLOUD_SECRETID")
    secret_key: str | None = Field(default=None, alias="TENCENTCLOUD_SECRETKEY")
    session_token: str | None = Field(default=None, alias="TENCENTCLOUD_SESSIONTOKEN")
    run_env: str | None = Field(default=None, alias="TENCENTCLOUD_RUNENV")

    @property
    def is_managed_runtime(self) -> bool:
        return (self.run_env or "").upper() == RUN_ENV_SCF


class ManagerConfig(CredentialSettings):
    """
    Process-wide manager settings. Explicit arguments passed to
    ``CloudBase(...)`` always win over anything read here. The cached
    instance from get_config() is consulted for non-secret settings only.
    """

    # ── Runtime context ───────────────────────────────────────────────────────
    env_id: str | None = Field(default=None, alias="TENCENTCLOUD_TCB_ENVID")

    # ── Endpoints ─────────────────────────────────────────────────────────────
    region: str = Field(default=DEFAULT_REGION, alias="TCB_REGION")
    tcb_base_url: str | None = Field(default=None, alias="TCB_BASE_URL")
    http_proxy: str | None = Field(default=None, alias="http_proxy")
    cos_region: str | None = Field(default=None, alias="TCB_COS_REGION")
    cos_proxy: str | None = Field(default=None, alias="TCB_COS_PROXY")
    request_timeout: float = Field(
        default=DEFAULT_REQUEST_TIMEOUT, alias="CLOUDBASE_REQUEST_TIMEOUT"
    )

    # ── Logging ───────────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="CLOUDBASE_LOG_LEVEL")
    log_format: str = Field(default="json", alias="CLOUDBASE_LOG_FORMAT")

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        allowed = {"json", "console"}
        if v.lower() not in allowed:
            raise ValueError(f"log_format must be one of {allowed}, got {v!r}")
        return v.lower()

    @field_validator("request_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"request_timeout must be positive, got {v!r}")
        return v


@lru_cache(maxsize=1)
def get_config() -> ManagerConfig:
    """
    Return the singleton manager config. Cached after first call.
    Call _reset_config() in tests to pick up new env vars.
    """
    return ManagerConfig()


def _reset_config() -> None:
    """For tests: clear the config cache."""
    get_config.cache_clear()


__all__ = ["CredentialSettings", "ManagerConfig", "get_config", "RUN_ENV_SCF", "DEFAULT_REGION"]
