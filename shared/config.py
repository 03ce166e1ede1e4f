"""
Shared configuration management for the card proxy access layer.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    env: str = Field(default="local", alias="ACCESS_ENV")
    log_level: str = Field(default="info", alias="ACCESS_LOG_LEVEL")

    # Coordination store
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")
    store_timeout_seconds: float = Field(default=2.0, gt=0, alias="STORE_TIMEOUT_SECONDS")

    # CORS
    allowed_origins: Optional[str] = Field(default=None, alias="PROXY_ALLOWED_ORIGINS")


class ProxyConfig(BaseConfig):
    """Every tunable of the admission layer, validated once at startup."""

    service_name: str = "proxy"
    host: str = "0.0.0.0"
    port: int = Field(default=3000, alias="PORT")

    # Rate limiting
    rate_limit_window_ms: int = Field(default=60_000, gt=0, alias="RATE_LIMIT_WINDOW_MS")
    rate_limit_max: int = Field(default=30, gt=0, alias="RATE_LIMIT_MAX")
    ban_base_ms: int = Field(default=5 * 60 * 1000, gt=0, alias="BAN_BASE_MS")
    ban_max_ms: int = Field(default=24 * 60 * 60 * 1000, gt=0, alias="BAN_MAX_MS")

    # Quota
    quota_max_units: int = Field(default=100_000, ge=0, alias="QUOTA_MAX_TOKENS")
    quota_max_requests: int = Field(default=1000, ge=0, alias="QUOTA_MAX_REQUESTS")
    quota_period_ms: int = Field(default=30 * 24 * 60 * 60 * 1000, gt=0, alias="QUOTA_PERIOD_MS")

    # Signature enforcement. None means "on when a secret is configured".
    require_signature: Optional[bool] = Field(default=None, alias="PROXY_REQUIRE_SIGNATURE")
    signature_secret: Optional[str] = Field(default=None, alias="PROXY_SIGNATURE_SECRET")
    signature_secret_previous: Optional[str] = Field(default=None, alias="PROXY_SIGNATURE_SECRET_PREVIOUS")
    signature_secrets: Optional[str] = Field(default=None, alias="PROXY_SIGNATURE_SECRETS")
    signature_header: str = Field(default="x-proxy-signature", min_length=1, alias="PROXY_SIGNATURE_HEADER")
    signature_ttl_ms: int = Field(default=2 * 60 * 1000, gt=0, alias="PROXY_SIGNATURE_TTL_MS")

    # Authentication
    require_auth: bool = Field(default=False, alias="REQUIRE_AUTH")
    auth_tokens: Optional[str] = Field(default=None, alias="PROXY_AUTH_TOKENS")
    app_token: Optional[str] = Field(default=None, alias="PROXY_APP_TOKEN")
    app_token_header: str = Field(default="x-app-token", min_length=1, alias="PROXY_APP_TOKEN_HEADER")

    # Downstream retries
    retry_max_attempts: int = Field(default=4, ge=1, alias="RETRY_MAX_ATTEMPTS")
    retry_initial_ms: int = Field(default=500, ge=0, alias="RETRY_INITIAL_MS")
    retry_max_ms: int = Field(default=8000, ge=0, alias="RETRY_MAX_MS")
    retry_jitter_ms: int = Field(default=200, ge=0, alias="RETRY_JITTER_MS")

    # Downstream service
    downstream_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/models/gemini-2.0-flash:generateContent",
        alias="DOWNSTREAM_URL",
    )
    downstream_timeout_seconds: float = Field(default=30.0, gt=0, alias="DOWNSTREAM_TIMEOUT_SECONDS")
    downstream_key_name: str = Field(default="GEMINI_API_KEY", alias="GEMINI_SECRET_NAME")

    # Input validation
    max_raw_text_len: int = Field(default=4000, gt=0, alias="MAX_RAW_TEXT_LEN")
    max_template_headers: int = Field(default=40, gt=0, alias="MAX_TEMPLATE_HEADERS")
    max_template_header_len: int = Field(default=64, gt=0, alias="MAX_TEMPLATE_HEADER_LEN")
    max_body_keys: int = Field(default=20, gt=0, alias="MAX_BODY_KEYS")
    max_session_id_len: int = Field(default=256, gt=0, alias="MAX_SESSION_ID_LEN")
    max_body_bytes: int = Field(default=128 * 1024, gt=0, alias="MAX_BODY_BYTES")

    @model_validator(mode="after")
    def _check_bounds(self) -> "ProxyConfig":
        if self.ban_max_ms < self.ban_base_ms:
            raise ValueError("BAN_MAX_MS must be >= BAN_BASE_MS")
        if self.retry_max_ms < self.retry_initial_ms:
            raise ValueError("RETRY_MAX_MS must be >= RETRY_INITIAL_MS")
        return self

    @property
    def signature_secret_list(self) -> List[str]:
        """Ordered, de-duplicated rotation list: current, previous, then alternates."""
        ordered: List[str] = []
        for candidate in [self.signature_secret, self.signature_secret_previous,
                          *_split_list(self.signature_secrets)]:
            if candidate and candidate not in ordered:
                ordered.append(candidate)
        return ordered

    @property
    def signature_enforced(self) -> bool:
        if self.require_signature is not None:
            return self.require_signature
        return bool(self.signature_secret_list)

    @property
    def auth_token_list(self) -> List[str]:
        return _split_list(self.auth_tokens)

    @property
    def allowed_origin_list(self) -> Optional[List[str]]:
        origins = _split_list(self.allowed_origins)
        return origins or None


@lru_cache()
def get_config() -> ProxyConfig:
    """Get the process-wide proxy configuration."""
    return ProxyConfig()
