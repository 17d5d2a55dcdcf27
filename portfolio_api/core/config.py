from typing import List, Optional

from pydantic import Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOCAL_ORIGINS = ["http://localhost:8000", "http://127.0.0.1:5500"]


class Settings(BaseSettings):
    PROJECT_NAME: str = "Portfolio Contact API"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api"

    # --- Environment & Debug ---
    ENVIRONMENT: str = "local"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None  # Console only when unset

    # --- CORS ---
    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=list,
        validate_default=True,
        description="Origins allowed to call the contact endpoint. Configure in .env",
    )
    ALLOWED_METHODS: List[str] = Field(
        default_factory=lambda: ["POST", "OPTIONS"],
        description="Allowed HTTP methods for CORS.",
    )
    ALLOWED_HEADERS: List[str] = Field(
        default_factory=lambda: ["Content-Type"],
        description="Allowed HTTP headers for CORS.",
    )

    # --- Rate Limiting / Proxy ---
    RATE_LIMIT_BACKEND: str = "auto"  # memory | redis | auto
    REDIS_URL: Optional[str] = None
    TRUSTED_PROXIES: List[str] = Field(
        default_factory=lambda: ["127.0.0.1", "10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16"],
        description="CIDR ranges of trusted reverse proxies for X-Forwarded-For",
    )
    CONTACT_RATE_LIMIT: int = 5
    CONTACT_RATE_WINDOW_SECONDS: int = 3600

    # --- Contact dispatch ---
    CONTACT_RECIPIENT: str = "owner@portfolio.local"
    CONTACT_DISPATCH_MAX_ATTEMPTS: int = 3
    CONTACT_DISPATCH_BACKOFF_SECONDS: float = 1.0
    CONTACT_DISPATCH_TIMEOUT_SECONDS: float = 10.0
    CONTACT_SEND_CONFIRMATION: bool = False

    # --- SMTP ---
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[SecretStr] = None
    SMTP_FROM: str = "noreply@portfolio.local"
    SMTP_TIMEOUT_SECONDS: float = 8.0  # Socket timeout, below the dispatch attempt timeout

    # --- Optional persistence ---
    DATABASE_URL: Optional[str] = None

    # --- Celery ---
    CELERY_BROKER_URL: Optional[str] = None
    CELERY_RESULT_BACKEND: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=True, extra="ignore"
    )

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def default_allowed_origins(
        cls, v: Optional[List[str]], info: ValidationInfo
    ) -> Optional[List[str]]:
        env = info.data.get("ENVIRONMENT") or "local"
        empty = v is None or (isinstance(v, str) and v.strip() in ("", "[]")) or (
            isinstance(v, list) and len(v) == 0
        )
        if not empty:
            return v
        if env == "production":
            raise ValueError("ALLOWED_ORIGINS must be set for production deployments")
        return list(_LOCAL_ORIGINS)

    @field_validator("ALLOWED_METHODS", "ALLOWED_HEADERS", mode="after")
    @classmethod
    def reject_wildcards(cls, v: List[str]) -> List[str]:
        if "*" in v:
            raise ValueError("Wildcards are not allowed in the CORS policy")
        return v

    @field_validator("RATE_LIMIT_BACKEND", mode="after")
    @classmethod
    def validate_rate_limit_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("memory", "redis", "auto"):
            raise ValueError("RATE_LIMIT_BACKEND must be one of: memory, redis, auto")
        return v

    @field_validator(
        "CONTACT_RATE_LIMIT", "CONTACT_RATE_WINDOW_SECONDS", "CONTACT_DISPATCH_MAX_ATTEMPTS"
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("SMTP_TIMEOUT_SECONDS")
    @classmethod
    def validate_smtp_timeout(cls, v: float, info: ValidationInfo) -> float:
        attempt_timeout = info.data.get("CONTACT_DISPATCH_TIMEOUT_SECONDS")
        if v <= 0:
            raise ValueError("must be > 0")
        if attempt_timeout is not None and v >= attempt_timeout:
            raise ValueError(
                "SMTP_TIMEOUT_SECONDS must be below CONTACT_DISPATCH_TIMEOUT_SECONDS"
            )
        return v


settings = Settings()
