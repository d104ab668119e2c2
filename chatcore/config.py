"""
Configuration for the chat coordination service.

Values are read from the environment or a local .env file through
pydantic-settings and cached for the lifetime of the process.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):

    MONGODB_URL: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection string",
    )

    MONGODB_DB: str = Field(
        default="chat_app",
        description="Database holding the users, conversations and messages collections",
        min_length=1,
    )

    JWT_SECRET_KEY: str = Field(
        default="change-me-in-production-0123456789abcdef",
        description="Secret used to verify access tokens issued by the auth service",
        min_length=32,
    )

    JWT_ALGORITHM: str = Field(default="HS256")

    TYPING_TIMEOUT_SECONDS: float = Field(
        default=3.0,
        description="Inactivity window after which a typing indicator auto-expires",
        gt=0,
    )

    LOG_LEVEL: str = Field(default="INFO")

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def allowed_origins_list(self) -> List[str]:
        if not self.ALLOWED_ORIGINS:
            return []
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @field_validator("JWT_ALGORITHM")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        allowed = {"HS256", "HS384", "HS512"}
        if v not in allowed:
            raise ValueError(f"JWT_ALGORITHM must be one of {sorted(allowed)}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid LOG_LEVEL: {v}")
        return level


@lru_cache()
def get_settings() -> Settings:
    return Settings()
