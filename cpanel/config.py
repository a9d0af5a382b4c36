"""
Centralized configuration management using Pydantic Settings
Single source of truth for the control panel configuration

Secrets (bot token, OAuth client secret) are loaded through load_secret so
Docker secrets and *_FILE variables work alongside plain environment variables.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from typing import Optional
from functools import lru_cache

from .secrets import load_secret


class Settings(BaseSettings):
    """Control panel settings with environment variable support and validation"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================================================
    # Application
    # ========================================================================
    app_name: str = Field(default="cpanel", description="Application name")
    app_version: str = Field(default="1.4.0", description="Application version")
    environment: str = Field(
        default="production",
        description="Environment: development, staging, production"
    )
    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=True, description="Render logs as JSON")

    # ========================================================================
    # Web
    # ========================================================================
    host: str = Field(
        default="localhost",
        description="Public host name; Origin headers must equal https://<host>"
    )
    session_cookie_name: str = Field(
        default="cpanel-session",
        description="Name of the session cookie"
    )
    static_prefix: str = Field(default="/static/", description="Static asset path prefix")
    static_dir: Optional[str] = Field(default=None, description="Directory served under static_prefix")
    templates_dir: Optional[str] = Field(
        default=None,
        description="Jinja2 template directory (defaults to the bundled templates)"
    )
    access_log_path: Optional[str] = Field(
        default=None,
        description="File receiving one access line per request (stdout when unset)"
    )
    listen_address: str = Field(default="0.0.0.0", description="Interface the HTTP server binds to")
    listen_port: int = Field(default=5000, ge=1, le=65535, description="Port the HTTP server binds to")

    # ========================================================================
    # Discord / bot
    # ========================================================================
    client_id: str = Field(default="", description="OAuth2 client id of the bot application")
    client_secret: str = Field(
        default_factory=lambda: load_secret("client_secret", default=""),
        description="OAuth2 client secret"
    )
    bot_id: str = Field(default="", description="User id of the bot account")
    bot_token: str = Field(
        default_factory=lambda: load_secret("bot_token", default=""),
        description="Bot token used for guild lookups"
    )
    discord_api_url: str = Field(
        default="https://discord.com/api/v10",
        description="Base URL of the chat platform REST API"
    )
    botrest_url: str = Field(
        default="http://localhost:5010",
        description="Base URL of the bot REST sidecar"
    )
    botrest_poll_interval: float = Field(
        default=5.0,
        ge=1.0,
        le=300.0,
        description="Seconds between bot sidecar liveness polls"
    )
    external_call_timeout: float = Field(
        default=10.0,
        ge=0.5,
        le=120.0,
        description="Timeout in seconds for platform and sidecar HTTP calls"
    )

    # ========================================================================
    # Redis
    # ========================================================================
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    redis_max_connections: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Redis connection pool size"
    )
    redis_socket_timeout: float = Field(
        default=5.0,
        ge=0.1,
        le=60.0,
        description="Redis socket timeout in seconds"
    )
    redis_ttl_seconds: int = Field(
        default=86400,
        ge=60,
        le=604800,
        description="Default Redis TTL in seconds (24 hours)"
    )
    user_cache_ttl: int = Field(
        default=3600,
        ge=60,
        le=86400,
        description="TTL of the cached platform user"
    )
    cp_log_max_entries: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Control panel log entries kept per guild"
    )

    # ========================================================================
    # Validators
    # ========================================================================

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment"""
        valid_envs = ["development", "staging", "production"]
        if v.lower() not in valid_envs:
            raise ValueError(f"Invalid environment: {v}. Must be one of {valid_envs}")
        return v.lower()

    @field_validator("static_prefix")
    @classmethod
    def validate_static_prefix(cls, v: str) -> str:
        if not v.startswith("/"):
            v = "/" + v
        if not v.endswith("/"):
            v += "/"
        return v

    @property
    def expected_origin(self) -> str:
        """Origin header value accepted on authenticated requests"""
        return f"https://{self.host}"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance
    Uses lru_cache to ensure singleton pattern
    """
    return Settings()
