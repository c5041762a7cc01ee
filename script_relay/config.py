"""Application configuration using pydantic-settings.

Settings come from environment variables (or a local .env file). The client
identity is deliberately not validated here: a missing or malformed identity
must not stop the server, it surfaces as a ConfigurationError when the token
manager initializes.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Client identity sources, in order of precedence:
    - GOOGLE_CLIENT_CREDENTIALS: inline client secrets JSON
    - GOOGLE_CLIENT_CREDENTIALS_PATH: path to the client secrets file
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars not defined in Settings
    )

    # Server
    port: int = 3001
    environment: str = "development"
    log_level: str = "INFO"

    # Comma-separated list of allowed CORS origins
    cors_origins: str = "*"

    # Google OAuth client identity
    google_client_credentials: str = ""
    google_client_credentials_path: Path = Path("client_credentials.json")

    # Externally reachable callback address; overrides redirect_uris[0]
    google_redirect_uri: str = ""

    # Persisted credential (token) file
    token_path: Path = Path("token.json")

    # Upper bound in seconds for every remote call
    request_timeout: float = 60.0

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def has_inline_credentials(self) -> bool:
        return bool(self.google_client_credentials.strip())

    def get_cors_origins(self) -> list[str]:
        """Get list of allowed CORS origins."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is a known value."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of: {allowed}")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a known value."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of: {allowed}")
        return v_upper

    @field_validator("request_timeout")
    @classmethod
    def validate_request_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("request_timeout must be positive")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Settings are loaded once and cached for the lifetime of the application.
    """
    return Settings()
