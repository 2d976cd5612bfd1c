"""
Application configuration settings.

Central configuration module using Pydantic BaseSettings with environment variable support.
Loads from .env file and environment variables.
"""
import json
from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Union

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file if it exists (python-dotenv)
env_path = Path(".env")
if env_path.exists():
    load_dotenv(dotenv_path=env_path)


def _split_list(v):
    """Parse a list setting given as JSON array or comma-separated string."""
    if isinstance(v, str):
        try:
            return json.loads(v)
        except json.JSONDecodeError:
            # If not JSON, treat as comma-separated
            return [item.strip() for item in v.split(",") if item.strip()]
    return v


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # App settings
    APP_NAME: str = "NGINX ACL Architect"
    APP_ENV: str = Field(default="local")
    DEBUG: bool = Field(default=False)

    # CORS settings
    CORS_ORIGINS: Union[str, List[str]] = Field(
        default='["http://localhost:3000", "http://localhost:8080"]',
        validate_default=True,
    )

    @field_validator("CORS_ORIGINS")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from string or list."""
        return _split_list(v)

    # Proxy configuration file handling
    NGINX_CONF_PATH: str = Field(
        default="/opt/proxy/nginx.conf",
        description="Configuration file read and written when no explicit path is given",
    )
    CANDIDATE_CONFIG_PATHS: Union[str, List[str]] = Field(
        default='["/opt/proxy/nginx.conf", "/etc/nginx/nginx.conf", "/etc/nginx/conf.d/default.conf"]',
        validate_default=True,
        description="Well-known configuration paths offered by the file listing endpoint",
    )

    @field_validator("CANDIDATE_CONFIG_PATHS")
    @classmethod
    def parse_candidate_paths(cls, v):
        """Parse CANDIDATE_CONFIG_PATHS from string or list."""
        return _split_list(v)

    BACKUP_KEEP: int = Field(
        default=10,
        ge=0,
        description="Number of timestamped backups kept per configuration file (0 keeps all)",
    )

    # External proxy commands
    NGINX_TEST_COMMAND: str = Field(default="docker exec nginx-forward-proxy nginx -t")
    NGINX_RELOAD_COMMAND: str = Field(default="docker exec nginx-forward-proxy nginx -s reload")
    COMMAND_TIMEOUT: int = Field(default=30, ge=1, description="Timeout in seconds for test/reload commands")

    # Generated format
    URL_REGEX_ANCHORED: bool = Field(
        default=False,
        description="Wrap regex URL patterns in ^...$ when generating and strip them when parsing",
    )
    FINAL_DECISION_VARIABLE: str = Field(
        default="access_granted",
        description="Combined ACL whose sources feed the denial reason map",
    )

    # File upload settings
    MAX_UPLOAD_SIZE: int = Field(
        default=2 * 1024 * 1024, description="Max upload size in bytes (2MB default)"
    )
    UPLOAD_DIR: str = Field(default="./uploads")

    # Logging
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    LOG_DIR: str = Field(default="logs")

    # API Authentication
    API_KEY: Optional[str] = Field(
        default=None,
        description="API key for authenticating write operations. Leave empty to disable authentication.",
    )

    def is_auth_enabled(self) -> bool:
        """Check if a static API key is configured and not empty."""
        return self.API_KEY is not None and self.API_KEY.strip() != ""


# Create global settings instance
@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

# Backward compatibility: keep global settings instance
settings = get_settings()
