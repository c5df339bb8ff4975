"""
API configuration settings.
"""

from typing import List, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings


class APIConfig(BaseSettings):
    """API configuration settings."""

    # API Settings
    api_title: str = "Authors & Books API"
    api_version: str = "1.0.0"
    api_description: str = "REST API for managing authors and their books"
    api_prefix: str = "api"

    # Server Settings
    host: str = "0.0.0.0"
    port: int = 1234
    node_env: Literal["development", "production"] = "development"

    # Database Settings
    database_uri: str = "mongodb://localhost:27017/bookdb"
    mongodb_database: str = "bookdb"  # used when the URI names no database

    # CORS Settings
    cors_origins: List[str] = ["*"]

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    model_config = {
        "env_file": ".env",
        "extra": "ignore"  # Ignore extra fields from .env
    }

    @field_validator("database_uri")
    @classmethod
    def validate_database_uri(cls, v):
        """Ensure the URI points at MongoDB."""
        if not v.startswith(("mongodb://", "mongodb+srv://")):
            raise ValueError("database_uri must use the mongodb scheme")
        return v

    @field_validator("api_prefix")
    @classmethod
    def strip_prefix_slashes(cls, v):
        return v.strip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Ensure log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        """Ensure log format is valid."""
        valid_formats = ["json", "console"]
        if v.lower() not in valid_formats:
            raise ValueError(f"log_format must be one of: {valid_formats}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        return self.node_env == "production"


# Global config instance
config = APIConfig()
