"""Configuration management for todosync."""

from datetime import timedelta
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Local store
    sqlite_db_path: str = Field(default="data/todosync.db", description="SQLite database file for the local store")

    # Remote task service
    api_base_url: str = Field(default="http://127.0.0.1:8080/todobackend", description="Task service base URL")
    api_token: str | None = Field(default=None, description="Bearer token for the task service")
    device_id: str = Field(default="todosync", description="Reported to the server as last_updated_by")
    request_timeout_seconds: float = Field(default=30.0, description="Timeout for a single task service request")

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")

    def require_credential(self, field_name: str, service_name: str) -> str:
        """Validate that a required credential is set, raising a clear error if missing.

        Args:
            field_name: Name of the field to check
            service_name: Human-readable service name for error message

        Returns:
            The credential value

        Raises:
            ValueError: If the credential is None or empty
        """
        value = getattr(self, field_name)
        if not value:
            raise ValueError(
                f"{service_name} credential not configured. "
                f"Set {field_name.upper()} environment variable or add to .env file."
            )
        return value


# Application Constants
class Constants:
    """Application-wide constants."""

    # HTTP Status Codes
    HTTP_NOT_FOUND: int = 404
    HTTP_CLIENT_ERROR_START: int = 400
    HTTP_SERVER_ERROR_START: int = 500

    # Task service headers
    REVISION_HEADER: str = "X-Last-Known-Revision"

    # Smallest step between two modified_at stamps of the same task
    MODIFIED_AT_EPSILON: timedelta = timedelta(microseconds=1)

    # Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent.parent


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
