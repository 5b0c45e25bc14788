"""Runtime configuration for the TaskFlow API.

Values come from the environment (or a local ``.env`` file). A ``Settings``
instance is built once at startup and handed to the pieces that need it; no
module reads the environment on its own.
"""
from datetime import timezone, tzinfo
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # MongoDB connection
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "taskflow"

    # Auth configuration
    secret_key: str = "dev-secret-key-change-me"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 7  # 7 days
    bcrypt_rounds: int = 12

    # HTTP
    client_url: str = "http://localhost:5173"
    port: int = 8000

    environment: str = "development"
    log_level: str = "INFO"
    # Day boundaries for the dashboard statistics
    timezone: str = "UTC"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def tzinfo(self) -> tzinfo:
        if self.timezone.upper() == "UTC":
            return timezone.utc
        return ZoneInfo(self.timezone)
