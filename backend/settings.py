from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Annotated, List

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

ROOT_DIR = Path(__file__).parent


class Settings(BaseSettings):
    """Loaded from the environment and backend/.env; names are case-insensitive."""

    model_config = SettingsConfigDict(
        env_file=ROOT_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    mongo_url: str
    db_name: str
    # Comma-separated in the environment
    cors_origins: Annotated[List[str], NoDecode] = ["*"]
    app_env: str = "development"

    access_token_secret: str
    access_token_expire_minutes: int = 1440
    refresh_token_secret: str
    refresh_token_expire_days: int = 7
    jwt_algorithm: str = "HS256"

    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""
    upload_timeout_seconds: int = 30
    upload_temp_dir: Path = ROOT_DIR / "public" / "temp"

    # Live push
    socket_send_timeout_seconds: float = 2.0

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() in ("prod", "production")

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(minutes=self.access_token_expire_minutes)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(days=self.refresh_token_expire_days)


@lru_cache
def get_settings() -> Settings:
    return Settings()
