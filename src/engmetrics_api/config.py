from __future__ import annotations

import datetime as dt
import logging
from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    github_client_id: Optional[str] = Field(default=None, alias="GITHUB_CLIENT_ID")
    github_client_secret: Optional[str] = Field(default=None, alias="GITHUB_CLIENT_SECRET")
    github_redirect_uri: str = Field(default="http://localhost:5173/", alias="GITHUB_REDIRECT_URI")
    app_env: str = Field(default="development", alias="APP_ENV")
    cors_origins: str = Field(default="*", alias="CORS_ORIGINS")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    max_repositories: int = Field(default=10, alias="MAX_REPOSITORIES")
    default_window_days: int = Field(default=30, alias="DEFAULT_WINDOW_DAYS")

    @property
    def origin_list(self) -> List[str]:
        parts = [p.strip() for p in self.cors_origins.split(",") if p.strip()]
        return list(dict.fromkeys(parts)) or ["*"]

    @property
    def secure_cookies(self) -> bool:
        return self.app_env.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


class DateRange(BaseModel):
    since: dt.datetime
    until: dt.datetime

    @staticmethod
    def default(now: Optional[dt.datetime] = None, days: int = 30) -> "DateRange":
        until = now or dt.datetime.now(dt.timezone.utc)
        return DateRange(since=until - dt.timedelta(days=days), until=until)
