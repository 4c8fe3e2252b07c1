import os
from functools import lru_cache
from typing import Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: Optional[str] = Field(None, alias="STUDYLINE_DATABASE_URL")
    database_pool_size: int = Field(10, alias="STUDYLINE_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="STUDYLINE_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="STUDYLINE_DATABASE_ECHO")
    closeout_enabled: bool = Field(True, alias="STUDYLINE_CLOSEOUT_ENABLED")
    closeout_cron: str = Field("59 23 * * *", alias="STUDYLINE_CLOSEOUT_CRON")
    closeout_timezone: str = Field("Asia/Shanghai", alias="STUDYLINE_CLOSEOUT_TIMEZONE")
    closeout_workers: int = Field(4, ge=1, alias="STUDYLINE_CLOSEOUT_WORKERS")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[arg-type]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid backend configuration: {exc}") from exc
