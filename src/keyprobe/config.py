from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="KEYPROBE_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    workers: int = Field(default=1, ge=1, le=1024)
    port: str = Field(default="22")
    timeout_seconds: float = Field(default=10.0, gt=0)
    max_pending: int = Field(default=0, ge=0)
    output_format: Literal["text", "jsonl"] = Field(default="text")
    log_level: str = Field(default="WARNING")
    log_json: bool = Field(default=True)


settings = Settings()
