from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    log_level: str = "INFO"

    aws_region: str = "ap-south-2"
    deploy_role_arn: Optional[str] = None
    deploy_role_external_id: Optional[str] = None

    stack_tags: dict[str, str] = {}


@lru_cache
def get_settings() -> Settings:
    return Settings()
