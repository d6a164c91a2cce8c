from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parent.parent / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    telegram_bot_token: str
    telegram_chat_id: str

    monitor_interval_seconds: float = 30.0
    provider_timeout_seconds: float = 10.0
    plan_validity_minutes: int = 30
    transfer_penalty_minutes: int = 5
    max_plans: int = 5

    vbb_api_base: str = "https://v6.vbb.transport.rest"
    cache_ttl_seconds: int = 300

    enable_public_transport: bool = True
    enable_ride_hailing: bool = True
    enable_bike_sharing: bool = True
    enable_walking: bool = True

    timezone: str = "Europe/Berlin"
    log_level: str = "INFO"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def setup_logging(level: str = "INFO") -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(levelname)-8s | %(name)-25s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("telegram").setLevel(logging.WARNING)
