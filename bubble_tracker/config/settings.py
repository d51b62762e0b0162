import os
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, field_validator

DEFAULT_TICKERS = [
    "MSFT", "NVDA", "ORCL", "AMD", "COIN", "HOOD", "RIOT", "MARA", "MSTR",
    "ARM", "CRUS", "RDDT", "CCJ", "XOM", "NEM", "GOLD", "AMLP",
]


class Settings(BaseModel):
    MARKET_PROVIDER: Literal["live", "mock"] = "live"
    FINNHUB_API_KEY: str = ""
    MARKET_TICKERS: list[str] = DEFAULT_TICKERS
    POLL_INTERVAL_MS: int = 30000
    POLL_WINDOW_SIZE: int = 0
    CACHE_TTL_MS: int = 1000 * 60 * 60 * 24
    CACHE_DIR: Path = Path(tempfile.gettempdir()) / "bubble_tracker"
    QUOTE_BATCH_SIZE: int = 10
    QUOTE_BATCH_COOLDOWN_MS: int = 250

    @field_validator("FINNHUB_API_KEY")
    @classmethod
    def _strip_api_key(cls, value: str) -> str:
        return value.strip()

    @field_validator("POLL_INTERVAL_MS", "QUOTE_BATCH_SIZE")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @field_validator("POLL_WINDOW_SIZE", "CACHE_TTL_MS", "QUOTE_BATCH_COOLDOWN_MS")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must be >= 0")
        return value

    @classmethod
    def from_env(cls) -> "Settings":
        raw: dict[str, object] = {}
        for name in (
            "MARKET_PROVIDER",
            "FINNHUB_API_KEY",
            "POLL_INTERVAL_MS",
            "POLL_WINDOW_SIZE",
            "CACHE_TTL_MS",
            "CACHE_DIR",
            "QUOTE_BATCH_SIZE",
            "QUOTE_BATCH_COOLDOWN_MS",
        ):
            value = os.getenv(name)
            if value is not None and value.strip():
                raw[name] = value.strip()

        raw_tickers = os.getenv("MARKET_TICKERS", "")
        tickers = [s.strip().upper() for s in raw_tickers.split(",") if s.strip()]
        if tickers:
            raw["MARKET_TICKERS"] = tickers

        return cls.model_validate(raw)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
