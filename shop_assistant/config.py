"""Configuration management for the shop assistant."""

import os
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from dotenv import load_dotenv


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    api_keys: List[str] = field(default_factory=list)
    history_store_url: str = "memory://"
    usage_store_url: str = "memory://"
    cors_origin: str = "http://localhost:5500"
    products_json_url: str = "https://plus62store.github.io/products.json"
    catalog_path: str = "/produk.json"
    catalog_cache_seconds: int = 300
    max_history_length: int = 20
    daily_rate_limit: int = 50
    daily_key_limit: int = 10000
    gemini_base_url: str = "https://generativelanguage.googleapis.com"
    gemini_model: str = "gemini-2.5-flash"
    quota_timezone: str = "UTC"
    log_level: str = "INFO"

    def __post_init__(self):
        self.api_keys = dedupe_keys(self.api_keys)
        for name in (
            "catalog_cache_seconds",
            "max_history_length",
            "daily_rate_limit",
            "daily_key_limit",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be a positive integer")
        if not self.catalog_path.startswith("/"):
            self.catalog_path = "/" + self.catalog_path


def dedupe_keys(keys: Iterable[str]) -> List[str]:
    """Strip, drop empties and remove duplicates, keeping first occurrence."""
    result: List[str] = []
    for key in keys:
        key = key.strip()
        if key and key not in result:
            result.append(key)
    return result


def parse_api_keys(default_key: Optional[str], keys_raw: str) -> List[str]:
    """Build the ordered key list; the unnumbered default key goes first."""
    keys = [default_key or ""]
    keys.extend(keys_raw.split(","))
    return dedupe_keys(keys)


def load_config(use_dotenv: bool = True) -> Config:
    """Load configuration from environment variables.

    Returns:
        Config: Configured application settings

    Raises:
        ValueError: If a numeric setting is missing, malformed or not positive
    """
    if use_dotenv:
        load_dotenv()

    return Config(
        api_keys=parse_api_keys(
            os.getenv("GEMINI_API_KEY"), os.getenv("GEMINI_API_KEYS", "")
        ),
        history_store_url=os.getenv("HISTORY_STORE_URL", "memory://"),
        usage_store_url=os.getenv("USAGE_STORE_URL", "memory://"),
        cors_origin=os.getenv("CORS_ORIGIN", "http://localhost:5500"),
        products_json_url=os.getenv(
            "PRODUCTS_JSON_URL", "https://plus62store.github.io/products.json"
        ),
        catalog_path=os.getenv("CATALOG_PATH", "/produk.json"),
        catalog_cache_seconds=int(os.getenv("CATALOG_CACHE_SECONDS", "300")),
        max_history_length=int(os.getenv("MAX_CHAT_HISTORY_LENGTH", "20")),
        daily_rate_limit=int(os.getenv("DAILY_RATE_LIMIT", "50")),
        daily_key_limit=int(os.getenv("DAILY_KEY_LIMIT", "10000")),
        gemini_base_url=os.getenv(
            "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"
        ),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        quota_timezone=os.getenv("QUOTA_TIMEZONE", "UTC"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
