# config.py
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv() # Load .env file from project root


@dataclass(frozen=True)
class Config:
    """Runtime configuration read from environment variables."""

    database_url: str
    store_timeout_seconds: float = 5.0
    log_level: str = "INFO"
    default_page_size: int = 20
    max_page_size: int = 100
    password_hash_time_cost: int = 3
    password_hash_memory_cost: int = 65536

    @classmethod
    def from_env(cls) -> "Config":
        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise ValueError("DATABASE_URL environment variable not set.")

        return cls(
            database_url=database_url,
            store_timeout_seconds=float(os.getenv("STORE_TIMEOUT_SECONDS", "5.0")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            default_page_size=int(os.getenv("DEFAULT_PAGE_SIZE", "20")),
            max_page_size=int(os.getenv("MAX_PAGE_SIZE", "100")),
            password_hash_time_cost=int(os.getenv("PASSWORD_HASH_TIME_COST", "3")),
            password_hash_memory_cost=int(os.getenv("PASSWORD_HASH_MEMORY_COST", "65536")),
        )


@lru_cache
def get_config() -> Config:
    return Config.from_env()
