"""Application configuration."""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage: "memory" or "database"
    store_backend: str = "memory"
    database_url: str = "postgresql://localhost/grid_engine"

    # Market data: "simulated" or "exchange"
    price_source: str = "simulated"
    # Order execution: "paper" or "exchange"
    order_sink: str = "paper"

    # Exchange API (ccxt)
    exchange_id: str = "binance"
    exchange_api_key: str = ""
    exchange_api_secret: str = ""
    exchange_testnet: bool = True

    # Seed for the simulated feed and paper fill policy (None = random)
    random_seed: int | None = None

    # Trading config file (defaults to trading.yaml next to the project root)
    trading_config_path: str = ""

    log_level: str = "INFO"
    debug: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
