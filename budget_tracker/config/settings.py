import sys
from typing import Dict, List, Optional, Tuple

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application-wide settings.
    Read from environment variables (and .env) with type validation.
    """
    # Storage
    DATABASE_URL: str = "sqlite:///budget_tracker.db"

    # HTTP surface
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    CORS_ORIGINS: str = "*"

    # Sync behaviour
    SYNC_EXCHANGES: str = "bybit,mexc"
    SYNC_INTERVAL_SECONDS: int = 30
    SYNC_TIMEOUT_SECONDS: int = 120
    HTTP_TIMEOUT_SECONDS: float = 30.0
    REQUEST_DELAY_SECONDS: float = 0.05

    # Exchange specifics
    BYBIT_TESTNET: bool = False
    BYBIT_RECV_WINDOW: str = "5000"
    BITGET_PASSPHRASE: Optional[str] = None

    # Bootstrap credentials (optional, copied into the api_keys table on serve)
    BYBIT_API_KEY: Optional[str] = None
    BYBIT_API_SECRET: Optional[str] = None
    MEXC_API_KEY: Optional[str] = None
    MEXC_API_SECRET: Optional[str] = None
    BITGET_API_KEY: Optional[str] = None
    BITGET_API_SECRET: Optional[str] = None

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    @property
    def sync_exchanges(self) -> List[str]:
        return [name.strip().lower() for name in self.SYNC_EXCHANGES.split(",") if name.strip()]

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    def bootstrap_credentials(self) -> Dict[str, Tuple[str, str]]:
        """Exchanges whose key and secret are both present in the environment."""
        pairs = {
            "bybit": (self.BYBIT_API_KEY, self.BYBIT_API_SECRET),
            "mexc": (self.MEXC_API_KEY, self.MEXC_API_SECRET),
            "bitget": (self.BITGET_API_KEY, self.BITGET_API_SECRET),
        }
        return {name: pair for name, pair in pairs.items() if pair[0] and pair[1]}


# Singleton Instance
try:
    settings = Settings()
except Exception as e:
    # logging depends on settings, so report straight to stderr
    print(f"CRITICAL: Failed to load configuration. Invalid env vars? {e}", file=sys.stderr)
    settings = None
