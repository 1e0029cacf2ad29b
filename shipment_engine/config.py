"""
Application configuration with automatic environment detection
"""
import os
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


def _as_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes")


class Settings:
    """Application settings read from the environment (and .env in development)"""

    # Environment detection
    ENV = os.getenv("ENV", "DEV").upper()
    IS_PRODUCTION = ENV == "PROD" or ENV == "PRODUCTION"
    IS_DEVELOPMENT = not IS_PRODUCTION

    # Server configuration
    HOST = os.getenv("HOST", "127.0.0.1")
    PORT = int(os.getenv("PORT", 8000))

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./shipment_engine.db")

    # Encryption (persisted provider credentials)
    ENCRYPTION_KEY = os.getenv("ENCRYPTION_KEY", "your-32-character-encryption-key!!")

    # OTO provider. OTO_API_KEY wins over the refresh-token flow when both are set.
    OTO_BASE_URL = os.getenv("OTO_BASE_URL", "https://api.tryoto.com")
    OTO_API_KEY = os.getenv("OTO_API_KEY", "")
    OTO_ACCESS_TOKEN = os.getenv("OTO_ACCESS_TOKEN", "")
    OTO_REFRESH_TOKEN = os.getenv("OTO_REFRESH_TOKEN", "")
    OTO_WEBHOOK_SECRET = os.getenv("OTO_WEBHOOK_SECRET", "") or os.getenv("OTO_SECRET_KEY", "")
    OTO_TIMEOUT_SEC = float(os.getenv("OTO_TIMEOUT_SEC", "30"))
    # Store rotated refresh tokens (encrypted) so a restart does not reuse a dead one
    OTO_PERSIST_CREDENTIALS = _as_bool(os.getenv("OTO_PERSIST_CREDENTIALS"), default=False)

    # Sender defaults for provider order payloads
    OTO_SENDER_NAME = os.getenv("OTO_SENDER_NAME", "Gymmawy")
    OTO_SENDER_PHONE = os.getenv("OTO_SENDER_PHONE", "+201000000000")
    OTO_SENDER_EMAIL = os.getenv("OTO_SENDER_EMAIL", "orders@gymmawy.com")
    OTO_DEFAULT_PICKUP_LOCATION = os.getenv("OTO_DEFAULT_PICKUP_LOCATION", "WAREHOUSE_01")
    OTO_DEFAULT_DELIVERY_COMPANY = os.getenv("OTO_DEFAULT_DELIVERY_COMPANY", "")
    OTO_DEFAULT_ITEM_WEIGHT_KG = float(os.getenv("OTO_DEFAULT_ITEM_WEIGHT_KG", "0.5"))

    # Auto-shipment wallet check: quote the order, compare with the OTO wallet balance
    OTO_CHECK_CREDIT = _as_bool(os.getenv("OTO_CHECK_CREDIT"), default=True)
    OTO_ORIGIN_CITY = os.getenv("OTO_ORIGIN_CITY", "Riyadh")
    # Comma-separated keywords matched against deliveryCompanyName
    PREFERRED_SHIPPING_COMPANY = os.getenv("PREFERRED_SHIPPING_COMPANY", "aramex")

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if IS_PRODUCTION else "DEBUG")

    # API Configuration
    API_PREFIX = "/api"

    @property
    def ALLOWED_ORIGINS(self) -> List[str]:
        """CORS origins from ALLOWED_ORIGINS (comma-separated); localhost added in development"""
        origins = []
        if self.IS_DEVELOPMENT:
            origins.extend([
                "http://localhost:3000",
                "http://127.0.0.1:3000",
            ])
        env_origins = os.getenv("ALLOWED_ORIGINS", "")
        for origin in env_origins.split(","):
            origin = origin.strip()
            if origin and origin not in origins:
                origins.append(origin)
        return origins

    @property
    def oto_configured(self) -> bool:
        return bool(self.OTO_API_KEY.strip() or self.OTO_REFRESH_TOKEN.strip() or self.OTO_ACCESS_TOKEN.strip())

    def __str__(self):
        return f"Settings(ENV={self.ENV}, IS_PRODUCTION={self.IS_PRODUCTION}, OTO_BASE_URL={self.OTO_BASE_URL})"


# Global settings instance
settings = Settings()
