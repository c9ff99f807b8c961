import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

# Force-load .env from the project root, whatever the working directory
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    stripe_timeout: float = 10.0
    frontend_url: str = "http://localhost:3000"
    currency: str = "usd"
    storage_backend: str = "sql"
    database_url: str = "sqlite:///./orderdesk.db"
    json_store_path: str = "./data/orderdesk.json"
    jwt_secret: str | None = None
    service_days: int = 30
    debug: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY"),
            stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET"),
            stripe_timeout=float(os.getenv("STRIPE_TIMEOUT", "10")),
            frontend_url=os.getenv("FRONTEND_URL", cls.frontend_url).rstrip("/"),
            currency=os.getenv("CURRENCY", cls.currency).lower(),
            storage_backend=os.getenv("STORAGE_BACKEND", cls.storage_backend).lower(),
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            json_store_path=os.getenv("JSON_STORE_PATH", cls.json_store_path),
            jwt_secret=os.getenv("JWT_SECRET"),
            service_days=int(os.getenv("SERVICE_DAYS", "30")),
            debug=_flag(os.getenv("DEBUG")),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
