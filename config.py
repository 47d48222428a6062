import os
from dataclasses import dataclass, field
from typing import List, Optional


def _origins() -> List[str]:
    raw = os.getenv("CORS_ORIGINS", "*")
    return [o.strip() for o in raw.split(",") if o.strip()]


@dataclass
class Settings:
    """Runtime settings, read from the environment when the app is built."""
    database_url: Optional[str] = field(default_factory=lambda: os.getenv("DATABASE_URL"))
    database_name: Optional[str] = field(default_factory=lambda: os.getenv("DATABASE_NAME", "ambulance"))
    storage_dir: Optional[str] = field(default_factory=lambda: os.getenv("STORAGE_DIR", "./data"))
    poll_interval: float = field(default_factory=lambda: float(os.getenv("POLL_INTERVAL", "2.0")))
    sms_gateway_url: Optional[str] = field(default_factory=lambda: os.getenv("SMS_GATEWAY_URL"))
    places_api_key: Optional[str] = field(default_factory=lambda: os.getenv("GOOGLE_PLACES_API_KEY"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    cors_origins: List[str] = field(default_factory=_origins)
    # storage backend: "mongo", "file" or "memory"; derived when not given
    storage: Optional[str] = field(default_factory=lambda: os.getenv("STORAGE_BACKEND"))

    def backend(self) -> str:
        if self.storage:
            return self.storage
        return "mongo" if self.database_url else "file"
