"""Environment-driven settings."""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

STORE_KINDS = ("memory", "json", "mongo")


def _flag(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    store: str = "memory"
    data_file: str = "lms_data.json"
    latency_ms: int = 0
    seed_demo: bool = False
    database_url: Optional[str] = None
    database_name: Optional[str] = None
    secret_key: str = "dev-secret-key-change-me"
    jwt_exp_min: int = 60
    log_level: str = "INFO"

    @property
    def latency(self) -> float:
        return self.latency_ms / 1000.0

    @classmethod
    def from_env(cls) -> "Settings":
        store = os.getenv("LMS_STORE", "memory").strip().lower()
        if store not in STORE_KINDS:
            raise ValueError(f"LMS_STORE must be one of {', '.join(STORE_KINDS)}, got {store!r}")
        return cls(
            store=store,
            data_file=os.getenv("LMS_DATA_FILE", "lms_data.json"),
            latency_ms=int(os.getenv("LMS_STORE_LATENCY_MS", "0")),
            seed_demo=_flag(os.getenv("LMS_SEED_DEMO", "false")),
            database_url=os.getenv("DATABASE_URL"),
            database_name=os.getenv("DATABASE_NAME"),
            secret_key=os.getenv("SECRET_KEY", "dev-secret-key-change-me"),
            jwt_exp_min=int(os.getenv("JWT_EXP_MIN", "60")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
