import os
from dataclasses import dataclass, field


def _get_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() == "true"


@dataclass
class Settings:
    database_url: str
    db_schema: str = "shop"
    env: str = "local"  # local | dev | prod
    log_level: str = "DEBUG"
    order_lock_timeout: float = 5.0
    db_pool_size: int = 5
    db_echo: bool = False
    cors_origins: list[str] = field(default_factory=lambda: ["*"])


def load_settings() -> Settings:
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL is not set")

    env = os.getenv("ENV", "local").strip().lower()
    default_level = "INFO" if env == "prod" else "DEBUG"

    origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

    return Settings(
        database_url=database_url,
        db_schema=os.getenv("DB_SCHEMA", "shop"),
        env=env,
        log_level=os.getenv("LOG_LEVEL", default_level).upper(),
        order_lock_timeout=float(os.getenv("ORDER_LOCK_TIMEOUT", "5")),
        db_pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
        db_echo=_get_bool("DB_ECHO"),
        cors_origins=origins or ["*"],
    )
