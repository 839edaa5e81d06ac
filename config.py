import os
from functools import lru_cache
from pathlib import Path

DEFAULT_CORS_ORIGINS = (
    "http://localhost:5173",
    "http://localhost:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:3000",
)


class Settings:
    def __init__(
        self,
        database_url: str,
        token_secret: str,
        token_max_age_hours: int = 168,
        db_timeout_secs: float = 5.0,
        log_level: str = "INFO",
        cors_origins: tuple[str, ...] = DEFAULT_CORS_ORIGINS,
        create_schema: bool = True,
    ) -> None:
        self.database_url = database_url
        self.token_secret = token_secret
        self.token_max_age_hours = token_max_age_hours
        self.db_timeout_secs = db_timeout_secs
        self.log_level = log_level
        self.cors_origins = cors_origins
        self.create_schema = create_schema


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _split_origins(raw: str) -> tuple[str, ...]:
    return tuple(origin.strip() for origin in raw.split(",") if origin.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("FINANCE_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "finance.db"
        database_url = f"sqlite:///{default_db}"
    token_secret = os.getenv(
        "FINANCE_TOKEN_SECRET",
        "5d0c1b8f6f3e4a2b9c7d8e1f0a3b6c9d2e5f8a1b4c7d0e3f6a9b2c5d8e1f4a7b",
    )
    token_max_age_hours = int(os.getenv("FINANCE_TOKEN_MAX_AGE_HOURS", "168"))
    db_timeout_secs = float(os.getenv("FINANCE_DB_TIMEOUT_SECS", "5"))
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    cors_raw = os.getenv("FINANCE_CORS_ORIGINS")
    cors_origins = _split_origins(cors_raw) if cors_raw else DEFAULT_CORS_ORIGINS
    create_schema = os.getenv("FINANCE_CREATE_SCHEMA", "1").lower() not in (
        "0",
        "false",
        "no",
    )
    return Settings(
        database_url=database_url,
        token_secret=token_secret,
        token_max_age_hours=token_max_age_hours,
        db_timeout_secs=db_timeout_secs,
        log_level=log_level,
        cors_origins=cors_origins,
        create_schema=create_schema,
    )
