# condoportal/config.py
from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Database ---
    database_url: str = "sqlite:///var/condoportal_dev.db"

    # --- Security / JWT ---
    jwt_secret: str = "dev-secret-please-change"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24  # 24 hours
    refresh_token_expire_minutes: int = 60 * 24 * 30  # 30 days

    # --- CORS ---
    cors_origins: List[str] = ["http://localhost:5173", "http://localhost:8080"]

    # --- Logging ---
    log_level: str = "INFO"
    log_json: bool = True

    # --- Tenancy defaults ---
    default_currency: str = "AOA"
    monthly_fee_due_days: int = 10

    # --- Realtime ---
    realtime_debounce_ms: int = 100
    # "thread" runs change-feed triggers on a worker pool, "inline" runs them on commit.
    trigger_dispatch: str = "thread"

    # --- Registration ---
    registration_confirm_attempts: int = 5
    registration_confirm_delay_seconds: float = 1.5
    linking_code_max_attempts: int = 20

    # --- Document Generation ---
    pdf_output_dir: str = "var/pdfs"

    # --- File Storage ---
    uploads_dir: str = "var/uploads"
    upload_max_bytes: int = 50 * 1024 * 1024


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

# Ensure path directory exists (for SQLite)
if settings.database_url.startswith("sqlite:///"):
    db_path = Path(settings.database_url.replace("sqlite:///", ""))
    db_path.parent.mkdir(parents=True, exist_ok=True)

# --- SQLAlchemy setup ---
engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False}
    if settings.database_url.startswith("sqlite")
    else {},
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
