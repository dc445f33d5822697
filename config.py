import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        log_level: str,
        scheduler_enabled: bool,
        sweep_hour: int,
        sweep_minute: int,
        sweep_retries: int,
        sweep_retry_delay_secs: float,
        max_catch_up: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.log_level = log_level
        self.scheduler_enabled = scheduler_enabled
        self.sweep_hour = sweep_hour
        self.sweep_minute = sweep_minute
        self.sweep_retries = sweep_retries
        self.sweep_retry_delay_secs = sweep_retry_delay_secs
        self.max_catch_up = max_catch_up


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("FINANCE_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "finance.db"
        database_url = f"sqlite:///{default_db}"
    return Settings(
        database_url=database_url,
        timezone=os.getenv("FINANCE_TIMEZONE", "UTC"),
        log_level=os.getenv("FINANCE_LOG_LEVEL", "INFO").upper(),
        scheduler_enabled=_env_flag("FINANCE_SCHEDULER_ENABLED", "1"),
        sweep_hour=int(os.getenv("FINANCE_SWEEP_HOUR", "1")),
        sweep_minute=int(os.getenv("FINANCE_SWEEP_MINUTE", "0")),
        sweep_retries=int(os.getenv("FINANCE_SWEEP_RETRIES", "3")),
        sweep_retry_delay_secs=float(
            os.getenv("FINANCE_SWEEP_RETRY_DELAY_SECS", "60")
        ),
        max_catch_up=int(os.getenv("FINANCE_MAX_CATCH_UP", "366")),
    )
