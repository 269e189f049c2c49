import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        secret_key: str,
        token_max_age_days: int,
        recurring_hour: int,
        notification_limit: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.token_max_age_days = token_max_age_days
        self.recurring_hour = recurring_hour
        self.notification_limit = notification_limit


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("LEDGER_DATABASE_URL")
    if not database_url:
        data_dir = _ensure_data_dir()
        database_url = f"sqlite:///{data_dir / 'ledger.db'}"
    timezone = os.getenv("LEDGER_TIMEZONE", "UTC")
    secret_key = os.getenv(
        "LEDGER_SECRET_KEY",
        "4d1f0c9b7e2a48c3b5e6a7d8f9012345c6b7a8d9e0f1a2b3c4d5e6f7a8b9c0d1",
    )
    token_max_age_days = int(os.getenv("LEDGER_TOKEN_MAX_AGE_DAYS", "30"))
    recurring_hour = int(os.getenv("LEDGER_RECURRING_HOUR", "3"))
    notification_limit = int(os.getenv("LEDGER_NOTIFICATION_LIMIT", "20"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        secret_key=secret_key,
        token_max_age_days=token_max_age_days,
        recurring_hour=recurring_hour,
        notification_limit=notification_limit,
    )
