import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        plaid_client_id: str,
        plaid_secret: str,
        plaid_env: str,
        provider_retry_attempts: int,
        provider_retry_delay_secs: float,
        recurring_day_tolerance: int,
        trailing_window_days: int,
        max_goal_months: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.plaid_client_id = plaid_client_id
        self.plaid_secret = plaid_secret
        self.plaid_env = plaid_env
        self.provider_retry_attempts = provider_retry_attempts
        self.provider_retry_delay_secs = provider_retry_delay_secs
        self.recurring_day_tolerance = recurring_day_tolerance
        self.trailing_window_days = trailing_window_days
        self.max_goal_months = max_goal_months


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budget.db"
    database_url = os.getenv("BUDGET_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BUDGET_TIMEZONE", "Europe/Berlin")
    plaid_client_id = os.getenv("BUDGET_PLAID_CLIENT_ID", "")
    plaid_secret = os.getenv("BUDGET_PLAID_SECRET", "")
    plaid_env = os.getenv("BUDGET_PLAID_ENV", "sandbox")
    provider_retry_attempts = int(os.getenv("BUDGET_PROVIDER_RETRY_ATTEMPTS", "3"))
    provider_retry_delay_secs = float(
        os.getenv("BUDGET_PROVIDER_RETRY_DELAY_SECS", "3")
    )
    recurring_day_tolerance = int(os.getenv("BUDGET_RECURRING_DAY_TOLERANCE", "3"))
    trailing_window_days = int(os.getenv("BUDGET_TRAILING_WINDOW_DAYS", "30"))
    max_goal_months = int(os.getenv("BUDGET_MAX_GOAL_MONTHS", "600"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        plaid_client_id=plaid_client_id,
        plaid_secret=plaid_secret,
        plaid_env=plaid_env,
        provider_retry_attempts=provider_retry_attempts,
        provider_retry_delay_secs=provider_retry_delay_secs,
        recurring_day_tolerance=recurring_day_tolerance,
        trailing_window_days=trailing_window_days,
        max_goal_months=max_goal_months,
    )
