import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        session_secret: str,
        session_max_age_hours: int,
        ai_provider: str,
        ai_api_key: Optional[str],
        ai_model: str,
        ai_timeout_secs: float,
        dashboard_cache_ttl: int,
        insights_cache_ttl: int,
        transactions_cache_ttl: int,
        rolling_window_days: int,
        insight_retention_days: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.session_secret = session_secret
        self.session_max_age_hours = session_max_age_hours
        self.ai_provider = ai_provider
        self.ai_api_key = ai_api_key
        self.ai_model = ai_model
        self.ai_timeout_secs = ai_timeout_secs
        self.dashboard_cache_ttl = dashboard_cache_ttl
        self.insights_cache_ttl = insights_cache_ttl
        self.transactions_cache_ttl = transactions_cache_ttl
        self.rolling_window_days = rolling_window_days
        self.insight_retention_days = insight_retention_days


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "UTC")
    session_secret = os.getenv(
        "FINANCE_SESSION_SECRET",
        "5d1c0f3e8a7b49c2a6e4f0b9d8c7a6e5f4b3a2918d7c6b5a4f3e2d1c0b9a8f7e",
    )
    session_max_age_hours = int(os.getenv("FINANCE_SESSION_MAX_AGE_HOURS", "168"))
    ai_provider = os.getenv("FINANCE_AI_PROVIDER", "gemini")
    ai_api_key = os.getenv("FINANCE_AI_API_KEY") or os.getenv("GEMINI_API_KEY")
    ai_model = os.getenv("FINANCE_AI_MODEL", "gemini-2.5-flash")
    ai_timeout_secs = float(os.getenv("FINANCE_AI_TIMEOUT_SECS", "20"))
    dashboard_cache_ttl = int(os.getenv("FINANCE_DASHBOARD_CACHE_TTL", "300"))
    insights_cache_ttl = int(os.getenv("FINANCE_INSIGHTS_CACHE_TTL", "3600"))
    transactions_cache_ttl = int(os.getenv("FINANCE_TRANSACTIONS_CACHE_TTL", "600"))
    rolling_window_days = int(os.getenv("FINANCE_ROLLING_WINDOW_DAYS", "30"))
    insight_retention_days = int(os.getenv("FINANCE_INSIGHT_RETENTION_DAYS", "7"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        session_secret=session_secret,
        session_max_age_hours=session_max_age_hours,
        ai_provider=ai_provider,
        ai_api_key=ai_api_key,
        ai_model=ai_model,
        ai_timeout_secs=ai_timeout_secs,
        dashboard_cache_ttl=dashboard_cache_ttl,
        insights_cache_ttl=insights_cache_ttl,
        transactions_cache_ttl=transactions_cache_ttl,
        rolling_window_days=rolling_window_days,
        insight_retention_days=insight_retention_days,
    )
