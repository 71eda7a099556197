import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        default_monthly_budget: int,
        min_monthly_budget: int,
        default_identity: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.default_monthly_budget = default_monthly_budget
        self.min_monthly_budget = min_monthly_budget
        self.default_identity = default_identity


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("WEEKLY_BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "weekly_budget.db"
    database_url = os.getenv("WEEKLY_BUDGET_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("WEEKLY_BUDGET_TIMEZONE", "America/Santiago")
    csrf_secret = os.getenv(
        "WEEKLY_BUDGET_CSRF_SECRET",
        "5d0c2b1f8e7a4c39a6f1d2e3b4c5a6978f1e2d3c4b5a69788796a5b4c3d2e1f0",
    )
    default_monthly_budget = int(
        os.getenv("WEEKLY_BUDGET_DEFAULT_MONTHLY_BUDGET", "100000")
    )
    min_monthly_budget = int(os.getenv("WEEKLY_BUDGET_MIN_MONTHLY_BUDGET", "1000"))
    default_identity = os.getenv("WEEKLY_BUDGET_DEFAULT_IDENTITY", "local")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        default_monthly_budget=default_monthly_budget,
        min_monthly_budget=min_monthly_budget,
        default_identity=default_identity,
    )
