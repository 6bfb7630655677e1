import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        default_currency: str,
        fx_provider: str,
        fx_fetch_enabled: bool,
        fx_timeout_secs: float,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.default_currency = default_currency
        self.fx_provider = fx_provider
        self.fx_fetch_enabled = fx_fetch_enabled
        self.fx_timeout_secs = fx_timeout_secs


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "UTC")
    default_currency = os.getenv("LEDGER_DEFAULT_CURRENCY", "USD").strip().upper()
    fx_provider = os.getenv("LEDGER_FX_PROVIDER", "frankfurter")
    fx_fetch_enabled = _env_flag("LEDGER_FX_FETCH", "0")
    fx_timeout_secs = float(os.getenv("LEDGER_FX_TIMEOUT_SECS", "5"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        default_currency=default_currency,
        fx_provider=fx_provider,
        fx_fetch_enabled=fx_fetch_enabled,
        fx_timeout_secs=fx_timeout_secs,
    )
