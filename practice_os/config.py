"""Application configuration — environment variables and defaults.

Every tunable lives HERE: storage paths, mail credentials, market data keys,
the rebalancing tolerance band and the health monitor timings.
"""

import os
from pathlib import Path


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Settings:
    """Central configuration pulled from environment with safe defaults."""

    # Paths
    BASE_DIR: Path = Path(__file__).resolve().parent.parent
    DATA_DIR: Path = Path(os.getenv("PRACTICE_DATA_DIR", str(BASE_DIR / "data")))
    LOGS_DIR: Path = BASE_DIR / "logs"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    DB_PATH: Path = DATA_DIR / "practice_os.duckdb"

    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))

    # ── Email (Gmail SMTP with an app password) ───────────────────
    GMAIL_USER: str = os.getenv("GMAIL_USER", "")
    GMAIL_APP_PASSWORD: str = os.getenv("GMAIL_APP_PASSWORD", "")
    ALERT_EMAIL: str = os.getenv("ALERT_EMAIL", "")
    SMTP_HOST: str = os.getenv("SMTP_HOST", "smtp.gmail.com")
    SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))

    # ── Auth provider keys (only inspected by the health monitor) ─
    CLERK_SECRET_KEY: str = os.getenv("CLERK_SECRET_KEY", "")
    CLERK_PUBLISHABLE_KEY: str = os.getenv(
        "CLERK_PUBLISHABLE_KEY", os.getenv("VITE_CLERK_PUBLISHABLE_KEY", "")
    )

    # ── Market data providers ─────────────────────────────────────
    MARKETSTACK_API_KEY: str = os.getenv("MARKETSTACK_API_KEY", "")
    TWELVE_DATA_API_KEY: str = os.getenv("TWELVE_DATA_API_KEY", "")

    # ── Rebalancing ───────────────────────────────────────────────
    # Percentage points either side of the target still counted as on-target
    REBALANCE_TOLERANCE_PCT: float = float(os.getenv("REBALANCE_TOLERANCE_PCT", "2.0"))

    # ── Health monitor ────────────────────────────────────────────
    HEALTH_CHECK_INTERVAL_SECONDS: float = float(
        os.getenv("HEALTH_CHECK_INTERVAL_SECONDS", "30")
    )
    HEALTH_ALERT_COOLDOWN_SECONDS: float = float(
        os.getenv("HEALTH_ALERT_COOLDOWN_SECONDS", "300")
    )
    HEALTH_MAX_CONSECUTIVE_ERRORS: int = int(
        os.getenv("HEALTH_MAX_CONSECUTIVE_ERRORS", "3")
    )
    HEALTH_DB_RECONNECT_ATTEMPTS: int = int(
        os.getenv("HEALTH_DB_RECONNECT_ATTEMPTS", "5")
    )
    HEALTH_DB_RECONNECT_DELAY_SECONDS: float = float(
        os.getenv("HEALTH_DB_RECONNECT_DELAY_SECONDS", "2.0")
    )
    HEALTH_AUTOSTART: bool = _env_bool("HEALTH_AUTOSTART", "true")

    @property
    def EMAIL_CONFIGURED(self) -> bool:
        """Computed: both Gmail credentials are present."""
        return bool(self.GMAIL_USER and self.GMAIL_APP_PASSWORD)

    @property
    def AUTH_CONFIGURED(self) -> bool:
        """Computed: both auth provider keys are present."""
        return bool(self.CLERK_SECRET_KEY and self.CLERK_PUBLISHABLE_KEY)

    @property
    def ALERT_RECIPIENT(self) -> str:
        """Computed: where alert emails go (falls back to the sender)."""
        return self.ALERT_EMAIL or self.GMAIL_USER

    def __init__(self) -> None:
        """Ensure runtime directories exist."""
        self.DATA_DIR.mkdir(parents=True, exist_ok=True)
        self.LOGS_DIR.mkdir(parents=True, exist_ok=True)


settings = Settings()
