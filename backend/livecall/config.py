# livecall/config.py
import os
from pydantic import BaseModel
from dotenv import load_dotenv

load_dotenv()  # Load environment variables from .env file


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class Settings(BaseModel):
    # General app settings
    APP_NAME: str = "LiveCall Core API"
    env: str = os.getenv("ENV", "dev")

    # Host & Port settings
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8000"))

    # CORS origins for the mobile/web clients
    CORS_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Billing
    # Host keeps 70% of every settled call, floored; the platform keeps the remainder
    host_revenue_share: float = float(os.getenv("HOST_REVENUE_SHARE", "0.70"))
    default_rate_per_minute: int = int(os.getenv("DEFAULT_RATE_PER_MINUTE", "50"))

    # Free target program defaults (applied when an admin first enables a host)
    free_target_daily_seconds: int = int(os.getenv("FREE_TARGET_DAILY_SECONDS", "28800"))  # 8h
    free_target_max_disconnects: int = int(os.getenv("FREE_TARGET_MAX_DISCONNECTS", "3"))
    free_target_disconnect_window: int = int(os.getenv("FREE_TARGET_DISCONNECT_WINDOW", "600"))  # seconds
    free_target_daily_bonus: int = int(os.getenv("FREE_TARGET_DAILY_BONUS", "100000"))

    # Background sweeper for abandoned calls and stale hosts (opt-in; idle expiry needs clients that send heartbeats)
    call_sweeper_enabled: bool = _env_bool("CALL_SWEEPER_ENABLED", "false")
    call_sweep_interval_seconds: int = int(os.getenv("CALL_SWEEP_INTERVAL_SECONDS", "30"))
    call_idle_timeout_seconds: int = int(os.getenv("CALL_IDLE_TIMEOUT_SECONDS", "120"))
    call_ring_timeout_seconds: int = int(os.getenv("CALL_RING_TIMEOUT_SECONDS", "60"))
    host_stale_after_seconds: int = int(os.getenv("HOST_STALE_AFTER_SECONDS", "300"))

settings = Settings()  # Instantiate configuration
