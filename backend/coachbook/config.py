# backend/coachbook/config.py

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    database_url: str = "sqlite:///./data/coachbook.db"
    redis_url: str = "redis://localhost:6379/0"
    log_level: str = "INFO"

    business_timezone: str = "America/Chicago"

    # Google Calendar (service account, base64-encoded JSON key)
    google_service_account_key: str = ""
    google_calendar_ids: str = ""
    google_bookings_calendar_id: str = ""
    google_timeout_seconds: float = 10.0
    meet_link: str = ""

    # Booking policy
    booking_horizon_days: int = 28
    slot_step_minutes: int = 30
    duration_classes: str = "30,60"
    availability_cache_ttl_seconds: int = 900
    degraded_cache_ttl_seconds: int = 60
    slot_lock_ttl_seconds: int = 60
    ledger_max_retries: int = 3
    compensation_attempts: int = 5

    # Event title patterns (comma-separated regexes, case-insensitive)
    ignored_event_patterns: str = r"^week\s*\d*,^week$"
    free_override_patterns: str = r"\bis\s+free\b"

    # Shared secret for /internal/* (empty = rely on the network boundary)
    internal_api_token: str = ""

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        extra="ignore",
    )

    @property
    def resolved_database_url(self) -> str:
        url = self.database_url
        if url.startswith("sqlite:///./"):
            relative_path = url.replace("sqlite:///./", "")
            absolute_path = BASE_DIR / relative_path
            return f"sqlite:///{absolute_path}"
        return url

    @property
    def calendar_source_ids(self) -> list[str]:
        """Busy-time sources; the bookings calendar is always included."""
        ids: list[str] = []
        for raw in self.google_calendar_ids.split(","):
            if raw.strip() and raw.strip() not in ids:
                ids.append(raw.strip())
        bookings_id = self.google_bookings_calendar_id.strip()
        if bookings_id and bookings_id not in ids:
            ids.append(bookings_id)
        return ids

    @property
    def calendar_configured(self) -> bool:
        return bool(self.google_service_account_key) and bool(self.calendar_source_ids)


def split_patterns(raw: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in raw.split(",") if p.strip())


settings = Settings()
