from __future__ import annotations
from pydantic_settings import BaseSettings
from pydantic import Field

class Settings(BaseSettings):
    database_url: str = Field(..., alias="DATABASE_URL")

    auth_jwks_url: str = Field(..., alias="AUTH_JWKS_URL")
    token_issuer: str = Field("authentication-svc", alias="TOKEN_ISSUER")
    # comma separated; roles allowed to scan attendees in/out
    admin_roles: str = Field("organiser,admin", alias="ADMIN_ROLES")

    # Geocoding (Nominatim usage policy: identify the client, max 1 req/s)
    geocoder_base_url: str = Field("https://nominatim.openstreetmap.org", alias="GEOCODER_BASE_URL")
    geocoder_user_agent: str = Field("event-checkin-svc/1.0 (ops@example.com)", alias="GEOCODER_USER_AGENT")
    geocoder_min_interval_seconds: float = Field(default=1.0, alias="GEOCODER_MIN_INTERVAL_SECONDS")
    geocoder_timeout_seconds: float = Field(default=10.0, alias="GEOCODER_TIMEOUT_SECONDS")

    # Geofence / auto check-out
    geofence_radius_meters: float = Field(default=150.0, alias="GEOFENCE_RADIUS_METERS")
    auto_checkout_threshold_minutes: float = Field(default=5.0, alias="AUTO_CHECKOUT_THRESHOLD_MINUTES")
    poll_interval_seconds: float = Field(default=45.0, alias="POLL_INTERVAL_SECONDS")
    position_timeout_seconds: float = Field(default=10.0, alias="POSITION_TIMEOUT_SECONDS")
    position_max_age_seconds: float = Field(default=60.0, alias="POSITION_MAX_AGE_SECONDS")

    # Redis
    redis_url: str = Field("redis://127.0.0.1:6379/0", alias="REDIS_URL")
    rl_enabled: bool = Field(default=True, alias="RL_ENABLED")
    rl_window_seconds: int = Field(default=60, alias="RL_WINDOW_SECONDS")
    rl_max_reqs: int = Field(default=60, alias="RL_MAX_REQS")

    # NATS
    nats_urls: str = Field("nats://127.0.0.1:4222", alias="NATS_URLS")
    nats_subject_checked_in: str = Field("attendance.checked_in", alias="NATS_SUBJECT_CHECKED_IN")
    nats_subject_checked_out: str = Field("attendance.checked_out", alias="NATS_SUBJECT_CHECKED_OUT")
    publish_events: bool = Field(default=True, alias="PUBLISH_EVENTS")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_prefix = ""
        case_sensitive = False

    @property
    def admin_roles_set(self) -> frozenset[str]:
        return frozenset(r.strip() for r in self.admin_roles.split(",") if r.strip())

_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
