from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "data/assignmint.db"
    host: str = "0.0.0.0"
    port: int = 8000
    reservation_minutes: int = 15
    max_active_reservations: int = 3
    wave_interval_minutes: int = 15
    default_wave_size: int = 5
    wave_targets: list[int] = [5, 15, 50]
    invite_ceiling: int = 50
    eligible_min_rating: float = 3.0
    eligible_min_rating_count: int = 3
    scoring_weights: dict[str, float] = {}
    scheduler_enabled: bool = True
    scheduler_interval_seconds: float = 60.0
    admin_key: str | None = None
    webhook_timeout_seconds: int = 10
    webhook_max_retries: int = 3
    rate_limit_register: str = "5/hour"
    rate_limit_claim: str = "30/minute"
    rate_limit_read: str = "120/minute"
    rate_limit_admin: str = "60/minute"

    model_config = {"env_prefix": "ASSIGNMINT_"}


settings = Settings()
