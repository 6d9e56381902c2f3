from pydantic_settings import BaseSettings, SettingsConfigDict


# External association ids per pipeline stage (one association per stage, not labels).
_DEFAULT_STAGE_ASSOCIATION_IDS: dict[str, str] = {
    "Sent to Buyer": "69451ecd5fba08f5525758a6",
    "Buyer Responded": "693944eb0c32be3d486d83c0",
    "Showing Scheduled": "69451eb4a09d396fae2e81fb",
    "Property Viewed": "69451ea83246701a7740063b",
    "Underwriting": "69451e925fba087bc357502b",
    "Contracts": "69451e83a6d620ecd98d70d8",
    "Qualified": "694bbb6fa09d3903b4da9be3",
    "Closed Deal / Won": "69451e67a09d39427b2e7870",
    "Not Interested": "69451e36a09d39271e2e7383",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Runtime ---
    ENV: str = "dev"  # dev|prod
    MATCH_DB_URL: str = "sqlite+aiosqlite:///./buyermatch.db"

    # --- Geocoding (Mapbox today; anything implementing Geocoder works) ---
    MAPBOX_ACCESS_TOKEN: str | None = None
    MAPBOX_BASE_URL: str = "https://api.mapbox.com/geocoding/v5/mapbox.places"
    GEOCODE_COUNTRY: str = "US"
    GEOCODE_DEFAULT_STATE: str | None = None
    GEOCODE_BATCH_DELAY_S: float = 0.1  # 10 req/s max in batch mode

    # --- Outbound HTTP resilience ---
    HTTP_TIMEOUT_S: float = 10.0
    HTTP_MAX_RETRIES: int = 2
    HTTP_BACKOFF_BASE_S: float = 0.5
    HTTP_RATE_LIMIT_RPS: float = 10.0
    HTTP_CIRCUIT_FAIL_THRESHOLD: int = 5
    HTTP_CIRCUIT_RESET_S: float = 60.0

    # --- Matching ---
    MATCH_MIN_SCORE: int = 60

    # --- Pipeline sync ---
    STAGE_ASSOCIATION_IDS: dict[str, str] = dict(_DEFAULT_STAGE_ASSOCIATION_IDS)
    PIPELINE_SYNC_WEBHOOK_URL: str | None = None
    PIPELINE_SYNC_WEBHOOK_SECRET: str | None = None

    # --- Scheduler tuning ---
    SCHED_MATCH_INTERVAL_MINUTES: int = 1440  # daily
    SCHED_MATCH_MIN_SCORE: int = 60
    SCHED_DISPATCH_INTERVAL_MINUTES: int = 5
    SCHED_DISPATCH_BATCH_SIZE: int = 50


settings = Settings()
