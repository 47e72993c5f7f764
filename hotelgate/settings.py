import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Supplier Configuration
    supplier_base_url: str = Field(default="", alias="SUPPLIER_BASE_URL")
    supplier_api_key: str = Field(default="", alias="SUPPLIER_API_KEY")
    supplier_timeout_ms: int = Field(default=5000, alias="SUPPLIER_TIMEOUT_MS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # Cache Configuration
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    cache_ttl_seconds: int = Field(default=300, alias="CACHE_TTL_SECONDS")
    property_cache_ttl_seconds: int = Field(
        default=86400, alias="PROPERTY_CACHE_TTL_SECONDS"
    )
    cache_jitter_percent: float = Field(default=0.2, alias="CACHE_JITTER_PERCENT")
    stale_ttl_multiplier: int = Field(default=2, alias="STALE_TTL_MULTIPLIER")
    lock_ttl_seconds: int = Field(default=10, alias="LOCK_TTL_SECONDS")
    lock_wait_ms: int = Field(default=100, alias="LOCK_WAIT_MS")
    dedupe_in_flight: bool = Field(default=True, alias="DEDUPE_IN_FLIGHT")

    # Idempotency / Client Contract
    idempotency_ttl_seconds: int = Field(default=3600, alias="IDEMPOTENCY_TTL_SECONDS")
    retry_after_seconds: int = Field(default=60, alias="RETRY_AFTER_SECONDS")
    max_stay_nights: int = Field(default=30, alias="MAX_STAY_NIGHTS")
    default_currency: str = Field(default="USD", alias="DEFAULT_CURRENCY")

    # Circuit Breaker Configuration
    circuit_error_threshold_percent: float = Field(
        default=50, alias="CIRCUIT_ERROR_THRESHOLD_PERCENT"
    )
    circuit_volume_threshold: int = Field(default=5, alias="CIRCUIT_VOLUME_THRESHOLD")
    circuit_reset_timeout_ms: int = Field(
        default=30000, alias="CIRCUIT_RESET_TIMEOUT_MS"
    )
    circuit_rolling_window_ms: int = Field(
        default=10000, alias="CIRCUIT_ROLLING_WINDOW_MS"
    )
    circuit_rolling_buckets: int = Field(default=10, alias="CIRCUIT_ROLLING_BUCKETS")


global_settings = Settings.model_validate(dict(os.environ))
