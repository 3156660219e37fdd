from functools import lru_cache
from urllib.parse import urlsplit

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    mongodb_uri: str = Field(default="mongodb://localhost:27017/email-tracker", alias="MONGODB_URI")
    mongodb_db: str = Field(default="", alias="MONGODB_DB")
    mongodb_collection: str = Field(default="emails", alias="MONGODB_COLLECTION")
    port: int = Field(default=3500, alias="PORT")

    # Single logical connection: small, highly concurrent handler, no connection storms.
    mongodb_max_pool_size: int = Field(default=1, alias="MONGODB_MAX_POOL_SIZE")
    mongodb_connect_timeout_ms: int = Field(default=5000, alias="MONGODB_CONNECT_TIMEOUT_MS")
    # Idle pooled sockets are closed after this long.
    mongodb_max_idle_time_ms: int = Field(default=45000, alias="MONGODB_MAX_IDLE_TIME_MS")
    mongodb_server_selection_timeout_ms: int = Field(default=5000, alias="MONGODB_SERVER_SELECTION_TIMEOUT_MS")

    record_open_max_time_ms: int = Field(default=4000, alias="RECORD_OPEN_MAX_TIME_MS")
    record_open_timeout_seconds: float = Field(default=4.5, alias="RECORD_OPEN_TIMEOUT_SECONDS")
    open_history_limit: int | None = Field(default=None, ge=1, alias="OPEN_HISTORY_LIMIT")

    trust_cloudflare: bool = Field(default=False, alias="TRUST_CLOUDFLARE")
    tracking_base_url: str = Field(default="http://localhost:3500", alias="TRACKING_BASE_URL")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    enable_metrics_endpoint: bool = Field(default=True, alias="ENABLE_METRICS_ENDPOINT")

    @property
    def database_name(self) -> str:
        if self.mongodb_db:
            return self.mongodb_db
        # mongodb://host/<db>?opts; no SRV lookup needed for the name.
        return urlsplit(self.mongodb_uri).path.lstrip("/") or "email-tracker"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
