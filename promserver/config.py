from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from promserver.observability.metrics import DEFAULT_BUCKETS


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)

    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=9000, alias="PORT")
    static_dir: str = Field(default="static", alias="STATIC_DIR")

    metrics_path: str = Field(default="/prometheus", alias="METRICS_PATH")
    enable_metrics_endpoint: bool = Field(default=True, alias="ENABLE_METRICS_ENDPOINT")
    instrument_metrics_endpoints: bool = Field(default=False, alias="INSTRUMENT_METRICS_ENDPOINTS")
    unmatched_route_label: str = Field(default="unmatched", alias="UNMATCHED_ROUTE_LABEL")
    histogram_buckets: list[float] = Field(default=list(DEFAULT_BUCKETS), alias="HISTOGRAM_BUCKETS")
    max_series_per_metric: int | None = Field(default=1000, alias="MAX_SERIES_PER_METRIC")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO", alias="LOG_LEVEL")
    log_format: Literal["json", "console"] = Field(default="json", alias="LOG_FORMAT")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v

    @property
    def static_path(self) -> Path:
        return Path(self.static_dir)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
