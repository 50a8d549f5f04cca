"""
Strat Scanner — Settings

Environment-driven configuration (`.env` supported). Read once per process
through `get_settings()`; tests override it via FastAPI dependency overrides.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_env: str = "development"
    app_debug: bool = True

    # ── Lighter exchange ──
    lighter_api_base: str = "https://mainnet.zklighter.elliot.ai"
    lighter_api_version: str = "v1"
    lighter_timeout_seconds: float = Field(default=10.0, gt=0)

    # ── Scanner ──
    max_concurrent_fetches: int = Field(default=5, ge=1)
    ftc_enabled: bool = False  # /ftc and /signals return empty results until enabled

    # ── CORS (comma-separated) ──
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    @property
    def lighter_api_url(self) -> str:
        return f"{self.lighter_api_base.rstrip('/')}/api/{self.lighter_api_version}"

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
