from functools import lru_cache
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    # first load variables from env file
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    app_name: str = Field(default="GradeScan API")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    google_api_key: Optional[str] = Field(default=None)
    gemini_enabled: bool = Field(default=True)
    # default tier, then the cheaper tier used on quota errors and the
    # stronger tier used when a multi-student scan finds nobody
    gemini_model: str = Field(default="gemini-2.5-flash")
    gemini_light_model: str = Field(default="gemini-2.5-flash-lite")
    gemini_pro_model: str = Field(default="gemini-2.5-pro")
    gemini_temperature: float = Field(default=0.1)

    single_max_tokens: int = Field(default=2000)
    multi_max_tokens: int = Field(default=3000)
    escalation_max_tokens: int = Field(default=3500)
    light_max_tokens: int = Field(default=2500)

    single_timeout_seconds: float = Field(default=30.0)
    multi_timeout_seconds: float = Field(default=45.0)

    single_max_width: int = Field(default=1200)
    multi_max_width: int = Field(default=1400)
    jpeg_quality: int = Field(default=90)

    api_key_enabled: bool = Field(default=False)
    api_key: Optional[str] = Field(default=None)

    max_file_size_mb: int = Field(default=10)
    allowed_extensions: str = Field(default="jpg,jpeg,png,pdf,webp")

    rate_limit_requests: int = Field(default=100)

    auto_apply_threshold: float = Field(default=0.9)
    scan_history_limit: int = Field(default=50)
    data_file: Optional[str] = Field(default=None)

    log_level: str = Field(default="INFO")
    log_file: str = Field(default="logs/app.log")

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024

    @property
    def allowed_extensions_list(self) -> List[str]:
        return [ext.strip().lower() for ext in self.allowed_extensions.split(",")]

    def validate_llm_config(self) -> bool:
        return bool(self.gemini_enabled and self.google_api_key)


@lru_cache()
def get_settings() -> Settings:
    return Settings()


# Global settings instance
settings = get_settings()
