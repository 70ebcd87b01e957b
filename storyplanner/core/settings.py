from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    state_file: str = Field(default="./storage/session_state.json", validation_alias="STATE_FILE")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE")

    google_cloud_project: str | None = Field(default=None, validation_alias="GOOGLE_CLOUD_PROJECT")
    google_cloud_location: str = Field(default="us-central1", validation_alias="GOOGLE_CLOUD_LOCATION")

    gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
    gemini_text_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_TEXT_MODEL")
    gemini_search_model: str = Field(default="gemini-3-flash-preview", validation_alias="GEMINI_SEARCH_MODEL")
    gemini_image_model: str = Field(default="gemini-2.5-flash-image", validation_alias="GEMINI_IMAGE_MODEL")
    gemini_fallback_text_model: str | None = Field(
        default="gemini-2.0-flash",
        validation_alias="GEMINI_FALLBACK_TEXT_MODEL",
    )
    gemini_fallback_image_model: str | None = Field(
        default=None,
        validation_alias="GEMINI_FALLBACK_IMAGE_MODEL",
    )
    gemini_max_retries: int = Field(default=3, validation_alias="GEMINI_MAX_RETRIES")
    gemini_initial_backoff_seconds: float = Field(
        default=0.8,
        validation_alias="GEMINI_INITIAL_BACKOFF_SECONDS",
    )
    gemini_timeout_seconds: float = Field(default=120.0, validation_alias="GEMINI_TIMEOUT_SECONDS")
    gemini_circuit_breaker_threshold: int = Field(
        default=5,
        validation_alias="GEMINI_CIRCUIT_BREAKER_THRESHOLD",
    )
    gemini_circuit_breaker_timeout: int = Field(
        default=60,
        validation_alias="GEMINI_CIRCUIT_BREAKER_TIMEOUT",
    )

    # Deadline for a single orchestrated backend call (plan, sheet, image, edit).
    item_timeout_seconds: float = Field(default=300.0, validation_alias="ITEM_TIMEOUT_SECONDS")


settings = Settings()
