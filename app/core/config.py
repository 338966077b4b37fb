"""Application configuration."""
from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenAI
    openai_api_key: str
    openai_model: str = "gpt-4"
    llm_timeout_seconds: float = 10.0

    # Deepgram
    deepgram_api_key: str
    stt_model: str = "nova-2"
    stt_endpointing_ms: int = 200
    stt_utterance_end_ms: int = 1000
    tts_model: str = "aura-luna-en"
    tts_timeout_seconds: float = 10.0

    # Database
    database_url: str
    appointment_backend: Literal["sql", "memory"] = "sql"

    # Office
    office_name: str = "our dental office"
    office_open_hour: int = 9
    office_close_hour: int = 17
    appointment_slot_minutes: int = 30
    appointment_search_days: int = 14

    # Caches
    cache_max_size: int = 1000
    cache_ttl_seconds: float = 3600.0
    max_history: int = 10

    # Media stream
    base_url: Optional[str] = None
    stream_url: Optional[str] = None
    sample_rate: int = 8000
    frame_duration_ms: int = 20
    keepalive_interval_seconds: float = 30.0
    greeting_message: str = "Hello! May I know your name, please?"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


settings = Settings()
