"""Configuration settings for the Chat Gateway"""

from typing import Dict, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    # Server configuration
    port: int = 8080
    debug: bool = False
    log_level: str = "INFO"
    metrics_enabled: bool = True

    # Security
    jwt_secret: str = "jwt-secret-change-in-production"
    jwt_algorithm: str = "HS256"

    # CORS
    allowed_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:8080",
        "http://127.0.0.1:8080",
    ]

    # Storage
    storage_backend: str = "redis"  # redis, memory
    redis_url: str = "redis://localhost:6379"
    redis_key_prefix: str = "chat-gateway:"
    storage_lock_timeout: float = 5.0

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_requests: int = 10
    rate_limit_window: int = 60  # 1 minute
    rate_limit_atomic: bool = True
    violation_threshold: int = 5
    violation_window: int = 3600  # 1 hour
    block_duration: int = 3600  # 1 hour

    # Chat
    max_message_length: int = 1000
    blocked_words: List[str] = []
    spam_detection_enabled: bool = True
    llm_service_url: str = "http://llm:8004"
    llm_timeout: float = 30.0

    # Entitlements
    pro_license_active: bool = True
    enabled_features: List[str] = ["audio_features", "audio_mode", "voice_commands"]
    entitled_users: List[str] = []  # empty means every user is entitled

    # Audio mode
    audio_mode_enabled: bool = True
    audio_auto_listen: bool = True
    audio_timeout: int = 30
    audio_max_time: int = 300  # 5 minutes
    audio_session_ttl: int = 86400  # 24 hours
    voice_language: str = "en-US"

    # Text-to-speech
    tts_enabled: bool = True
    tts_auto_play: bool = True
    tts_smart_autoplay: bool = False
    tts_rate: float = 1.0
    tts_pitch: float = 1.0
    tts_volume: float = 0.8
    tts_voice_name: str = ""
    tts_language: str = "en-US"
    tts_chunk_size: int = 200
    tts_pause_detection: bool = True
    tts_custom_pronunciations: Dict[str, str] = Field(default_factory=dict)

    # Voice commands
    voice_commands_enabled: bool = True
    command_match_threshold: float = 0.7
    disabled_commands: List[str] = []
    contact_email: str = ""
    business_hours: str = ""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
    )

    @field_validator(
        "rate_limit_window",
        "violation_window",
        "block_duration",
        "audio_timeout",
        "audio_max_time",
        "audio_session_ttl",
    )
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("command_match_threshold")
    @classmethod
    def _threshold_range(cls, value: float) -> float:
        if not 0.0 < value <= 1.0:
            raise ValueError("must be within (0, 1]")
        return value

    @field_validator("tts_chunk_size", "max_message_length", "violation_threshold")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("storage_backend")
    @classmethod
    def _known_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in ("redis", "memory"):
            raise ValueError("storage_backend must be 'redis' or 'memory'")
        return value


settings = Settings()
