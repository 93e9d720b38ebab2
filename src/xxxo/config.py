from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    # Pacing before the server plays the computer's move (seconds)
    ai_think_delay_min: float = 1.0
    ai_think_delay_max: float = 2.0
    default_difficulty: str = "medium"

    # Rooms
    room_code_length: int = 6
    room_ttl_seconds: int = 60 * 30
    # Games in play expire after this long without a move
    room_idle_ttl_seconds: int = 60 * 60 * 2

    model_config = SettingsConfigDict(
        env_prefix="XXXO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


settings = Settings()
