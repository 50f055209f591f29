"""
Application settings
"""

from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings read from the environment or a .env file"""

    APP_NAME: str = "Imposter"
    VERSION: str = "1.0.0"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Shared store. An empty URL turns multi-device mode off.
    DATABASE_URL: str = "sqlite:///./imposter_game.db"

    # Polling / presence
    POLL_INTERVAL_SECONDS: float = 1.5
    HEARTBEAT_INTERVAL_SECONDS: float = 30
    PRUNE_INTERVAL_SECONDS: float = 10
    PRUNE_TIMEOUT_SECONDS: int = 120

    # Round rules
    MIN_PLAYERS: int = 3
    VOTING_COUNTDOWN_SECONDS: int = 30
    CHAT_FETCH_LIMIT: int = 200
    MAX_NAME_LENGTH: int = 18
    MAX_MESSAGE_LENGTH: int = 300
    CODE_CREATE_ATTEMPTS: int = 5

    CORS_ORIGINS: List[str] = ["*"]

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


settings = Settings()
