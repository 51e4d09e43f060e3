"""Application configuration loaded from environment variables and .env file."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.

    Values are loaded from environment variables first,
    then from a .env file in the project root as fallback.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    DATABASE_URL: str = "sqlite:///./dev.db"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Persistence backend: "sql" | "memory"
    STORE_BACKEND: str = "sql"
    SEED_ITEMS_PATH: str = "src/data/seed_items.json"
    # foes / questions / encounters loaded into an empty store at startup
    SEED_CONTENT_PATH: str = "src/data/seed_content.json"

    # Battle tuning
    DEFAULT_TIME_LIMIT_SECONDS: float = 20.0
    TIMER_TICK_SECONDS: float = 1.0
    LOSS_GOLD_PENALTY_RATE: float = 0.2
    LEVEL_CAP: int = 100

    # Starter character
    STARTER_MAX_HP: int = 15
    STARTER_BASE_DAMAGE: int = 1
    STARTER_BASE_DEFENSE: int = 0
    STARTER_CLASS_NAME: str = "Apprentice"


settings = Settings()
