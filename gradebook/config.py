from typing import Dict, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ------------------------
    # Logging
    # ------------------------
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # ------------------------
    # Subject defaults (5-point scale)
    # ------------------------
    DEFAULT_PASSING_GRADE: float = 3.0
    MIN_PASSING_GRADE: float = 1.0
    MAX_PASSING_GRADE: float = 5.0
    # JSON in the environment, e.g. GRADEBOOK_DEFAULT_WEIGHTS='{"PRE_EXAM": 0.6, "ASSIGNMENT": 0.4}'
    DEFAULT_WEIGHTS: Dict[str, float] = {"PRE_EXAM": 0.5, "ASSIGNMENT": 0.5}

    # ------------------------
    # Dashboard
    # ------------------------
    RECENT_ACTIVITY_LIMIT: int = 5

    model_config = SettingsConfigDict(
        env_prefix="GRADEBOOK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
