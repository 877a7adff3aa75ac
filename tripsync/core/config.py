from pydantic_settings import BaseSettings
from dotenv import load_dotenv
from typing import Optional

load_dotenv()

class Settings(BaseSettings):
    DATABASE_URL: str
    REDIS_URL: str
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"

    PROJECT_NAME: str = "TripSync API"
    PROJECT_VERSION: str = "1.0.0"
    PROJECT_DESCRIPTION: str = "Group trip date scheduling and nudges"

    # Date windows
    MAX_WINDOW_DAYS: int = 14
    MAX_WINDOWS_PER_USER: int = 2
    WINDOW_SIMILARITY_THRESHOLD: float = 0.6
    OVERLAP_MIN_DAYS: int = 2

    # Nudge thresholds (percent of active travelers)
    AVAILABILITY_HALF_THRESHOLD: int = 50
    STRONG_OVERLAP_THRESHOLD: int = 60
    LOW_COVERAGE_THRESHOLD: int = 40

    # Nudge cooldowns (hours)
    COOLDOWN_CELEBRATORY_HOURS: int = 8760
    COOLDOWN_LEADER_ACTION_HOURS: int = 72
    COOLDOWN_TRAVELER_HINT_HOURS: int = 168
    COOLDOWN_CONFIRMATION_HOURS: int = 24

    # Nudge events live in redis; correlations are durable rows
    NUDGE_EVENT_TTL_SECONDS: int = 604800
    NUDGE_CORRELATION_WINDOW_MINUTES: int = 30

    TRIP_CACHE_TTL_SECONDS: int = 1800
    CORS_ORIGIN_REGEX: Optional[str] = r"^http:\/\/(localhost|127\.0\.0\.1)(:\d{1,5})?$"

    class Config:
        env_file = ".env"


settings = Settings()
