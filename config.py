import os

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App info
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "QueueSense Consultation Engine")
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # State file (JSON). Empty string keeps everything in memory.
    DATA_FILE: str = os.getenv("DATA_FILE", "/tmp/data/queuesense_state.json")

    # Session defaults
    DEFAULT_AVG_TIME: int = int(os.getenv("DEFAULT_AVG_TIME", 10))
    DEFAULT_BUFFER_TIME: int = int(os.getenv("DEFAULT_BUFFER_TIME", 0))
    DEFAULT_START_TIME: str = os.getenv("DEFAULT_START_TIME", "09:00")
    DEFAULT_END_TIME: str = os.getenv("DEFAULT_END_TIME", "17:00")
    WAITING_LIST_CAP: int = int(os.getenv("WAITING_LIST_CAP", 10))

    # Logs
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
