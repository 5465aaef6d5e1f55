import json

from pydantic_settings import BaseSettings, NoDecode
from pydantic import field_validator
from typing import Annotated, List


class Settings(BaseSettings):
    # Application settings
    APP_NAME: str = "Timetable Sync"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # Local blob store
    DATABASE_URL: str = "sqlite:///./timetable.db"
    DATABASE_ECHO: bool = False

    # School defaults
    DEFAULT_SCHOOL_NAME: str = "Mupini Combined School"
    DEFAULT_ACADEMIC_YEAR: str = "2025"
    PRIMARY_COLOR: str = "#4f46e5"

    # Timetable rules
    SCHOOL_DAYS: Annotated[List[str], NoDecode] = ["Sat", "Sun", "Mon", "Tue", "Wed", "Thu", "Fri"]
    GENERIC_SUBJECT: str = "GENERIC"
    AUTO_SHORT_CODE_LENGTH: int = 3

    # Realtime replication
    REMOTE_BACKEND: str = "memory"  # "memory" or "firebase"
    FIREBASE_DATABASE_URL: str = ""
    FIREBASE_AUTH_TOKEN: str = ""
    REMOTE_TIMEOUT: float = 10.0

    @field_validator("SCHOOL_DAYS", mode="before")
    @classmethod
    def parse_days(cls, v):
        if isinstance(v, str):
            if v.strip().startswith("["):
                return json.loads(v)
            return [day.strip() for day in v.split(",") if day.strip()]
        return v

    @field_validator("REMOTE_BACKEND")
    @classmethod
    def validate_remote_backend(cls, v):
        if v not in ("memory", "firebase"):
            raise ValueError("REMOTE_BACKEND must be 'memory' or 'firebase'")
        return v

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("DATABASE_URL is required")
        return v

    model_config = {"env_file": ".env", "case_sensitive": True}


settings = Settings()
