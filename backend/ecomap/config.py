import os
from dataclasses import dataclass
from typing import List

from dotenv import load_dotenv

# Load .env from project root
load_dotenv()

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./ecosystem.db"
DEFAULT_VISION_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_VISION_MODEL = "llama-3.2-11b-vision-preview"


@dataclass(frozen=True)
class Settings:
    vision_api_key: str
    vision_base_url: str
    vision_model: str
    vision_temperature: float
    vision_timeout_seconds: float
    vision_extract_attempts: int

    database_url: str
    db_connect_retries: int
    db_connect_delay_seconds: float

    section: str
    cors_origins: List[str]
    log_level: str

    @property
    def persistence_enabled(self) -> bool:
        return bool(self.database_url)


def get_settings() -> Settings:
    """
    Read settings from the environment.
    Called at use time so that tests can patch os.environ.
    """
    origins = os.getenv("CORS_ORIGINS", "http://localhost:5173")

    return Settings(
        vision_api_key=os.getenv("GROQ_API_KEY", "").strip(),
        vision_base_url=os.getenv("VISION_BASE_URL", DEFAULT_VISION_BASE_URL),
        vision_model=os.getenv("VISION_MODEL", DEFAULT_VISION_MODEL),
        vision_temperature=float(os.getenv("VISION_TEMPERATURE", "0.1")),
        vision_timeout_seconds=float(os.getenv("VISION_TIMEOUT_SECONDS", "120")),
        vision_extract_attempts=int(os.getenv("VISION_EXTRACT_ATTEMPTS", "1")),
        database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL).strip(),
        db_connect_retries=int(os.getenv("DB_CONNECT_RETRIES", "5")),
        db_connect_delay_seconds=float(os.getenv("DB_CONNECT_DELAY_SECONDS", "2")),
        section=os.getenv("ECOSYSTEM_SECTION", "general"),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
