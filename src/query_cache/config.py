import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment variables."""

    # Posts backend (json-server)
    posts_api_url: str = os.getenv("POSTS_API_URL", "http://localhost:5000")
    http_timeout: float = float(os.getenv("HTTP_TIMEOUT", "10"))
    posts_per_page: int = int(os.getenv("POSTS_PER_PAGE", "5"))

    # Query cache
    query_stale_time: float = float(os.getenv("QUERY_STALE_TIME", "0"))
    query_retention: float = float(os.getenv("QUERY_RETENTION", "300"))  # 5 minutes
    query_retry_attempts: int = int(os.getenv("QUERY_RETRY_ATTEMPTS", "3"))
    query_retry_delay: float = float(os.getenv("QUERY_RETRY_DELAY", "1"))
    query_max_retry_delay: float = float(os.getenv("QUERY_MAX_RETRY_DELAY", "30"))

    # API
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_reload: bool = os.getenv("API_RELOAD", "true").lower() == "true"

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def __post_init__(self) -> None:
        """Validate settings after initialization."""
        if self.query_stale_time < 0:
            raise ValueError("QUERY_STALE_TIME must not be negative")

        if self.query_retention < 0:
            raise ValueError("QUERY_RETENTION must not be negative")

        if self.query_retry_attempts < 1:
            raise ValueError(
                f"QUERY_RETRY_ATTEMPTS must be at least 1, got {self.query_retry_attempts}"
            )

        if self.posts_per_page < 1:
            raise ValueError(f"POSTS_PER_PAGE must be at least 1, got {self.posts_per_page}")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for the application."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
