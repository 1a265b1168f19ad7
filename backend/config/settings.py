"""
Application settings and configuration
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Dict, List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application settings
    APP_NAME: str = "Fashion Catalog Engine"
    VERSION: str = "1.0.0"
    DEBUG: bool = Field(default=True)
    ENVIRONMENT: str = Field(default="development", validation_alias="PYTHON_ENV")

    # Server settings
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8000, validation_alias="BACKEND_PORT")

    # CORS settings
    ALLOWED_ORIGINS: List[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"]
    )

    # Supabase settings
    SUPABASE_URL: str = Field(default="https://mock-project.supabase.co")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(default="mock-service-role-key")

    # Scraping settings
    SCRAPER_MAX_RETRIES: int = Field(default=3)
    SCRAPER_RETRY_BACKOFF: float = Field(default=3.0)
    SCRAPER_TIMEOUT: int = Field(default=30)
    SCRAPER_CATEGORY_TIMEOUT: int = Field(default=15)
    SCRAPER_CHECKPOINT_EVERY: int = Field(default=50)

    # Deployment specific catalog ids (source is skipped when unset)
    OYSHO_STORE_ID: Optional[str] = Field(default=None)
    OYSHO_CATALOG_ID: Optional[str] = Field(default=None)
    PULLANDBEAR_STORE_ID: Optional[str] = Field(default=None)
    PULLANDBEAR_CATALOG_ID: Optional[str] = Field(default=None)
    MASSIMODUTTI_STORE_ID: Optional[str] = Field(default=None)
    MASSIMODUTTI_CATALOG_ID: Optional[str] = Field(default=None)

    # Zara needs no ids; H&M needs its listing endpoint and categoryId -> name map
    ZARA_ENABLED: bool = Field(default=True)
    HM_API_BASE_URL: Optional[str] = Field(default=None)
    HM_CATEGORIES: Dict[str, str] = Field(default_factory=dict)
    HM_LISTING_PARAMS: str = Field(default="")
    HM_PAGE_SIZE: int = Field(default=36)

    # Progress tracking
    PROGRESS_EVICTION_SECONDS: float = Field(default=30.0)
    PROGRESS_STREAM_CLOSE_DELAY: float = Field(default=1.0)

    # Tracking lists
    TRACKING_MAX_PER_USER: int = Field(default=10)
    TRACKING_CACHE_TTL: float = Field(default=300.0)

    # Image relay
    IMAGE_PROXY_TIMEOUT: int = Field(default=15)
    IMAGE_CACHE_MAX_AGE: int = Field(default=86400)

    # Resolver lookup order for bare reference codes
    RESOLVER_SOURCE_PRIORITY: List[str] = Field(
        default=["bershka", "stradivarius", "pullandbear", "massimodutti", "oysho", "zara", "hm"]
    )

    # Monitoring
    LOG_LEVEL: str = Field(default="info")

    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT.lower() in ["development", "dev"]

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT.lower() in ["production", "prod"]

    def get_log_config(self) -> dict:
        """Get logging configuration based on environment."""
        level = self.LOG_LEVEL.upper()

        config = {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                },
                "detailed": {
                    "format": "%(asctime)s - %(name)s - %(levelname)s - %(module)s - %(funcName)s - %(message)s",
                },
            },
            "handlers": {
                "default": {
                    "formatter": "default" if self.is_production() else "detailed",
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stdout",
                },
            },
            "root": {
                "level": level,
                "handlers": ["default"],
            },
        }

        return config


# Create settings instance
settings = Settings()
