"""
Configuration management for the Shipment Tracking & Risk Engine
"""
from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # API Configuration
    API_HOST: str = Field(default="localhost")
    API_PORT: int = Field(default=8000)
    API_DEBUG: bool = Field(default=False)

    # Database Configuration
    DATABASE_URL: str = Field(default="sqlite:///./shipment_tracking.db")
    DATABASE_ECHO: bool = Field(default=False)

    # Redis Configuration (performance cache, in-process cache when unset)
    REDIS_URL: Optional[str] = Field(default=None)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")

    # Prediction Configuration
    PREDICTION_METHOD: str = Field(default="rule-based")
    LOCAL_TIMEZONE: str = Field(default="UTC")
    PERFORMANCE_WINDOW: int = Field(default=50, ge=1)
    PERFORMANCE_CACHE_TTL_SECONDS: int = Field(default=300, ge=0)

    # Collaborator timeouts
    PERSISTENCE_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0)
    NOTIFICATION_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0)

    # Notification delivery
    NOTIFICATION_WEBHOOK_URL: Optional[str] = Field(default=None)
    NOTIFICATION_MAX_RETRIES: int = Field(default=3, ge=1)
    NOTIFICATION_BACKOFF_SECONDS: float = Field(default=2.0, ge=0)

    # Delay sweep
    DELAY_SWEEP_ENABLED: bool = Field(default=True)
    DELAY_SWEEP_INTERVAL_SECONDS: float = Field(default=300.0, gt=0)

    # CORS Configuration
    ALLOWED_ORIGINS: List[str] = Field(default=["*"])


# Global settings instance
settings = Settings()
