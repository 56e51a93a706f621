"""
Configuration module for the Attribution Engine
"""
from pydantic_settings import BaseSettings
from pydantic import field_validator, Field
from typing import Literal, Optional
import os


class Settings(BaseSettings):
    """Application settings loaded from environment variables with validation"""

    # Database
    database_url: str = "sqlite:///./attribution.db"
    persistence_retry_attempts: int = Field(default=3, ge=1, le=10)

    # Attribution Configuration
    attribution_model: Literal["first_touch", "last_touch", "linear", "time_decay", "u_shaped"] = "linear"
    attribution_lookback_days: int = Field(default=90, ge=1, le=365)
    time_decay_half_life_hours: float = Field(default=168.0, gt=0)

    # Reporting
    top_paths_limit: int = Field(default=10, ge=1, le=100)
    report_max_workers: Optional[int] = Field(default=None, ge=1)

    # Logging
    log_level: str = Field(default="INFO", pattern=r'^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$')
    log_file_path: str = "./logs/attribution_engine.log"

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Reject placeholder connection strings"""
        if not v or not v.strip():
            raise ValueError('DATABASE_URL cannot be empty')
        if 'your_' in v.lower():
            raise ValueError('DATABASE_URL appears to be a placeholder. Please provide a valid URL.')
        return v.strip()

    @field_validator('log_file_path')
    @classmethod
    def validate_log_path(cls, v: str) -> str:
        """Ensure log directory exists"""
        log_dir = os.path.dirname(v)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)
        return v

    model_config = {
        "env_file": ".env",
        "case_sensitive": False
    }


# Global settings instance
settings = Settings()
