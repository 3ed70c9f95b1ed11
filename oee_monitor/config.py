"""
OEE Monitor - Configuration Management

This module handles all configuration settings for the OEE Monitor API.
It uses Pydantic Settings for environment variable management and validation.
"""

import os
from typing import List, Optional
from pydantic import Field, validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application Settings
    APP_NAME: str = "OEE Monitor API"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = Field(default="development", env="ENVIRONMENT")
    DEBUG: bool = Field(default=False, env="DEBUG")
    HOST: str = Field(default="0.0.0.0", env="HOST")
    PORT: int = Field(default=3001, env="PORT")
    LOG_LEVEL: str = Field(default="INFO", env="LOG_LEVEL")

    # Security Settings
    SECRET_KEY: str = Field(default="change-me-in-production", env="SECRET_KEY")
    ALGORITHM: str = Field(default="HS256", env="JWT_ALGORITHM")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=480, env="ACCESS_TOKEN_EXPIRE_MINUTES")

    # CORS Settings
    ALLOWED_ORIGINS: List[str] = Field(
        default=["http://localhost:5173", "http://localhost:8080"],
        env="ALLOWED_ORIGINS"
    )

    # Database Settings (in-memory record store when unset)
    DATABASE_URL: Optional[str] = Field(default=None, env="DATABASE_URL")
    DATABASE_POOL_SIZE: int = Field(default=10, env="DATABASE_POOL_SIZE")
    DATABASE_MAX_OVERFLOW: int = Field(default=20, env="DATABASE_MAX_OVERFLOW")
    DATABASE_ECHO: bool = Field(default=False, env="DATABASE_ECHO")

    # Redis Settings (Celery broker, shared alert thresholds)
    REDIS_URL: str = Field(default="redis://localhost:6379/0", env="REDIS_URL")
    THRESHOLD_STORE_BACKEND: str = Field(default="memory", env="THRESHOLD_STORE_BACKEND")

    # OEE Calculation Settings
    DEFAULT_TARGET_RATE_PER_MINUTE: float = Field(default=65.0, env="DEFAULT_TARGET_RATE_PER_MINUTE")
    PERFORMANCE_DERATING_FACTOR: float = Field(default=0.85, env="PERFORMANCE_DERATING_FACTOR")
    ORGANIC_WASTE_UNIT_FACTOR: float = Field(default=1.0, env="ORGANIC_WASTE_UNIT_FACTOR")
    MATERIAL_RATES_FILE: Optional[str] = Field(default=None, env="MATERIAL_RATES_FILE")

    # Shift Settings
    SHIFT_TIMEZONE: str = Field(default="America/Sao_Paulo", env="SHIFT_TIMEZONE")

    # History Settings
    HISTORY_RETENTION_DAYS: int = Field(default=90, env="HISTORY_RETENTION_DAYS")
    HISTORY_WRITE_TIMEOUT_SECONDS: float = Field(default=5.0, env="HISTORY_WRITE_TIMEOUT_SECONDS")

    # Alert Settings
    ALERT_OEE_MIN: float = Field(default=65.0, env="ALERT_OEE_MIN")
    ALERT_DOWNTIME_MAX: float = Field(default=30.0, env="ALERT_DOWNTIME_MAX")
    ALERT_PRODUCTION_MIN: float = Field(default=85.0, env="ALERT_PRODUCTION_MIN")
    ALERT_OEE_CRITICAL: float = Field(default=50.0, env="ALERT_OEE_CRITICAL")
    ALERT_DOWNTIME_CRITICAL: float = Field(default=60.0, env="ALERT_DOWNTIME_CRITICAL")
    ALERT_PRODUCTION_CRITICAL: float = Field(default=50.0, env="ALERT_PRODUCTION_CRITICAL")
    ALERT_SEVERITY_BANDING: bool = Field(default=True, env="ALERT_SEVERITY_BANDING")
    ALERT_DISPATCH_SHUTDOWN_TIMEOUT_SECONDS: float = Field(default=15.0, env="ALERT_DISPATCH_SHUTDOWN_TIMEOUT_SECONDS")
    ALERT_TEMPLATE_LOW_OEE: str = Field(
        default="OEE for machine {machine_id} is {value:.1f}% (minimum {threshold:.1f}%)",
        env="ALERT_TEMPLATE_LOW_OEE"
    )
    ALERT_TEMPLATE_DOWNTIME: str = Field(
        default="Machine {machine_id} has been stopped for {value:.0f} minutes (limit {threshold:.0f})",
        env="ALERT_TEMPLATE_DOWNTIME"
    )
    ALERT_TEMPLATE_PRODUCTION: str = Field(
        default="Production on machine {machine_id} is at {value:.1f}% of target (minimum {threshold:.1f}%)",
        env="ALERT_TEMPLATE_PRODUCTION"
    )

    # WhatsApp Relay Settings
    WHATSAPP_ENABLED: bool = Field(default=False, env="WHATSAPP_ENABLED")
    WHATSAPP_WEBHOOK_URL: Optional[str] = Field(default=None, env="WHATSAPP_WEBHOOK_URL")
    WHATSAPP_API_KEY: Optional[str] = Field(default=None, env="WHATSAPP_API_KEY")
    WHATSAPP_RECIPIENTS: List[str] = Field(default=[], env="WHATSAPP_RECIPIENTS")
    WHATSAPP_TEMPLATE: str = Field(
        default="OEE alert on {{machine_id}}: {{alert_type}} at {{current_value}} (threshold {{threshold}}) - {{timestamp}}",
        env="WHATSAPP_TEMPLATE"
    )
    WHATSAPP_CRITICAL_ONLY: bool = Field(default=False, env="WHATSAPP_CRITICAL_ONLY")
    WHATSAPP_TIMEOUT_SECONDS: float = Field(default=10.0, env="WHATSAPP_TIMEOUT_SECONDS")

    # Monitoring Settings
    ENABLE_METRICS: bool = Field(default=True, env="ENABLE_METRICS")

    @validator("ALLOWED_ORIGINS", pre=True)
    def parse_allowed_origins(cls, v):
        """Parse comma-separated origins string."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @validator("WHATSAPP_RECIPIENTS", pre=True)
    def parse_whatsapp_recipients(cls, v):
        """Parse comma-separated phone numbers."""
        if isinstance(v, str):
            return [number.strip() for number in v.split(",") if number.strip()]
        return v

    @validator("ENVIRONMENT")
    def validate_environment(cls, v):
        """Validate environment setting."""
        allowed_envs = ["development", "testing", "staging", "production"]
        if v not in allowed_envs:
            raise ValueError(f"ENVIRONMENT must be one of {allowed_envs}")
        return v

    @validator("THRESHOLD_STORE_BACKEND")
    def validate_threshold_backend(cls, v):
        """Validate threshold store backend."""
        if v not in ("memory", "redis"):
            raise ValueError("THRESHOLD_STORE_BACKEND must be memory or redis")
        return v

    @validator("LOG_LEVEL")
    def validate_log_level(cls, v):
        """Validate log level setting."""
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed_levels:
            raise ValueError(f"LOG_LEVEL must be one of {allowed_levels}")
        return v.upper()

    @validator("PERFORMANCE_DERATING_FACTOR")
    def validate_derating_factor(cls, v):
        """Derating must stay a fraction of the theoretical rate."""
        if not 0 < v <= 1:
            raise ValueError("PERFORMANCE_DERATING_FACTOR must be in (0, 1]")
        return v

    @validator("DEFAULT_TARGET_RATE_PER_MINUTE", "ORGANIC_WASTE_UNIT_FACTOR")
    def validate_positive(cls, v):
        """Rates and unit factors must be positive."""
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


# Environment-specific configurations
class DevelopmentSettings(Settings):
    """Development environment settings."""
    DEBUG: bool = True
    DATABASE_ECHO: bool = True
    LOG_LEVEL: str = "DEBUG"


class TestingSettings(Settings):
    """Testing environment settings."""
    DEBUG: bool = True
    LOG_LEVEL: str = "DEBUG"
    DATABASE_URL: Optional[str] = None


class StagingSettings(Settings):
    """Staging environment settings."""
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"


class ProductionSettings(Settings):
    """Production environment settings."""
    DEBUG: bool = False
    LOG_LEVEL: str = "WARNING"
    DATABASE_ECHO: bool = False


def get_settings() -> Settings:
    """Get settings based on environment."""
    env = os.getenv("ENVIRONMENT", "development")

    if env == "development":
        return DevelopmentSettings()
    elif env == "testing":
        return TestingSettings()
    elif env == "staging":
        return StagingSettings()
    elif env == "production":
        return ProductionSettings()
    else:
        return Settings()


# Export the appropriate settings instance
settings = get_settings()
