"""Application Settings - Central Configuration"""
from functools import lru_cache
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # MongoDB
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "expenseflow_dev"

    # Mail relay (outbound notification delivery)
    mail_relay_url: str = ""
    mail_relay_token: str = ""
    mail_sender: str = "no-reply@expenseflow.local"

    # Logging
    logs_path: str = "./logs"
    log_level: str = "INFO"

    # CORS - set to "*" to allow all origins
    cors_origins: str = "*"

    # Frontend URL (for email links)
    frontend_url: str = "http://localhost:3000"

    # Scheduler
    scheduler_interval_seconds: int = 10  # Process notifications every 10 seconds
    escalation_check_interval_seconds: int = 300
    notification_max_retries: int = 5
    notification_lock_duration_seconds: int = 60

    # Approval workflows
    default_workflow_name: str = "Default Workflow"
    default_escalation_hours: float = 48

    # Environment
    environment: str = "development"
    debug: bool = True

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins string to list"""
        return [origin.strip() for origin in self.cors_origins.split(",")]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
