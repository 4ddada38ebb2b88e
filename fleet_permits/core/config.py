# File: fleet_permits/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
import os


class Settings(BaseSettings):
    # ---------------------------
    # Meta / Pydantic settings
    # ---------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",  # Ignore unexpected env vars instead of erroring
    )

    # ---------------------------
    # API / Project
    # ---------------------------
    API_V1_STR: str = os.getenv("API_V1_STR", "/api/v1")
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "Fleet Permits Service")

    # ---------------------------
    # Environment / Logging
    # ---------------------------
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")  # development | staging | production
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # ---------------------------
    # Security / Auth (tokens are issued by the session service)
    # ---------------------------
    SECRET_KEY: str = os.getenv("SECRET_KEY", "change-me-in-production")
    ALGORITHM: str = os.getenv("ALGORITHM", "HS256")

    # ---------------------------
    # Entry store
    # ---------------------------
    STORE_BACKEND: str = os.getenv("STORE_BACKEND", "firebase")  # firebase | memory
    FIREBASE_DATABASE_URL: Optional[str] = os.getenv("FIREBASE_DATABASE_URL")
    FIREBASE_SERVICE_ACCOUNT_PATH: Optional[str] = os.getenv("FIREBASE_SERVICE_ACCOUNT_PATH")
    FIREBASE_REQUEST_TIMEOUT: int = int(os.getenv("FIREBASE_REQUEST_TIMEOUT", "15"))

    # ---------------------------
    # Permit ledger
    # ---------------------------
    # Legacy entries and work orders without a destination belong to South Sudan
    DEFAULT_DESTINATION: str = os.getenv("DEFAULT_DESTINATION", "ssd")
    # Work orders are captured in cubic meters, permit entries in liters
    LITERS_PER_CUBIC_METER: int = int(os.getenv("LITERS_PER_CUBIC_METER", "1000"))
    CLEANUP_BATCH_SIZE: int = int(os.getenv("CLEANUP_BATCH_SIZE", "100"))

    # ---------------------------
    # Scheduled maintenance
    # ---------------------------
    ENABLE_PERMIT_SCHEDULER: bool = os.getenv("ENABLE_PERMIT_SCHEDULER", "true").lower() == "true"
    PERMIT_CLEANUP_INTERVAL_MINUTES: int = int(os.getenv("PERMIT_CLEANUP_INTERVAL_MINUTES", "10"))
    ALLOCATION_SYNC_INTERVAL_MINUTES: int = int(os.getenv("ALLOCATION_SYNC_INTERVAL_MINUTES", "30"))

    # ---------------------------
    # Derived / Convenience
    # ---------------------------
    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def default_destination(self) -> str:
        return self.DEFAULT_DESTINATION.lower()


settings = Settings()
