from pydantic_settings import BaseSettings
from functools import lru_cache

class Settings(BaseSettings):
    # MongoDB Configuration
    mongo_url: str
    db_name: str

    # Application Configuration
    environment: str = "development"
    cors_origins: str = "*"

    # Maintenance schedule evaluation
    due_soon_threshold: float = 50.0  # RPM units before next due reading

    # Asset-day locking (daily entry serialization)
    lock_timeout_seconds: float = 10.0
    lock_ttl_seconds: float = 60.0
    lock_poll_interval_seconds: float = 0.05

    # Operational records
    max_shifts_per_day: int = 2

    def get_cors_origins(self) -> list:
        """Split the comma separated origins list"""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = False

@lru_cache()
def get_settings():
    return Settings()
