"""
Configuration management for Owner Resolution
"""
from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application Configuration
    app_name: str = Field(default="owner-resolution", alias="APP_NAME")
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Same-owner thresholds (any single score above its threshold is sufficient)
    same_owner_overall: float = Field(default=0.92, alias="SAME_OWNER_OVERALL")
    same_owner_name: float = Field(default=0.95, alias="SAME_OWNER_NAME")
    same_owner_contact_info: float = Field(default=0.95, alias="SAME_OWNER_CONTACT_INFO")

    # Group collapse thresholds
    connectivity_threshold: float = Field(default=0.87, alias="CONNECTIVITY_THRESHOLD")
    collapse_name_threshold: float = Field(default=0.875, alias="COLLAPSE_NAME_THRESHOLD")
    po_box_fallback_threshold: float = Field(default=0.905, alias="PO_BOX_FALLBACK_THRESHOLD")

    # Collision score weights
    collision_name_weight: float = Field(default=0.7, alias="COLLISION_NAME_WEIGHT")
    collision_contact_weight: float = Field(default=0.3, alias="COLLISION_CONTACT_WEIGHT")

    # Feature Flags
    collision_handler_enabled: bool = Field(default=True, alias="COLLISION_HANDLER_ENABLED")
    progress_interval: int = Field(default=500, alias="PROGRESS_INTERVAL")

    # Document store
    store_directory: str = Field(default="./data/store", alias="STORE_DIRECTORY")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    api_reload: bool = Field(default=False, alias="API_RELOAD")
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8000"],
        alias="CORS_ORIGINS"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        populate_by_name = True


# Singleton instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get settings singleton instance"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


# Export for convenience
settings = get_settings()
