"""Configuration management using pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class APIConfig(BaseModel):
    """HTTP transport settings for the document store."""
    timeout: int = 30
    max_retries: int = 3
    retry_delay: int = 1
    exponential_backoff: bool = True


class StoreConfig(BaseModel):
    """Document store layout settings."""
    collection: str = "products"
    page_size: int = 300


class InventoryConfig(BaseModel):
    """Stock update settings."""
    # Read-modify-write attempts when another writer changed the document
    max_conflict_retries: int = 3


class ScannerConfig(BaseModel):
    """Scan session settings."""
    cooldown_seconds: float = 3.0
    default_mode: str = "lookup"


class LoggingFilesConfig(BaseModel):
    """Log file paths."""
    inventory: str = "logs/inventory.log"
    scanner: str = "logs/scanner.log"
    error: str = "logs/error.log"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    max_bytes: int = 10485760  # 10MB
    backup_count: int = 5
    files: LoggingFilesConfig = LoggingFilesConfig()


class YAMLConfig(BaseModel):
    """Configuration loaded from YAML file."""
    api: APIConfig = APIConfig()
    store: StoreConfig = StoreConfig()
    inventory: InventoryConfig = InventoryConfig()
    scanner: ScannerConfig = ScannerConfig()
    logging: LoggingConfig = LoggingConfig()


class Settings(BaseSettings):
    """Application settings from environment variables."""

    # Firestore settings
    firestore_project_id: str = Field(..., description="Firebase / GCP project id")
    firestore_database: str = Field(default="(default)", description="Firestore database id")
    firestore_api_key: Optional[str] = Field(default=None, description="Web API key")
    firestore_auth_token: Optional[str] = Field(default=None, description="Bearer token (ID or OAuth token)")
    firestore_base_url: str = Field(
        default="https://firestore.googleapis.com",
        description="REST endpoint, override to use the local emulator"
    )

    # Application settings
    environment: str = Field(default="development", description="Environment (development/production)")
    log_level: Optional[str] = Field(default=None, description="Override log level")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


class AppConfig:
    """Combined application configuration."""

    def __init__(self):
        self.env = Settings()

        # Load YAML config
        config_path = Path(__file__).parent.parent.parent / "config" / "config.yml"
        if config_path.exists():
            with open(config_path, "r") as f:
                yaml_data = yaml.safe_load(f) or {}
                self.yaml = YAMLConfig(**yaml_data)
        else:
            self.yaml = YAMLConfig()

        # Override log level if specified in env
        if self.env.log_level:
            self.yaml.logging.level = self.env.log_level

    @property
    def api(self) -> APIConfig:
        return self.yaml.api

    @property
    def store(self) -> StoreConfig:
        return self.yaml.store

    @property
    def inventory(self) -> InventoryConfig:
        return self.yaml.inventory

    @property
    def scanner(self) -> ScannerConfig:
        return self.yaml.scanner

    @property
    def logging(self) -> LoggingConfig:
        return self.yaml.logging

    @property
    def is_production(self) -> bool:
        return self.env.environment.lower() == "production"


@lru_cache()
def get_config() -> AppConfig:
    """Get cached configuration instance."""
    return AppConfig()
