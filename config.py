"""
Runtime configuration for the Blog API.

Settings are read once from the environment (and an optional .env file) when
the process starts, then handed to create_app() which keeps them on app.state.
"""

import logging
from typing import List, Optional
from urllib.parse import urlparse

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from pythonjsonlogger import jsonlogger

DEFAULT_DATABASE_URI = "mongodb://localhost:27017/blogapp?directConnection=true"
DEFAULT_DATABASE_NAME = "blogapp"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "development"
    port: int = 8080

    # App Service sets COSMOS_CONNECTION_STRING, VMs use MONGODB_URI
    cosmos_connection_string: Optional[str] = None
    mongodb_uri: Optional[str] = None
    database_name: Optional[str] = None

    entra_tenant_id: str = "your-tenant-id"
    entra_client_id: str = "your-client-id"

    log_level: str = "debug"
    cors_origins: str = "http://localhost:5173,http://localhost:3000"
    seed_on_startup: bool = Field(False, description="Insert sample data when the post collection is empty")

    @property
    def database_uri(self) -> str:
        return self.cosmos_connection_string or self.mongodb_uri or DEFAULT_DATABASE_URI

    @property
    def resolved_database_name(self) -> str:
        if self.database_name:
            return self.database_name
        path = urlparse(self.database_uri).path.strip("/")
        return path or DEFAULT_DATABASE_NAME

    @property
    def cors_origin_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


# ---------- Logging ----------

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
JSON_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def json_formatter() -> jsonlogger.JsonFormatter:
    """One JSON object per line, picked up as-is by Log Analytics."""
    return jsonlogger.JsonFormatter(JSON_FORMAT, static_fields={"service": "blogapp-api"})


def configure_logging(settings: Settings) -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    handler = logging.StreamHandler()
    if settings.is_production:
        handler.setFormatter(json_formatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
    # pymongo is chatty at debug
    logging.getLogger("pymongo").setLevel(max(level, logging.INFO))
