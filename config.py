"""
Application configuration

Connection settings come from a key-value properties file
(dbconnection.properties) holding the six MongoDB connection fields:

    db.prefix=mongodb+srv://
    db.user=storefront
    db.password=secret
    db.host=@cluster0.example.mongodb.net
    db.name=lessons_shop
    db.params=/?retryWrites=true&w=majority

Environment variables (optionally from a .env file) override the file:
DB_PREFIX, DB_HOST, DB_NAME, DB_USER, DB_PASSWORD, DB_PARAMS, or DATABASE_URL
for a complete connection string. DB_TIMEOUT_MS bounds the startup connect.
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values, load_dotenv
from pydantic import BaseModel, Field

# Properties key -> environment variable
PROPERTY_KEYS = {
    "db.prefix": "DB_PREFIX",
    "db.host": "DB_HOST",
    "db.name": "DB_NAME",
    "db.user": "DB_USER",
    "db.password": "DB_PASSWORD",
    "db.params": "DB_PARAMS",
}


class DatabaseConfig(BaseModel):
    """MongoDB connection parameters"""
    prefix: str = Field("", description="Scheme prefix, e.g. mongodb+srv://")
    host: str = Field("", description="Host part, including the leading @")
    name: str = Field("", description="Database name")
    user: str = Field("", description="Database user")
    password: str = Field("", description="Database password")
    params: str = Field("", description="Trailing path and query options")
    url: Optional[str] = Field(None, description="Full connection string, overrides the parts")
    server_selection_timeout_ms: int = Field(5000, description="How long connect() waits for a reachable server")

    @property
    def uri(self) -> str:
        """Connection string handed to MongoClient, not validated here."""
        if self.url:
            return self.url
        return f"{self.prefix}{self.user}:{self.password}{self.host}{self.params}"


class Settings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3000
    assets_dir: Path = Field(default_factory=Path.cwd)
    log_level: str = "INFO"
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)


def read_properties(path: Path) -> dict:
    """Read a key=value properties file. A missing file reads as empty."""
    if not path.is_file():
        return {}
    return {key: value or "" for key, value in dotenv_values(path, interpolate=False).items()}


def load_settings(properties_path: Optional[str] = None) -> Settings:
    """Build Settings from .env, the properties file and the environment"""
    load_dotenv()

    path = Path(properties_path or os.getenv("DB_PROPERTIES", "dbconnection.properties"))
    properties = read_properties(path)

    fields = {}
    for key, env_name in PROPERTY_KEYS.items():
        fields[key.split(".", 1)[1]] = os.getenv(env_name, properties.get(key, ""))

    database = DatabaseConfig(
        url=os.getenv("DATABASE_URL") or None,
        server_selection_timeout_ms=int(os.getenv("DB_TIMEOUT_MS", 5000)),
        **fields,
    )

    return Settings(
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", 3000)),
        assets_dir=Path(os.getenv("ASSETS_DIR") or Path.cwd()),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        database=database,
    )
