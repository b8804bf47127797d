# config.py

# Settings come from the environment or a local .env file.
from typing import List

from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    database_url: str
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10

    access_token_secret: str
    refresh_token_secret: str
    access_token_expire_minutes: int = 30
    refresh_token_expire_days: int = 10

    azure_storage_connection_string: str
    azure_blob_container_name: str

    cors_origins: List[str] = ["*"]
    log_level: str = "INFO"
    log_sql: bool = False

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()


ALGORITHM = "HS256"
ACCESS_TOKEN_SECRET = settings.access_token_secret
REFRESH_TOKEN_SECRET = settings.refresh_token_secret
ACCESS_TOKEN_EXPIRE_MINUTES = settings.access_token_expire_minutes
REFRESH_TOKEN_EXPIRE_DAYS = settings.refresh_token_expire_days

DATABASE_URL = settings.database_url
AZURE_STORAGE_CONNECTION_STRING = settings.azure_storage_connection_string
AZURE_BLOB_CONTAINER_NAME = settings.azure_blob_container_name
