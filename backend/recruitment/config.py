from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    MONGO_URI: str = "mongodb://localhost:27017"
    DB_NAME: str = "recruitment"
    MAX_UPLOAD_SIZE: int = 10485760  # Default: 10MB in bytes
    UPLOAD_DIR: str = "_uploads"
    DEFAULT_LANGUAGE: str = "en"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["*"]

    class Config:
        env_file = ".env"


settings = Settings()
