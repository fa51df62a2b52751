from typing import Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PROJECT_NAME: str = "Video API"
    API_PREFIX: str = "/api"

    # Video provider (Mux)
    MUX_API_URL: str = "https://api.mux.com"
    MUX_TOKEN_ID: str = "MUX_TOKEN_ID"
    MUX_TOKEN_SECRET: str = "MUX_TOKEN_SECRET"
    MUX_WEBHOOK_SECRET: Optional[str] = None
    WEBHOOK_TOLERANCE_SECONDS: int = 300
    UPLOAD_CORS_ORIGIN: str = "*"
    SUBTITLES_LANGUAGE: Optional[str] = "en"
    POSTER_URL_TEMPLATE: str = "https://image.mux.com/{playback_id}/thumbnail.jpg"

    # Backends
    RECORD_STORE_BACKEND: Literal["mongo", "memory"] = "mongo"
    STATUS_NOTIFIER_BACKEND: Literal["redis", "memory"] = "redis"
    REDIS_URL: str = "redis://localhost:6379/0"
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "course_marketplace"

    # Status stream
    STREAM_PING_SECONDS: int = 15

    class Config:
        env_file = ".env"


settings = Settings()
