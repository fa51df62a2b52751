from pydantic_settings import BaseSettings


class UploaderSettings(BaseSettings):
    API_BASE_URL: str = "http://localhost:8000/api"
    REQUEST_TIMEOUT_SECONDS: float = 30.0

    # File validation
    ALLOWED_MIME_PREFIX: str = "video/"
    MAX_FILE_SIZE_BYTES: int = 2 * 1024 * 1024 * 1024

    # Ticket acquisition
    TICKET_MAX_ATTEMPTS: int = 3
    TICKET_BACKOFF_SECONDS: float = 0.5

    # Chunked transfer; chunk size must be a multiple of 256 KiB
    CHUNK_SIZE_BYTES: int = 30 * 1024 * 1024
    CHUNK_MAX_ATTEMPTS: int = 5
    CHUNK_RETRY_DELAY_SECONDS: float = 1.0
    CHUNK_TIMEOUT_SECONDS: float = 300.0

    # Status stream and polling fallback
    STREAM_MAX_RETRIES: int = 3
    STREAM_BACKOFF_BASE_SECONDS: float = 1.0
    STREAM_BACKOFF_CAP_SECONDS: float = 30.0
    POLL_INITIAL_DELAY_SECONDS: float = 5.0
    POLL_BACKOFF_FACTOR: float = 1.5
    POLL_MAX_DELAY_SECONDS: float = 30.0

    class Config:
        env_file = ".env"


settings = UploaderSettings()
