from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional
import os
from pathlib import Path

class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Video Content Studio"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = int(os.getenv("PORT", 8000))

    # Security
    ALLOWED_ORIGINS: list = []  # Will be set dynamically
    USER_ID_HEADER: str = "X-User-Id"
    MAX_UPLOAD_SIZE_MB: int = 500
    ALLOWED_VIDEO_EXTENSIONS: list = [".mp4", ".mov", ".avi", ".mkv", ".webm"]
    ALLOWED_MIME_TYPES: list = ["video/mp4", "video/quicktime", "video/x-msvideo", "video/x-matroska", "video/webm"]
    ALLOWED_TRANSCRIPT_EXTENSIONS: list = [".srt", ".vtt", ".webvtt", ".txt", ".json"]

    # Storage
    BASE_STORAGE_PATH: Path = Path(os.getenv("STORAGE_PATH", "../storage"))
    UPLOAD_DIR: Path = Path("../storage/uploads")
    TEMP_DIR: Path = Path("../storage/temp")
    PUBLIC_STORAGE_URL: str = "/storage"

    # Media probe
    FFMPEG_BINARY: str = "ffmpeg"
    FFPROBE_BINARY: str = "ffprobe"
    FRAME_WIDTH: int = 320
    METADATA_FRAME_COUNT: int = 5
    THUMBNAIL_CANDIDATE_COUNT: int = 3

    # Transcription tiers (MB). Below DIRECT the file goes straight to the
    # transcription service, below EXTRACT the audio is pulled out first,
    # anything larger is rejected.
    TRANSCRIPTION_DIRECT_MAX_MB: float = 25
    TRANSCRIPTION_EXTRACT_MAX_MB: float = 100
    AUDIO_EXTRACT_BITRATE: str = "128k"
    AUDIO_COMPRESS_SAMPLE_RATE: int = 16000

    # Transcription service: "whisper" (local faster-whisper) or "elevenlabs"
    TRANSCRIPTION_BACKEND: str = "whisper"
    WHISPER_MODEL: str = "base"
    WHISPER_DEVICE: str = "cpu"
    WHISPER_COMPUTE_TYPE: str = "int8"
    ELEVENLABS_API_KEY: Optional[str] = None
    ELEVENLABS_MODEL_ID: str = "scribe_v1"
    ELEVENLABS_TIMEOUT: int = 600

    # Text generation (OpenAI-compatible chat completions)
    OPENROUTER_KEY: Optional[str] = None
    LLM_BASE_URL: str = "https://openrouter.ai/api/v1"
    LLM_MODEL: str = "openai/gpt-4o-mini"
    LLM_TIMEOUT: int = 120

    # Image generation
    OPENAI_API_KEY: Optional[str] = None
    IMAGE_BASE_URL: str = "https://api.openai.com/v1"
    IMAGE_MODEL: str = "gpt-image-1"
    IMAGE_SIZE: str = "1536x1024"
    IMAGE_TIMEOUT: int = 180

    # Jobs stuck in processing/generating longer than this may be resubmitted
    STALE_JOB_MINUTES: int = 30

    # Database
    DATABASE_URL: str = "sqlite:///./content_studio.db"
    DB_ECHO: bool = False

    # Redis/Celery
    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: str = ""
    CELERY_RESULT_BACKEND: str = ""

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False

    def __init__(self, **kwargs):
        super().__init__(**kwargs)

        # Set up storage paths
        self.UPLOAD_DIR = self.BASE_STORAGE_PATH / "uploads"
        self.TEMP_DIR = self.BASE_STORAGE_PATH / "temp"

        # Create storage directories
        for path in [self.UPLOAD_DIR, self.TEMP_DIR]:
            path.mkdir(parents=True, exist_ok=True)

        # Set Celery URLs if not provided
        if not self.CELERY_BROKER_URL:
            self.CELERY_BROKER_URL = self.REDIS_URL
        if not self.CELERY_RESULT_BACKEND:
            self.CELERY_RESULT_BACKEND = self.REDIS_URL

        # Set CORS origins dynamically
        if self.ENVIRONMENT == "production":
            frontend_url = os.getenv("FRONTEND_URL")
            if frontend_url and not frontend_url.startswith("http"):
                self.ALLOWED_ORIGINS = [f"https://{frontend_url}", f"http://{frontend_url}"]
            elif frontend_url:
                self.ALLOWED_ORIGINS = [frontend_url]
            else:
                self.ALLOWED_ORIGINS = ["*"]
        else:
            self.ALLOWED_ORIGINS = ["http://localhost:5173", "http://localhost:3000", "http://localhost:8000"]


@lru_cache()
def get_settings() -> Settings:
    return Settings()
