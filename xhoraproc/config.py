"""
XhoraProc Configuration Settings

Values can be overridden through environment variables or a .env file.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Configuration for the proctored exam service."""

    # API Settings
    APP_NAME: str = "XhoraProc Exam Service"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = False

    # Exam Settings
    EXAM_DURATION_SECONDS: int = 3600  # 60 minutes
    QUESTION_LIMIT: int = 10
    COMPLETED_EXAM_TTL_SECONDS: float = 60.0  # then served from the session store

    # Monitoring
    MONITORING_ENABLED: bool = True
    VISION_PERIOD_SECONDS: float = 0.1
    AUDIO_PERIOD_SECONDS: float = 0.0  # frame-driven
    GAZE_LEFT_RATIO: float = 1.15
    GAZE_RIGHT_RATIO: float = 0.85
    AUDIO_LEVEL_THRESHOLD: float = 30.0

    # Capture devices
    CAMERA_INDEX: int = 0
    FRAME_WIDTH: int = 640
    FRAME_HEIGHT: int = 480
    AUDIO_SAMPLE_RATE: int = 44100
    AUDIO_CHUNK_SIZE: int = 1024
    AUDIO_FFT_SIZE: int = 256
    PREDICTOR_PATH: str = ""

    # Persistence
    DATABASE_URL: str = "sqlite:///xhoraproc.db"
    PERSISTENCE_RETRY_ATTEMPTS: int = 3
    PERSISTENCE_RETRY_DELAY: float = 0.1

    class Config:
        env_file = ".env"
        env_prefix = "XHORAPROC_"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
