"""Application configuration using Pydantic Settings"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None  # Defaults to backend/data/logs

    # API
    API_V1_PREFIX: str = "/api/v1"
    # Stored as string to avoid pydantic-settings JSON parsing; use cors_origins_list property
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS_ORIGINS from comma-separated string"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    # Automatic extraction
    # Stored as string for the same reason as CORS_ORIGINS; use candidate_timestamps property
    EXTRACTION_CANDIDATE_TIMESTAMPS: str = "2,5,10,15"
    EXTRACTION_SESSION_DEADLINE_SECONDS: float = 15.0
    EXTRACTION_ATTEMPT_INTERVAL_SECONDS: float = 0.3

    @property
    def candidate_timestamps(self) -> List[float]:
        """Parse EXTRACTION_CANDIDATE_TIMESTAMPS into seconds offsets"""
        return _parse_timestamps(self.EXTRACTION_CANDIDATE_TIMESTAMPS)

    # Decoder
    DECODER_READINESS_TIMEOUT_SECONDS: float = 10.0
    DECODER_SEEK_TIMEOUT_SECONDS: float = 5.0
    DECODER_SETTLE_DELAY_SECONDS: float = 0.15

    # Frame quality
    FRAME_BLACK_LUMA_THRESHOLD: float = 15.0
    FRAME_SAMPLE_STRIDE: int = 10

    # Encoding
    SNAPSHOT_JPEG_QUALITY: int = 90
    PREVIEW_JPEG_QUALITY: int = 95

    # Upload endpoint of the admin console
    UPLOAD_ENDPOINT_URL: str = "http://localhost:8000/sites/upload-image"
    UPLOAD_API_TOKEN: Optional[str] = None
    UPLOAD_TIMEOUT_SECONDS: float = 30.0
    MAX_EXTERNAL_IMAGE_BYTES: int = 10 * 1024 * 1024

    @field_validator('EXTRACTION_CANDIDATE_TIMESTAMPS', mode='after')
    @classmethod
    def validate_candidate_timestamps(cls, v: str) -> str:
        """Candidate timestamps must be non-negative and strictly increasing."""
        _parse_timestamps(v)
        return v

    @field_validator('DECODER_SETTLE_DELAY_SECONDS', mode='after')
    @classmethod
    def validate_settle_delay(cls, v: float) -> float:
        """Validate settle delay stays within a sane window."""
        if not 0.0 <= v <= 1.0:
            raise ValueError("DECODER_SETTLE_DELAY_SECONDS must be between 0 and 1")
        return v

    @field_validator('SNAPSHOT_JPEG_QUALITY', 'PREVIEW_JPEG_QUALITY', mode='after')
    @classmethod
    def validate_jpeg_quality(cls, v: int) -> int:
        """Validate JPEG quality is a Pillow-accepted value."""
        if not 1 <= v <= 95:
            raise ValueError("JPEG quality must be between 1 and 95")
        return v

    @field_validator('FRAME_SAMPLE_STRIDE', mode='after')
    @classmethod
    def validate_sample_stride(cls, v: int) -> int:
        if v < 1:
            raise ValueError("FRAME_SAMPLE_STRIDE must be at least 1")
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


def _parse_timestamps(raw: str) -> List[float]:
    values = [float(part.strip()) for part in raw.split(",") if part.strip()]
    if not values:
        raise ValueError("At least one candidate timestamp is required")
    if any(value < 0 for value in values):
        raise ValueError("Candidate timestamps must not be negative")
    if any(later <= earlier for earlier, later in zip(values, values[1:])):
        raise ValueError("Candidate timestamps must be strictly increasing")
    return values


# Global settings instance
settings = Settings()
