# sonic_lab/config.py
from functools import lru_cache
from pathlib import Path
from typing import Optional
import os
from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]

# Load in ascending precedence; later overrides earlier
load_dotenv(ROOT / ".env")
load_dotenv(ROOT / ".env.local", override=True)
load_dotenv(ROOT / "sonic_lab" / ".env", override=True)
load_dotenv(ROOT / "sonic_lab" / ".env.local", override=True)

VERSION = "0.1.0"


class Settings:
    # Server
    PORT: int = int(os.getenv("PORT", "8000"))
    DATA_DIR: str = os.getenv("DATA_DIR", str(ROOT / "data"))
    MAX_UPLOAD_MB: int = int(os.getenv("MAX_UPLOAD_MB", "200"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # CORS
    ALLOWED_ORIGINS: list[str] = [
        s.strip() for s in os.getenv("ALLOWED_ORIGINS", "http://localhost:5173").split(",") if s.strip()
    ]

    # Inference
    INFERENCE_PROVIDER: str = os.getenv("INFERENCE_PROVIDER", "stub").lower()
    GEMINI_API_KEY: Optional[str] = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")
    GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-3-pro-preview")
    GEMINI_BASE_URL: str = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")
    OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
    OPENAI_AUDIO_MODEL: str = os.getenv("OPENAI_AUDIO_MODEL", "gpt-4o-audio-preview")
    INFERENCE_TIMEOUT_S: float = float(os.getenv("INFERENCE_TIMEOUT_S", "120"))

    # Batch runner pacing
    INTER_JOB_DELAY_S: float = float(os.getenv("INTER_JOB_DELAY_S", "1.5"))
    MAX_RETRIES: int = int(os.getenv("MAX_RETRIES", "2"))
    BACKOFF_STEP_S: float = float(os.getenv("BACKOFF_STEP_S", "5"))

    @property
    def upload_dir(self) -> Path:
        return Path(self.DATA_DIR) / "uploads"

    @property
    def runs_dir(self) -> Path:
        return Path(self.DATA_DIR) / "runs"


@lru_cache
def get_settings() -> Settings:
    return Settings()
