# sonic_lab/routers/health.py
from fastapi import APIRouter
from pathlib import Path

from sonic_lab.config import VERSION, get_settings

router = APIRouter()


@router.get("/health")
def health_check():
    return {"status": "ok", "version": VERSION}


@router.get("/health/env")
def env_preview():
    s = get_settings()
    data_dir = Path(s.DATA_DIR)
    model = {"gemini": s.GEMINI_MODEL, "openai": s.OPENAI_AUDIO_MODEL}.get(s.INFERENCE_PROVIDER)
    key = {"gemini": s.GEMINI_API_KEY, "openai": s.OPENAI_API_KEY}.get(s.INFERENCE_PROVIDER)

    return {
        "status": "ok",
        "version": VERSION,
        # server
        "PORT": s.PORT,
        "DATA_DIR": str(data_dir.resolve()),
        "UPLOAD_DIR": str(s.upload_dir.resolve()),
        "MAX_UPLOAD_MB": s.MAX_UPLOAD_MB,
        "ALLOWED_ORIGINS": s.ALLOWED_ORIGINS,
        # inference (no secrets)
        "INFERENCE": {
            "provider": s.INFERENCE_PROVIDER,
            "model": model,
            "key_configured": bool(key),
        },
        # runner pacing
        "RUNNER": {
            "inter_job_delay_s": s.INTER_JOB_DELAY_S,
            "max_retries": s.MAX_RETRIES,
            "backoff_step_s": s.BACKOFF_STEP_S,
        },
    }
