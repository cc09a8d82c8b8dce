from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sonic_lab.config import VERSION, get_settings
from sonic_lab.middleware_logging import register_request_logging
from sonic_lab.error_handlers import register_error_handlers
from sonic_lab.routers.health import router as health_router
from sonic_lab.routers.jobs_api import router as jobs_router

# =========================
# ---- Config / Env ----
# =========================
settings = get_settings()

# Ensure dirs
settings.upload_dir.mkdir(parents=True, exist_ok=True)
settings.runs_dir.mkdir(parents=True, exist_ok=True)

# =========================
# ---- App Init ----
# =========================
app = FastAPI(title="Sonic Lab Backend", version=VERSION)
register_request_logging(app)
register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root():
    return {"message": "Sonic Lab: upload audio, get emotion, intensity and voice identity per clip."}


app.include_router(health_router)
app.include_router(jobs_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("sonic_lab.main:app", host="0.0.0.0", port=settings.PORT)
