# sonic_lab/routers/jobs_api.py
from __future__ import annotations
from functools import lru_cache
from pathlib import Path
from typing import List
import logging, os, uuid

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import JSONResponse, Response

from sonic_lab.background import spawn
from sonic_lab.config import get_settings
from sonic_lab.core.models import Job, JobStatus
from sonic_lab.core.registry import JobQueue, queue as default_queue
from sonic_lab.services.encoder import guess_mime_type
from sonic_lab.services.export import UTF8_BOM, export_csv, export_filename
from sonic_lab.services.inference_providers import get_inference
from sonic_lab.services.runner import BatchJobRunner

logger = logging.getLogger("sonic_lab.jobs")

router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_queue() -> JobQueue:
    return default_queue


@lru_cache(maxsize=1)
def get_runner() -> BatchJobRunner:
    s = get_settings()
    return BatchJobRunner(
        default_queue,
        get_inference(s),
        inter_job_delay=s.INTER_JOB_DELAY_S,
        max_retries=s.MAX_RETRIES,
        backoff_step=s.BACKOFF_STEP_S,
    )


def _safe_name(name: str) -> str:
    base = os.path.basename(name)
    return "".join(c for c in base if c.isalnum() or c in ("-", "_", ".", " ")).strip() or "file"


def _mime_of(upload: UploadFile) -> str:
    ctype = (upload.content_type or "").lower()
    if ctype.startswith("audio/"):
        return ctype
    return guess_mime_type(upload.filename or "", default=ctype)


async def _write_upload_stream(dest_path: Path, up: UploadFile, max_mb: int) -> int:
    chunk_size = 1024 * 1024  # 1MB
    max_bytes = max_mb * 1024 * 1024
    written = 0
    try:
        with dest_path.open("wb") as buf:
            while chunk := await up.read(chunk_size):
                written += len(chunk)
                if written > max_bytes:
                    raise HTTPException(status_code=413, detail=f"File too large (> {max_mb} MB)")
                buf.write(chunk)
    except BaseException:
        # no half-written files left in uploads/
        dest_path.unlink(missing_ok=True)
        raise
    return written


def _discard_upload(job: Job) -> None:
    try:
        Path(job.source).unlink(missing_ok=True)
    except OSError:
        logger.warning("could not delete upload for job=%s path=%s", job.id, job.source)


def _queue_payload(q: JobQueue, runner: BatchJobRunner) -> dict:
    jobs = q.snapshot()
    last = runner.last_summary
    return {
        "version": q.version,
        "running": runner.is_running,
        "lastRun": last.to_dict() if last else None,
        "total": len(jobs),
        "completed": sum(1 for j in jobs if j.status is JobStatus.completed),
        "jobs": [j.to_api() for j in jobs],
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def add_files(
    files: List[UploadFile] = File(...),
    q: JobQueue = Depends(get_queue),
):
    s = get_settings()
    for up in files:
        if not up.filename:
            raise HTTPException(status_code=400, detail="No file provided")
        if not _mime_of(up).startswith("audio/"):
            raise HTTPException(status_code=400, detail=f"Unsupported file type: {up.filename}")

    upload_dir = s.upload_dir
    upload_dir.mkdir(parents=True, exist_ok=True)

    staged: list[Job] = []
    try:
        for up in files:
            name = up.filename or "file"
            dest = upload_dir / f"{uuid.uuid4().hex}_{_safe_name(name)}"
            size = await _write_upload_stream(dest, up, s.MAX_UPLOAD_MB)
            staged.append(Job(source=dest, name=name, size=size, mime_type=_mime_of(up)))
    except Exception:
        for job in staged:
            _discard_upload(job)
        raise

    q.append(*staged)
    logger.info("queued %d file(s); queue size=%d", len(staged), len(q))
    return {"message": f"Queued {len(staged)} file(s)", "jobs": [j.to_api() for j in staged]}


@router.get("")
def list_jobs(q: JobQueue = Depends(get_queue), runner: BatchJobRunner = Depends(get_runner)):
    return _queue_payload(q, runner)


@router.delete("")
def clear_jobs(q: JobQueue = Depends(get_queue)):
    removed = q.clear()  # QueueBusyError -> 409
    for job in removed:
        _discard_upload(job)
    return {"message": f"Removed {len(removed)} job(s)", "removed": len(removed)}


@router.post("/run", status_code=status.HTTP_202_ACCEPTED)
async def start_run(runner: BatchJobRunner = Depends(get_runner)):
    # claim synchronously so a second request arriving before the task starts sees it
    if not runner.try_begin():
        return JSONResponse({"started": False, "message": "A batch run is already active"}, status_code=200)
    spawn(runner.run(claimed=True), name="batch-run")
    return {"started": True}


@router.get("/export")
def export_jobs(q: JobQueue = Depends(get_queue)):
    body = UTF8_BOM + export_csv(q.snapshot())
    return Response(
        content=body.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


@router.get("/{job_id}")
def get_job(job_id: str, q: JobQueue = Depends(get_queue)):
    job = q.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="job_id not found")
    return job.to_api()


@router.delete("/{job_id}")
def remove_job(job_id: str, q: JobQueue = Depends(get_queue)):
    job = q.remove(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="job_id not found")
    _discard_upload(job)
    return {"message": f"Removed '{job.name}'", "id": job.id}
