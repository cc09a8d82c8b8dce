import logging
import re
import time
from typing import Callable
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from sonic_lab.config import get_settings

# Configure root logger once (simple, readable format)
logging.basicConfig(
    level=getattr(logging, get_settings().LOG_LEVEL, logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

logger = logging.getLogger("sonic_lab.request")

# /jobs/<hex id>; "/jobs/run" and "/jobs/export" are not ids
_JOB_PATH = re.compile(r"^/jobs/([0-9a-f]{32})$")


def _job_context(request: Request) -> str:
    """Extra ``job=`` / ``queue_version=`` fields for requests under /jobs."""
    path = request.url.path
    if path != "/jobs" and not path.startswith("/jobs/"):
        return ""
    from sonic_lab.routers.jobs_api import get_queue

    provider = request.app.dependency_overrides.get(get_queue, get_queue)
    fields = f" queue_version={provider().version}"
    m = _JOB_PATH.match(path)
    if m:
        fields = f" job={m.group(1)}" + fields
    return fields


class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        start = time.perf_counter()
        client = request.client.host if request.client else "-"
        line = "client=%s method=%s path=%s status=%s duration_ms=%.2f"

        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000.0
            logger.exception(line + "%s UNHANDLED", client, request.method, request.url.path,
                             500, duration_ms, _job_context(request))
            raise

        duration_ms = (time.perf_counter() - start) * 1000.0
        # version is read after the handler ran, so it reflects this request's mutation
        logger.info(line + "%s", client, request.method, request.url.path,
                    response.status_code, duration_ms, _job_context(request))
        return response


def register_request_logging(app):
    app.add_middleware(RequestLogMiddleware)
