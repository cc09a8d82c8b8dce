# sonic_lab/services/runner.py
from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Awaitable, Callable, Optional, Union
import asyncio, logging, time, uuid

from sonic_lab.core.errors import AnalysisFailure, classify_failure
from sonic_lab.core.models import AnalysisResult, Job, JobStatus
from sonic_lab.core.registry import JobQueue
from sonic_lab.services.encoder import EncodedAudio, encode_file
from sonic_lab.services.inference_providers import InferenceClient
from sonic_lab.services.runlog import append_run_log

logger = logging.getLogger("sonic_lab.runner")

Encoder = Callable[..., Awaitable[EncodedAudio]]
Sleep = Callable[[float], Awaitable[None]]
Outcome = Union[AnalysisResult, AnalysisFailure]


@dataclass
class RunSummary:
    id: str
    selected: int = 0
    completed: int = 0
    failed: int = 0
    attempts: int = 0
    elapsed_s: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


class BatchJobRunner:
    """
    Walks the queue's pending jobs one at a time.

    Rate-limited attempts are retried with a linear backoff
    (``attempt * backoff_step`` seconds); anything else fails the job at once.
    Consecutive jobs are separated by ``inter_job_delay`` seconds whatever the
    outcome of the previous one.
    """

    def __init__(
        self,
        queue: JobQueue,
        client: InferenceClient,
        encoder: Encoder = encode_file,
        *,
        inter_job_delay: float = 1.5,
        max_retries: int = 2,
        backoff_step: float = 5.0,
        sleep: Sleep = asyncio.sleep,
        run_log: Optional[Callable[[dict], object]] = append_run_log,
    ):
        self.queue = queue
        self.client = client
        self.encoder = encoder
        self.inter_job_delay = inter_job_delay
        self.max_retries = max_retries
        self.backoff_step = backoff_step
        self._sleep = sleep
        self._run_log = run_log
        self._running = False
        self.last_summary: Optional[RunSummary] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def try_begin(self) -> bool:
        """Claim the runner. Returns False if a run is already active."""
        if self._running:
            return False
        self._running = True
        self.queue.busy = True
        return True

    async def run(self, *, claimed: bool = False) -> Optional[RunSummary]:
        # pass claimed=True only after a successful try_begin()
        if not claimed and not self.try_begin():
            logger.info("run requested while another run is active; ignoring")
            return None

        t0 = time.perf_counter()
        summary = RunSummary(id=f"run_{uuid.uuid4().hex[:10]}")
        try:
            working_set = self.queue.pending()
            summary.selected = len(working_set)
            logger.info("run=%s started pending=%d", summary.id, len(working_set))

            for i, job in enumerate(working_set):
                if job.id not in self.queue:
                    logger.info("run=%s skipping job=%s removed from queue", summary.id, job.id)
                    continue
                ok = await self._process(job, summary)
                if ok:
                    summary.completed += 1
                else:
                    summary.failed += 1
                if i < len(working_set) - 1:
                    await self._sleep(self.inter_job_delay)
        finally:
            self._running = False
            self.queue.busy = False
            summary.elapsed_s = round(time.perf_counter() - t0, 3)
            self.last_summary = summary

        logger.info(
            "run=%s finished selected=%d completed=%d failed=%d attempts=%d elapsed_s=%.3f",
            summary.id, summary.selected, summary.completed, summary.failed,
            summary.attempts, summary.elapsed_s,
        )
        self._record(summary)
        return summary

    async def _process(self, job: Job, summary: RunSummary) -> bool:
        self.queue.mark_processing(job.id)
        try:
            outcome = await self._attempt_with_retry(job, summary)
        except BaseException:
            # interrupted mid-job: hand it back as pending for the next run
            self.queue.update(job.id, status=JobStatus.idle, result=None, error=None)
            raise
        if isinstance(outcome, AnalysisResult):
            self.queue.mark_completed(job.id, outcome)
            logger.info("job=%s name=%r completed emotion=%s level=%d",
                        job.id, job.name, outcome.emotion_type, outcome.emotion_level)
            return True
        self.queue.mark_failed(job.id, outcome.message)
        logger.warning("job=%s name=%r failed kind=%s detail=%s",
                       job.id, job.name, outcome.kind.value, outcome.detail)
        return False

    async def _attempt_with_retry(self, job: Job, summary: RunSummary) -> Outcome:
        attempt = 0
        while True:
            attempt += 1
            summary.attempts += 1
            outcome = await self._attempt(job, attempt)
            if isinstance(outcome, AnalysisResult):
                return outcome
            if not outcome.retryable or attempt > self.max_retries:
                return outcome
            wait = attempt * self.backoff_step
            logger.warning("job=%s rate limited; retry %d/%d in %.1fs",
                           job.id, attempt, self.max_retries, wait)
            await self._sleep(wait)

    async def _attempt(self, job: Job, attempt: int) -> Outcome:
        try:
            encoded = await self.encoder(job.source, job.mime_type)
            return await self.client.analyze(encoded.data, encoded.mime_type)
        except Exception as exc:
            logger.error("analysis error job=%s file=%r attempt=%d",
                         job.id, job.name, attempt, exc_info=exc)
            return classify_failure(exc)

    def _record(self, summary: RunSummary) -> None:
        if self._run_log is None:
            return
        try:
            self._run_log(summary.to_dict())
        except OSError:
            logger.exception("could not write run log for run=%s", summary.id)
