# sonic_lab/core/errors.py
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional

RATE_LIMIT_LABEL = "frequency exceeded"
GENERIC_LABEL = "analysis failed"

_RATE_LIMIT_MARKERS = ("429", "RESOURCE_EXHAUSTED")


class AnalysisError(RuntimeError):
    """Base class for failures while analysing one audio file."""


class RateLimitError(AnalysisError):
    """The inference service is throttling us; safe to retry after a wait."""

    def __init__(self, message: str, status_code: Optional[int] = 429):
        super().__init__(message)
        self.status_code = status_code


class InferenceError(AnalysisError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ResponseParseError(AnalysisError):
    pass


class EncodeError(AnalysisError):
    pass


class QueueBusyError(RuntimeError):
    pass


class FailureKind(str, Enum):
    rate_limit = "rate_limit"
    generic = "generic"


@dataclass(frozen=True)
class AnalysisFailure:
    kind: FailureKind
    message: str
    detail: str = ""

    @property
    def retryable(self) -> bool:
        return self.kind is FailureKind.rate_limit


def is_rate_limited(exc: BaseException) -> bool:
    """
    Single place that decides whether a failure means "slow down".
    Structured signals (exception type, status code, status string) win;
    the message substrings are the fallback for collaborators that only
    report text.
    """
    if isinstance(exc, RateLimitError):
        return True
    if isinstance(exc, (EncodeError, ResponseParseError)):
        return False
    code = getattr(exc, "status_code", None) or getattr(exc, "code", None)
    if code == 429:
        return True
    status = getattr(exc, "status", None)
    if isinstance(status, str) and status.upper() == "RESOURCE_EXHAUSTED":
        return True
    text = str(exc) or ""
    return any(marker in text for marker in _RATE_LIMIT_MARKERS)


def classify_failure(exc: BaseException) -> AnalysisFailure:
    detail = f"{type(exc).__name__}: {exc}"
    if is_rate_limited(exc):
        return AnalysisFailure(FailureKind.rate_limit, RATE_LIMIT_LABEL, detail)
    return AnalysisFailure(FailureKind.generic, GENERIC_LABEL, detail)
