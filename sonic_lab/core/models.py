from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional
import uuid, time

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    idle = "idle"
    processing = "processing"
    completed = "completed"
    failed = "failed"


PENDING_STATES = (JobStatus.idle, JobStatus.failed)


class AnalysisResult(BaseModel):
    """What the inference service tells us about one clip."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    emotion_type: str = Field(alias="emotionType", min_length=1)
    emotion_level: int = Field(alias="emotionLevel", ge=1, le=10)
    voice_identity: str = Field(alias="voiceIdentity", min_length=1)
    reasoning: str = Field(alias="reasoning")


def format_file_size(num_bytes: int) -> str:
    if num_bytes <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    size = float(num_bytes)
    i = 0
    while size >= 1024 and i < len(units) - 1:
        size /= 1024
        i += 1
    return f"{round(size, 2):g} {units[i]}"


@dataclass
class Job:
    source: Path
    name: str
    size: int = 0
    mime_type: str = "application/octet-stream"
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=time.time)
    status: JobStatus = JobStatus.idle
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None

    @property
    def size_label(self) -> str:
        return format_file_size(self.size)

    @property
    def is_pending(self) -> bool:
        return self.status in PENDING_STATES

    def to_api(self) -> dict:
        r = self.result
        return {
            "id": self.id,
            "name": self.name,
            "size": self.size,
            "sizeLabel": self.size_label,
            "mimeType": self.mime_type,
            "status": self.status.value,
            "createdAt": self.created_at,
            "emotionType": r.emotion_type if r else None,
            "emotionLevel": r.emotion_level if r else None,
            "voiceIdentity": r.voice_identity if r else None,
            "reasoning": r.reasoning if r else None,
            "error": self.error,
        }
