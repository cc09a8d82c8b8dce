# sonic_lab/services/encoder.py
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import asyncio, base64, mimetypes, os

from sonic_lab.core.errors import EncodeError


@dataclass(frozen=True)
class EncodedAudio:
    data: str       # base64 text
    mime_type: str


def guess_mime_type(name: str, default: str = "application/octet-stream") -> str:
    mime, _ = mimetypes.guess_type(name)
    return mime or default


def _read_b64(path: Path) -> str:
    with path.open("rb") as f:
        return base64.b64encode(f.read()).decode("ascii")


async def encode_file(path: str | os.PathLike[str], mime_type: Optional[str] = None) -> EncodedAudio:
    """Read an audio file off the event loop and return it as base64 text."""
    p = Path(path)
    try:
        data = await asyncio.to_thread(_read_b64, p)
    except OSError as e:
        raise EncodeError(f"cannot read {p.name}: {e}") from e
    return EncodedAudio(data=data, mime_type=mime_type or guess_mime_type(p.name))
