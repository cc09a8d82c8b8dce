# sonic_lab/services/runlog.py
import json, datetime
from pathlib import Path
from typing import Optional

from sonic_lab.config import get_settings


def append_run_log(entry: dict, runs_dir: Optional[Path] = None) -> Path:
    runs_dir = runs_dir or get_settings().runs_dir
    runs_dir.mkdir(parents=True, exist_ok=True)
    date = datetime.datetime.now(datetime.timezone.utc).date().isoformat()
    path = runs_dir / f"{date}.jsonl"
    with path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(entry, ensure_ascii=False) + "\n")
    return path
