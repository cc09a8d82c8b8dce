# sonic_lab/services/export.py
from typing import Iterable
import csv, io, time

from sonic_lab.core.models import Job

CSV_HEADER = ("File Name", "Emotion", "Intensity (1-10)", "Voice Identity", "Reasoning")
UTF8_BOM = "\ufeff"


def export_csv(jobs: Iterable[Job]) -> str:
    """
    One quoted row per job, whatever its status. Unset result fields are
    empty strings; csv doubles embedded quote characters.
    """
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for job in jobs:
        r = job.result
        writer.writerow([
            job.name,
            r.emotion_type if r else "",
            r.emotion_level if r else "",
            r.voice_identity if r else "",
            r.reasoning if r else "",
        ])
    return buf.getvalue()


def export_filename() -> str:
    return f"analysis_results_{int(time.time() * 1000)}.csv"
