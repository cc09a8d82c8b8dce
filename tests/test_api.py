"""Tests for the HTTP surface."""
import asyncio
import logging
import time
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from sonic_lab.background import pending_tasks
from sonic_lab.config import get_settings
from sonic_lab.core.registry import JobQueue
from sonic_lab.main import app
from sonic_lab.routers.jobs_api import _write_upload_stream, get_queue, get_runner
from sonic_lab.services.inference_providers import StubInference
from sonic_lab.services.runner import BatchJobRunner

from fakes import FakeInference, fake_encode, make_job


@pytest.fixture
def api(tmp_path, monkeypatch):
    """TestClient over a fresh queue, a stub-backed runner and a temp data dir."""
    monkeypatch.setattr(get_settings(), "DATA_DIR", str(tmp_path))
    q = JobQueue()
    runner = BatchJobRunner(q, StubInference(), inter_job_delay=0, backoff_step=0, run_log=None)
    app.dependency_overrides[get_queue] = lambda: q
    app.dependency_overrides[get_runner] = lambda: runner
    with TestClient(app) as client:
        yield client, q, runner
    app.dependency_overrides.clear()


def upload(client, *names, ctype="audio/wav", body=b"RIFF\x00fakewav"):
    files = [("files", (n, body, ctype)) for n in names]
    return client.post("/jobs", files=files)


class TestUpload:
    """Tests for adding files to the queue."""

    def test_upload_queues_idle_jobs(self, api):
        client, q, _ = api
        r = upload(client, "a.wav", "b.wav")
        assert r.status_code == 201
        jobs = r.json()["jobs"]
        assert [j["name"] for j in jobs] == ["a.wav", "b.wav"]
        assert all(j["status"] == "idle" for j in jobs)
        assert jobs[0]["size"] == len(b"RIFF\x00fakewav")
        assert len(q) == 2
        for job in q.snapshot():
            assert Path(job.source).exists()

    def test_non_audio_rejected(self, api):
        client, q, _ = api
        r = upload(client, "notes.txt", ctype="text/plain")
        assert r.status_code == 400
        assert "Unsupported file type" in r.json()["error"]
        assert len(q) == 0

    def test_audio_type_guessed_from_extension(self, api):
        client, q, _ = api
        r = upload(client, "song.mp3", ctype="application/octet-stream")
        assert r.status_code == 201
        assert q.snapshot()[0].mime_type == "audio/mpeg"

    def test_too_large_rejected(self, api, monkeypatch, tmp_path):
        client, q, _ = api
        monkeypatch.setattr(get_settings(), "MAX_UPLOAD_MB", 0)
        r = upload(client, "a.wav", "b.wav")
        assert r.status_code == 413
        assert len(q) == 0
        assert list((tmp_path / "uploads").iterdir()) == []

    def test_failed_read_leaves_no_partial_file(self, tmp_path):
        class BrokenUpload:
            def __init__(self):
                self.reads = 0

            async def read(self, size):
                self.reads += 1
                if self.reads > 1:
                    raise OSError("client went away")
                return b"RIFF" * 16

        dest = tmp_path / "partial.wav"
        with pytest.raises(OSError):
            asyncio.run(_write_upload_stream(dest, BrokenUpload(), max_mb=1))
        assert not dest.exists()


class TestQueueEndpoints:
    """Tests for listing, removing and clearing jobs."""

    def test_list(self, api):
        client, q, _ = api
        upload(client, "a.wav")
        data = client.get("/jobs").json()
        assert data["total"] == 1
        assert data["completed"] == 0
        assert data["running"] is False
        assert data["version"] == q.version
        assert data["lastRun"] is None
        assert data["jobs"][0]["emotionType"] is None

    def test_get_one_and_missing(self, api):
        client, q, _ = api
        job_id = upload(client, "a.wav").json()["jobs"][0]["id"]
        assert client.get(f"/jobs/{job_id}").json()["name"] == "a.wav"
        r = client.get("/jobs/nope")
        assert r.status_code == 404
        assert r.json() == {"error": "job_id not found"}

    def test_remove_deletes_upload(self, api):
        client, q, _ = api
        job_id = upload(client, "a.wav").json()["jobs"][0]["id"]
        source = Path(q.get(job_id).source)
        r = client.delete(f"/jobs/{job_id}")
        assert r.status_code == 200
        assert job_id not in q
        assert not source.exists()
        assert client.delete(f"/jobs/{job_id}").status_code == 404

    def test_clear(self, api):
        client, q, _ = api
        upload(client, "a.wav", "b.wav")
        r = client.delete("/jobs")
        assert r.json()["removed"] == 2
        assert len(q) == 0

    def test_clear_refused_while_running(self, api):
        client, q, _ = api
        upload(client, "a.wav")
        q.busy = True
        r = client.delete("/jobs")
        assert r.status_code == 409
        assert "error" in r.json()
        assert len(q) == 1
        q.busy = False


class TestRunEndpoint:
    """Tests for starting batch runs over HTTP."""

    def test_run_processes_queue(self, api):
        client, q, _ = api
        upload(client, "a.wav", "b.wav")
        r = client.post("/jobs/run")
        assert r.status_code == 202
        assert r.json() == {"started": True}

        data = {}
        for _ in range(200):
            data = client.get("/jobs").json()
            if data["completed"] == data["total"] and not data["running"]:
                break
            time.sleep(0.01)
        assert data["completed"] == 2
        assert data["lastRun"]["selected"] == 2
        assert data["lastRun"]["completed"] == 2
        assert data["lastRun"]["failed"] == 0
        for row in data["jobs"]:
            assert row["status"] == "completed"
            assert 1 <= row["emotionLevel"] <= 10
            assert row["error"] is None

    def test_run_while_active_is_not_started(self, api):
        client, _, runner = api
        runner._running = True
        try:
            r = client.post("/jobs/run")
        finally:
            runner._running = False
        assert r.status_code == 200
        assert r.json()["started"] is False

    def test_concurrent_starts_launch_one_run(self):
        q = JobQueue()
        q.append(make_job("a.wav"))

        async def scenario():
            gate = asyncio.Event()

            async def hold(_data):
                await gate.wait()

            client = FakeInference(on_call=hold)
            runner = BatchJobRunner(q, client, fake_encode, inter_job_delay=0, run_log=None)
            app.dependency_overrides[get_queue] = lambda: q
            app.dependency_overrides[get_runner] = lambda: runner
            try:
                transport = httpx.ASGITransport(app=app)
                async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
                    first, second = await asyncio.gather(http.post("/jobs/run"), http.post("/jobs/run"))
                gate.set()
                loop = asyncio.get_running_loop()
                await asyncio.gather(*(t for t in pending_tasks() if t.get_loop() is loop))
            finally:
                app.dependency_overrides.clear()
            return [first.json()["started"], second.json()["started"]], client, runner

        started, client, runner = asyncio.run(scenario())
        assert sorted(started) == [False, True]
        assert client.calls_for("a.wav") == 1
        assert runner.is_running is False
        assert runner.last_summary.completed == 1


class TestRequestLog:
    """Tests for the per-request log line."""

    def test_job_paths_carry_job_id_and_queue_version(self, api, caplog):
        client, q, _ = api
        job_id = upload(client, "a.wav").json()["jobs"][0]["id"]
        caplog.set_level(logging.INFO, logger="sonic_lab.request")
        client.get(f"/jobs/{job_id}")
        client.get("/jobs")
        client.get("/health")

        lines = [r.getMessage() for r in caplog.records if r.name == "sonic_lab.request"]
        job_line = next(m for m in lines if f"path=/jobs/{job_id}" in m)
        assert f"job={job_id}" in job_line
        assert "queue_version=" in job_line
        list_line = next(m for m in lines if "path=/jobs status=" in m)
        assert "job=" not in list_line
        assert "queue_version=" in list_line
        health_line = next(m for m in lines if "path=/health" in m)
        assert "queue_version=" not in health_line


class TestExportEndpoint:
    """Tests for the CSV download."""

    def test_export(self, api):
        client, _, _ = api
        upload(client, "take 1, final.wav")
        r = client.get("/jobs/export")
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/csv")
        assert "analysis_results_" in r.headers["content-disposition"]
        assert r.content.startswith(b"\xef\xbb\xbf")
        lines = r.content.decode("utf-8-sig").splitlines()
        assert lines[1] == '"take 1, final.wav","","","",""'


class TestHealth:
    """Tests for health endpoints."""

    def test_health(self, api):
        client, _, _ = api
        assert client.get("/health").json()["status"] == "ok"

    def test_env_preview_has_no_secrets(self, api, monkeypatch):
        client, _, _ = api
        monkeypatch.setattr(get_settings(), "GEMINI_API_KEY", "super-secret")
        body = client.get("/health/env").text
        assert "super-secret" not in body
        assert '"RUNNER"' in body
