"""Tests for local object storage and the in-memory job store."""

import os
import time
from datetime import datetime, timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from video_translator.models.core import JobStatus, TranslationJob, TranslationResult
from video_translator.services.job_store import InMemoryJobStore
from video_translator.services.storage import LocalObjectStorage


class TestLocalObjectStorage:
    """Keys map to files below the storage root."""

    def test_put_and_get(self, temp_dir):
        storage = LocalObjectStorage(temp_dir)

        key = storage.put(b"payload", "translated/job1/job1_es.mp4")

        assert key == "translated/job1/job1_es.mp4"
        assert storage.get(key) == b"payload"
        assert storage.exists(key)
        assert storage.size(key) == 7
        assert not [name for name in os.listdir(os.path.join(temp_dir, "translated", "job1")) if name.endswith(".tmp")]

    def test_put_file_streams_local_file(self, temp_dir):
        storage = LocalObjectStorage(os.path.join(temp_dir, "store"))
        source = os.path.join(temp_dir, "video.mp4")
        with open(source, 'wb') as f:
            f.write(b"x" * (3 * 1024 * 1024 + 5))

        storage.put_file(source, "uploads/video.mp4")

        assert storage.size("uploads/video.mp4") == 3 * 1024 * 1024 + 5
        assert storage.local_path("uploads/video.mp4").startswith(os.path.realpath(temp_dir))

    def test_overwrite_replaces_content(self, temp_dir):
        storage = LocalObjectStorage(temp_dir)
        storage.put(b"one", "a/b.txt")
        storage.put(b"two", "a/b.txt")

        assert storage.get("a/b.txt") == b"two"

    def test_missing_key(self, temp_dir):
        storage = LocalObjectStorage(temp_dir)

        assert not storage.exists("nothing/here")
        with pytest.raises(KeyError):
            storage.get("nothing/here")
        with pytest.raises(KeyError):
            storage.size("nothing/here")
        with pytest.raises(KeyError):
            storage.presigned_url("nothing/here", 60)

    @pytest.mark.parametrize("key", ["", "/etc/passwd", "../outside.txt", "a/../../outside.txt"])
    def test_invalid_keys_are_rejected(self, temp_dir, key):
        storage = LocalObjectStorage(os.path.join(temp_dir, "store"))

        with pytest.raises(ValueError):
            storage.put(b"x", key)

    def test_presigned_url_carries_expiry(self, temp_dir):
        storage = LocalObjectStorage(temp_dir)
        storage.put(b"x", "translated/j/j_es.srt")
        before = int(time.time())

        url = storage.presigned_url("translated/j/j_es.srt", 3600)

        parsed = urlparse(url)
        assert parsed.scheme == "file"
        assert parsed.path.endswith("/translated/j/j_es.srt")
        expires = int(parse_qs(parsed.query)['expires'][0])
        assert before + 3600 <= expires <= int(time.time()) + 3600

    def test_generate_key_layout(self):
        key = LocalObjectStorage.generate_key("/home/me/My Talk.mp4", now=datetime(2024, 5, 1, 12, 30, 45))

        prefix, stamp, name = key.split("/")
        assert prefix == "uploads"
        assert stamp == "20240501123045"
        unique, original = name.split("_", 1)
        assert len(unique) == 32
        assert original == "My Talk.mp4"

    def test_generated_keys_are_unique(self):
        now = datetime(2024, 5, 1)

        keys = {LocalObjectStorage.generate_key("a.mp4", now=now) for _ in range(50)}

        assert len(keys) == 50


def make_job(job_id, created_at=None, status=JobStatus.PENDING):
    job = TranslationJob(id=job_id, media_key=f"uploads/{job_id}.mp4", target_languages=["es"], status=status)
    job.results.append(TranslationResult(target_language="es"))
    if created_at is not None:
        job.created_at = created_at
    return job


class TestInMemoryJobStore:
    """Create, read, update and list jobs."""

    def setup_method(self):
        self.store = InMemoryJobStore()

    def test_create_and_get(self):
        self.store.create(make_job("j1"))

        job = self.store.get("j1")

        assert job.id == "j1"
        assert job.results[0].target_language == "es"
        assert self.store.get("missing") is None

    def test_duplicate_create_fails(self):
        self.store.create(make_job("j1"))

        with pytest.raises(ValueError):
            self.store.create(make_job("j1"))

    def test_returned_jobs_are_copies(self):
        self.store.create(make_job("j1"))

        job = self.store.get("j1")
        job.status = JobStatus.FAILED
        job.results[0].error_message = "changed"

        stored = self.store.get("j1")
        assert stored.status == JobStatus.PENDING
        assert stored.results[0].error_message is None

    def test_save_replaces_job(self):
        self.store.create(make_job("j1"))
        job = self.store.get("j1")
        job.progress = 40

        self.store.save(job)

        assert self.store.get("j1").progress == 40

    def test_save_unknown_job_fails(self):
        with pytest.raises(KeyError):
            self.store.save(make_job("ghost"))

    def test_delete(self):
        self.store.create(make_job("j1"))

        assert self.store.delete("j1")
        assert not self.store.delete("j1")
        assert self.store.get("j1") is None

    def test_list_jobs_filters_and_sorts(self):
        base = datetime(2024, 1, 1)
        self.store.create(make_job("late", base + timedelta(minutes=5), JobStatus.COMPLETED))
        self.store.create(make_job("early", base, JobStatus.COMPLETED))
        self.store.create(make_job("mid", base + timedelta(minutes=1), JobStatus.FAILED))

        assert [job.id for job in self.store.list_jobs()] == ["early", "mid", "late"]
        assert [job.id for job in self.store.list_jobs(JobStatus.COMPLETED)] == ["early", "late"]
