"""Pytest configuration and fixtures for the Video Translator System tests."""

import os
import tempfile

import pytest

from video_translator.models.core import ProcessingConfig
from video_translator.services.error_handler import ErrorHandler

from fakes import FakeMediaShell


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def config(temp_dir):
    """Configuration with fast retries and temp files kept under temp_dir."""
    return ProcessingConfig(
        chunk_duration_seconds=30.0,
        retry_attempts=3,
        retry_delay_seconds=0.0,
        storage_root=os.path.join(temp_dir, "storage"),
        temp_root=temp_dir,
    )


@pytest.fixture
def error_handler():
    """Error handler that never sleeps between retries."""
    handler = ErrorHandler()
    handler.sleep = lambda seconds: None
    return handler


@pytest.fixture
def media_shell():
    return FakeMediaShell()
