"""Shared fixtures for the ingestion tests."""
import io
import os

import pytest

from helpers import FakeTableStore
from table_ingest.config import IngestConfig
from table_ingest.logger import LogLevel, StructuredLogger


@pytest.fixture
def quiet_logger():
    return StructuredLogger(min_level=LogLevel.DEBUG, out=io.StringIO(), err=io.StringIO())


@pytest.fixture
def config():
    return IngestConfig(connection_string="postgresql://localhost/test")


@pytest.fixture
def store():
    return FakeTableStore()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    return sleeps.append


INGEST_ENV_VARS = (
    "PREMIUM_STORAGE_CONNECTION_STRING",
    "STANDARD_STORAGE_CONNECTION_STRING",
    "INGEST_TABLE_NAME",
    "INGEST_BATCH_SIZE",
    "INGEST_MAX_RECORDS_PER_FILE",
    "INGEST_RATE_LIMIT_BACKOFF_MS",
    "INGEST_RATE_LIMIT_RETRIES",
    "INGEST_THREAD_COUNT",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Empty ingestion environment, cwd in tmp_path; undoes values set by load_dotenv."""
    for name in INGEST_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    yield monkeypatch
    for name in INGEST_ENV_VARS:
        os.environ.pop(name, None)
