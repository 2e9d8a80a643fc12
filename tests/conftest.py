"""
Pytest fixtures for the procurement core test suite.

Provides:
- Structured logging configured once per session, plus ``captured_logs``
- A deterministic clock
- In-memory and SQLite-backed document stores
- Default settings and a record normalizer

No external services are needed: the SQL store runs on in-memory SQLite.
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO

import pytest

from procure_config import ProcurementSettings
from procure_ingestion.normalizer import RecordNormalizer
from procure_kernel.domain.clock import DeterministicClock
from procure_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from procure_kernel.store.memory import InMemoryDocumentStore
from procure_kernel.store.sql import (
    SqlDocumentStore,
    create_document_tables,
    create_store_engine,
)

SCOPE = "user-1"


@pytest.fixture(scope="session", autouse=True)
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture procure_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            cache.rebuild(inputs)
            logs = captured_logs()
            assert any(r["message"] == "live_stock_rebuilt" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("procure_kernel")
    previous_level = root.level
    # test_logging resets the hierarchy to WARNING between its own tests
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


@pytest.fixture
def scope() -> str:
    return SCOPE


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(datetime(2025, 4, 1, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def memory_store(deterministic_clock) -> InMemoryDocumentStore:
    return InMemoryDocumentStore(deterministic_clock)


@pytest.fixture
def sql_engine():
    engine = create_store_engine("sqlite://")
    create_document_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sql_store(sql_engine, deterministic_clock) -> SqlDocumentStore:
    return SqlDocumentStore(sql_engine, deterministic_clock)


@pytest.fixture(params=["memory", "sql"])
def any_store(request, deterministic_clock):
    """Both store backends, for tests of the shared DocumentStore contract."""
    if request.param == "memory":
        yield InMemoryDocumentStore(deterministic_clock)
        return
    engine = create_store_engine("sqlite://")
    create_document_tables(engine)
    yield SqlDocumentStore(engine, deterministic_clock)
    engine.dispose()


@pytest.fixture(scope="session")
def normalizer() -> RecordNormalizer:
    return RecordNormalizer()


@pytest.fixture
def settings() -> ProcurementSettings:
    return ProcurementSettings()
