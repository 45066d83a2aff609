"""Pytest configuration and fixtures."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List

import pytest

from mongo_extractor.lib.models import ConnectionParams
from mongo_extractor.lib.resilience import RetryConfig
from tests.helpers import FakeMongoexport


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: tests of a single module")
    config.addinivalue_line("markers", "integration: full extraction runs against a stand-in mongoexport")


def pytest_collection_modifyitems(items: List[pytest.Item]) -> None:
    for item in items:
        if "integration" in item.path.parts:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


@pytest.fixture
def fake_mongoexport(tmp_path: Path) -> FakeMongoexport:
    directory = tmp_path / "bin"
    directory.mkdir()
    return FakeMongoexport(directory)


@pytest.fixture
def connection() -> ConnectionParams:
    return ConnectionParams(
        host="localhost",
        port=27017,
        database="test",
        user="reader",
        password="s3cret",
    )


@pytest.fixture
def no_retry() -> RetryConfig:
    return RetryConfig.none()


@pytest.fixture
def sample_parameters() -> Dict[str, Any]:
    """A valid single-export ``parameters`` object."""
    return {
        "db": {
            "host": "localhost",
            "port": 27017,
            "database": "test",
            "user": "reader",
            "#password": "s3cret",
        },
        "tableName": "restaurants",
        "collection": "restaurants",
        "query": '{borough: "Bronx"}',
        "mapping": {"_id": None},
    }


@pytest.fixture
def restore_logging():
    """Undo setup_logging changes to the root logger after the test."""
    root = logging.getLogger()
    level = root.level
    yield
    # pytest's own capture handlers are subclasses and stay in place
    for handler in root.handlers[:]:
        if type(handler) in (logging.StreamHandler, logging.FileHandler):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
