"""Pytest configuration and shared fixtures for retrieval checker tests."""

from __future__ import annotations

import logging
import os

import pytest

from retrieve_checker.ipld import CID, Block, encode_car
from retrieve_checker.models import RetrievalTask


def pytest_configure(config):
    """Register all project markers to avoid warnings when ini isn't loaded."""
    markers = [
        ("unit", "marks tests as unit tests"),
        ("integration", "marks tests that talk to public services"),
        ("multiaddr", "marks tests as multiaddr translation tests"),
        ("ipld", "marks tests as IPLD codec tests"),
        ("ipni", "marks tests as IPNI client tests"),
        ("chain", "marks tests as chain RPC and peer id tests"),
        ("retrieval", "marks tests as retrieval and verification tests"),
        ("queue", "marks tests as dispute queue tests"),
        ("service", "marks tests as service tests"),
        ("config", "marks tests as configuration tests"),
        ("cli", "marks tests as CLI tests"),
        ("utils", "marks tests as utility tests"),
    ]
    for name, desc in markers:
        config.addinivalue_line("markers", f"{name}: {desc}")


def pytest_collection_modifyitems(config, items):
    if os.environ.get("RCHECK_INTEGRATION") == "1":
        return
    skip = pytest.mark.skip(reason="set RCHECK_INTEGRATION=1 to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path):
    """Keep user config files and RCHECK_* variables out of tests."""
    for key in list(os.environ):
        if key.startswith("RCHECK_") and key != "RCHECK_INTEGRATION":
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)


@pytest.fixture(autouse=True)
def cleanup_logging():
    """Clean up logging handlers after each test to prevent closed file errors."""
    yield
    for logger_name in list(logging.Logger.manager.loggerDict.keys()):
        logger = logging.getLogger(logger_name)
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    # setup_logging() detaches the package logger from the root logger
    package_logger = logging.getLogger("retrieve_checker")
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def raw_block() -> Block:
    data = b"hello retrieval checker"
    return Block(CID.from_data(data), data)


@pytest.fixture
def raw_car(raw_block) -> bytes:
    return encode_car([raw_block.cid], [raw_block])


@pytest.fixture
def task(raw_block) -> RetrievalTask:
    return RetrievalTask(id="1", cid=str(raw_block.cid), miner_id="f01234")
