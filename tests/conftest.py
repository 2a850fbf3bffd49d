"""
Global pytest configuration for servicegen

This file provides shared fixtures and enforces Python version requirements.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest

# Add tests directory to sys.path so generated programs can `import fake_runtime`
_tests_dir = Path(__file__).parent
if str(_tests_dir) not in sys.path:
    sys.path.insert(0, str(_tests_dir))

_MIN_PY_VERSION = (3, 11)


def _verify_python_version() -> str:
    """Return the interpreter version string or exit if <3.11."""
    version_info = sys.version_info
    version_str = ".".join(map(str, version_info[:3]))
    if version_info < _MIN_PY_VERSION:
        pytest.exit(
            f"ERROR: pytest must run on Python 3.11+ (detected {version_str}).",
            returncode=1,
        )
    return version_str


def pytest_report_header(config: pytest.Config) -> str:
    version_str = _verify_python_version()
    return f"Python interpreter verified for pytest: {version_str}"


def pytest_configure(config: pytest.Config) -> None:
    """Register project markers before collection."""
    config.addinivalue_line("markers", "integration: Tests that execute generated programs end to end.")


@pytest.fixture(autouse=True)
def reset_root_handlers():
    """Drop handlers installed by `configure_logging` so they never outlive a captured stream."""
    yield
    logging.getLogger().handlers.clear()


@pytest.fixture(autouse=True)
def clean_servicegen_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's SERVICEGEN_* variables out of the tests."""
    for name in (
        "SERVICEGEN_CONFIG_FILE",
        "SERVICEGEN_RUNTIME_MODULE",
        "SERVICEGEN_ENTRY_DECORATOR",
        "SERVICEGEN_LOG_LEVEL",
        "SERVICEGEN_EMIT_MAIN_GUARD",
        "SERVICEGEN_TOOL_LOG_LEVEL",
        "SERVICEGEN_TOOL_LOG_FORMAT",
    ):
        monkeypatch.delenv(name, raising=False)


SIMPLE_SERVICE = '''\
import service_runtime


@service_runtime.main
async def simple() -> ShuttleAxum:
    return build_router()
'''


RESOURCE_SERVICE = '''\
from typing import Annotated

import service_runtime
import shared_db


@service_runtime.main(log_level="INFO")
async def app(
    pool: Annotated[PgPool, shared_db.Postgres],
    redis: Annotated[Redis, shared_db.Redis],
) -> ShuttleTide:
    return build_app(pool, redis)
'''


@pytest.fixture
def simple_service() -> str:
    return SIMPLE_SERVICE


@pytest.fixture
def resource_service() -> str:
    return RESOURCE_SERVICE
