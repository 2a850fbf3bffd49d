"""
Tests for servicegen's own structured logging
"""
import json
import subprocess
import sys
import textwrap

import structlog

from servicegen import expand
from servicegen.observability import bind_source_file, configure_logging, get_logger
from servicegen.observability.logging import source_file_var


def test_bind_source_file_is_scoped():
    assert source_file_var.get() is None
    with bind_source_file("app.py"):
        assert source_file_var.get() == "app.py"
        with bind_source_file("other.py"):
            assert source_file_var.get() == "other.py"
        assert source_file_var.get() == "app.py"
    assert source_file_var.get() is None


def test_logging_is_configured_on_import():
    assert structlog.is_configured()


def test_library_use_keeps_stdout_clean(simple_service):
    script = textwrap.dedent(
        f"""
        from servicegen import expand

        print(expand({simple_service!r}, filename="service.py"), end="")
        """
    )

    result = subprocess.run([sys.executable, "-c", script], capture_output=True, text=True, check=True)

    assert result.stdout == expand(simple_service, filename="service.py")
    assert "loader_generated" not in result.stdout
    assert "loader_generated" in result.stderr


def test_json_events_go_to_stderr(capsys):
    configure_logging(level="INFO", format="json")
    logger = get_logger("servicegen.tests.json")

    with bind_source_file("service.py"):
        logger.info("loader_generated", entry="app")
    logger.debug("hidden")

    captured = capsys.readouterr()
    assert captured.out == ""
    (line,) = [line for line in captured.err.splitlines() if line.strip()]
    event = json.loads(line)
    assert event["event"] == "loader_generated"
    assert event["entry"] == "app"
    assert event["source_file"] == "service.py"
    assert event["level"] == "info"
    assert event["logger"] == "servicegen.tests.json"
    assert "timestamp" in event


def test_explicit_source_file_is_kept(capsys):
    configure_logging(level="DEBUG", format="json")
    logger = get_logger("servicegen.tests.explicit")

    with bind_source_file("bound.py"):
        logger.debug("transform_aborted", source_file="explicit.py")

    event = json.loads(capsys.readouterr().err.strip())
    assert event["source_file"] == "explicit.py"
    assert event["level"] == "debug"
