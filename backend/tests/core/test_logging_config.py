import json
import logging
import sys

import pytest

from contextgraph.core.logging_config import LoggerMixin, StructuredFormatter, get_logger, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    root.setLevel(level)


def test_structured_formatter_includes_context():
    record = logging.LogRecord("contextgraph.engine", logging.INFO, __file__, 10, "Merged %s", ("main",), None)
    record.branch_name = "main"
    record.collision_id = "c1"

    data = json.loads(StructuredFormatter().format(record))

    assert data["message"] == "Merged main"
    assert data["level"] == "INFO"
    assert data["branch_name"] == "main"
    assert data["collision_id"] == "c1"
    assert "endpoint_id" not in data


def test_structured_formatter_includes_exception():
    try:
        raise ValueError("boom")
    except ValueError:
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

    data = json.loads(StructuredFormatter().format(record))

    assert "ValueError: boom" in data["exception"]


def test_setup_logging_is_idempotent(restore_root_logger):
    setup_logging("DEBUG", "json")
    setup_logging("INFO", "text")

    named = [h for h in restore_root_logger.handlers if h.get_name() == "contextgraph.console"]
    assert len(named) == 1
    assert not isinstance(named[0].formatter, StructuredFormatter)
    assert restore_root_logger.level == logging.INFO


class Worker(LoggerMixin):
    pass


def test_logger_mixin(caplog):
    worker = Worker()

    with caplog.at_level(logging.INFO):
        worker.log_info("started", agent_id="agent-a")
        worker.log_warning("slow", node_id="n1")

    assert worker.logger.name.endswith("Worker")
    assert caplog.records[0].agent_id == "agent-a"
    assert caplog.records[1].levelno == logging.WARNING
    assert get_logger("contextgraph.x").name == "contextgraph.x"
