"""
Tests for structured logging setup.

Test plan:
- StructuredFormatter: core fields present, extra= fields merged,
  exceptions rendered, non-JSON values stringified
- configure_logging: replaces root handlers, JSON vs plain formatter,
  optional file handler, level applied
"""

import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from nexus_proof.logging_config import StructuredFormatter, configure_logging


@pytest.fixture(autouse=True)
def _restore_root_logger() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _record(msg: str = "Chain %s confirmed", *args: object, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        "nexus_proof.ledger.tracker", logging.INFO, __file__, 42, msg, args or ("evm:1",), None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    def test_core_fields(self) -> None:
        data = json.loads(StructuredFormatter().format(_record()))
        assert data["level"] == "INFO"
        assert data["logger"] == "nexus_proof.ledger.tracker"
        assert data["message"] == "Chain evm:1 confirmed"
        assert data["line"] == 42
        assert data["timestamp"].endswith("+00:00")

    def test_extra_fields(self) -> None:
        data = json.loads(
            StructuredFormatter().format(_record(chain_id="evm:1", status="confirmed"))
        )
        assert data["chain_id"] == "evm:1"
        assert data["status"] == "confirmed"

    def test_non_json_extra_stringified(self) -> None:
        data = json.loads(StructuredFormatter().format(_record(path=Path("/tmp/x"))))
        assert data["path"] == "/tmp/x"

    def test_exception(self) -> None:
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            import sys

            record = logging.LogRecord(
                "x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
            )
        data = json.loads(StructuredFormatter().format(record))
        assert "RuntimeError: boom" in data["exception"]


class TestConfigureLogging:
    def test_json_handler(self) -> None:
        configure_logging("DEBUG")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)

    def test_plain_handler(self) -> None:
        configure_logging("warning", json_format=False)
        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert not isinstance(root.handlers[0].formatter, StructuredFormatter)

    def test_log_file(self, tmp_path: Path) -> None:
        log_file = tmp_path / "engine.log"
        configure_logging("INFO", log_file=str(log_file))
        logging.getLogger("nexus_proof.test").info("hello", extra={"document_id": "sha256:x"})
        for handler in logging.getLogger().handlers:
            handler.flush()
        line = json.loads(log_file.read_text(encoding="utf-8").strip())
        assert line["message"] == "hello"
        assert line["document_id"] == "sha256:x"
