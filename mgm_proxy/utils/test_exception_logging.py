import logging
from unittest.mock import Mock

import httpx

from mgm_proxy.utils.exception_logging import (
    describe_exception,
    log_exception_with_details,
)


class BrokenStrException(Exception):
    def __str__(self):
        raise RuntimeError("Cannot convert to string!")

    def __repr__(self):
        return "BrokenStrException()"


def _connect_error() -> httpx.ConnectError:
    try:
        try:
            raise ConnectionRefusedError(111, "Connection refused")
        except ConnectionRefusedError as e:
            raise httpx.ConnectError("All connection attempts failed") from e
    except httpx.ConnectError as e:
        return e


class TestDescribeException:
    def test_includes_type_and_message(self):
        assert describe_exception(ValueError("boom")) == "ValueError: boom"

    def test_includes_cause(self):
        text = describe_exception(_connect_error())
        assert text.startswith("ConnectError: All connection attempts failed")
        assert "caused by ConnectionRefusedError" in text

    def test_none(self):
        assert describe_exception(None) == "None"

    def test_broken_str_falls_back_to_repr(self):
        assert describe_exception(BrokenStrException()) == (
            "BrokenStrException: BrokenStrException()"
        )


class TestLogExceptionWithDetails:
    def test_logs_single_line_with_prefix(self, caplog):
        logger = logging.getLogger("test.exception_logging")
        with caplog.at_level(logging.ERROR, logger=logger.name):
            log_exception_with_details(logger, "[Proxy]", _connect_error())

        assert len(caplog.records) == 1
        record = caplog.records[0]
        assert record.getMessage().startswith("[Proxy] ConnectError:")
        assert record.exc_info is None

    def test_level_and_traceback(self, caplog):
        logger = logging.getLogger("test.exception_logging")
        with caplog.at_level(logging.WARNING, logger=logger.name):
            log_exception_with_details(
                logger, "[Proxy]", ValueError("x"), level=logging.WARNING, exc_info=True
            )

        assert caplog.records[0].levelno == logging.WARNING
        assert caplog.records[0].exc_info is not None

    def test_group_logs_each_member(self, caplog):
        logger = logging.getLogger("test.exception_logging")
        group = ExceptionGroup("two", [httpx.ReadError("a"), httpx.WriteError("b")])
        with caplog.at_level(logging.ERROR, logger=logger.name):
            log_exception_with_details(logger, "[Proxy]", group)

        messages = [r.getMessage() for r in caplog.records]
        assert messages[0].startswith("[Proxy] Exception with 2 sub-exceptions")
        assert messages[1] == "[Proxy] Sub-exception 1: ReadError: a"
        assert messages[2] == "[Proxy] Sub-exception 2: WriteError: b"

    def test_never_raises_when_logger_fails(self):
        logger = Mock()
        logger.log.side_effect = RuntimeError("handler exploded")
        log_exception_with_details(logger, "[Proxy]", ValueError("x"))
        assert logger.log.call_count == 2
