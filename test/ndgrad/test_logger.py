import io
import logging
from unittest import TestCase

import pytest

from ndgrad.array import factory
from ndgrad.logger import ColorFormatter, setup_logger


class TestLogger(TestCase):
    def test_formatter_colors_by_level(self):
        formatter = ColorFormatter()
        record = logging.LogRecord("ndgrad.tensor", logging.WARNING, __file__, 1, "careful", None, None)
        text = formatter.format(record)
        assert text.startswith(ColorFormatter.yellow)
        assert "ndgrad.tensor" in text and "careful" in text
        custom = logging.LogRecord("ndgrad", 25, __file__, 1, "plain", None, None)
        assert not formatter.format(custom).startswith("\x1b")

    def test_setup_logger_adds_one_handler(self):
        stream = io.StringIO()
        logger = setup_logger("ndgrad.test_logger", level=logging.INFO, stream=stream)
        setup_logger("ndgrad.test_logger", level=logging.INFO, stream=stream)
        assert len(logger.handlers) == 1
        logger.info("hello")
        assert "hello" in stream.getvalue()

    def test_debug_from_environment(self):
        with pytest.MonkeyPatch.context() as mp:
            mp.setenv("DEBUG", "1")
            assert setup_logger("ndgrad.test_debug", stream=io.StringIO()).level == logging.DEBUG
            mp.delenv("DEBUG")
            assert setup_logger("ndgrad.test_info", stream=io.StringIO()).level == logging.INFO

    def test_loop_selection_is_logged(self):
        with self.assertLogs("ndgrad.array.ops", level=logging.DEBUG) as logs:
            factory.of([1.0, 2.0], storage="list").exp()
        assert any("generic" in line for line in logs.output)

    def test_broadcast_is_logged(self):
        with self.assertLogs("ndgrad.array.broadcast", level=logging.DEBUG) as logs:
            factory.of([[1.0], [2.0]]).add(factory.of([1.0, 2.0, 3.0]))
        assert any("Broadcast" in line for line in logs.output)
