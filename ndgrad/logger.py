import logging
import os
import sys
from typing import Optional, TextIO

_HANDLER_NAME = "ndgrad-console"


class ColorFormatter(logging.Formatter):
    """
    Formatter that colors each record by severity with ANSI escape codes.

    Records are rendered as ``time - LEVEL - logger name - message``. The logger name
    tells which layer emitted the record (``ndgrad.array.ops`` for loop selection,
    ``ndgrad.array.broadcast`` for expansions, ``ndgrad.tensor`` for backward passes).
    """

    cyan = "\x1b[36;20m"
    green = "\x1b[32;20m"
    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"

    COLORS = {
        logging.DEBUG: cyan,
        logging.INFO: green,
        logging.WARNING: yellow,
        logging.ERROR: red,
        logging.CRITICAL: bold_red,
    }

    def __init__(self) -> None:
        super().__init__()
        self._formatters = {
            level: logging.Formatter(
                f"{color}%(asctime)s - %(levelname)s - %(name)s - %(message)s{self.reset}"
            )
            for level, color in self.COLORS.items()
        }
        self._plain = logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        """
        Args:
            record (logging.LogRecord): The record to render.

        Returns:
            str: The colored message; records with a custom level are not colored.
        """
        return self._formatters.get(record.levelno, self._plain).format(record)


def setup_logger(
    name: Optional[str] = "ndgrad",
    level: Optional[int] = None,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Attach a colored console handler to a logger.

    The level is DEBUG when the ``DEBUG`` environment variable is set and INFO otherwise,
    unless ``level`` is given. Calling this twice for the same logger does not add a
    second handler.

    Args:
        name (Optional[str], optional): Logger name. Defaults to the package logger, so
            every module logger of ``ndgrad`` inherits the handler.
        level (Optional[int], optional): Explicit logging level.
        stream (Optional[TextIO], optional): Output stream. Defaults to ``sys.stdout``.

    Returns:
        logging.Logger: The configured logger.

    Examples:
        >>> import os
        >>> os.environ["DEBUG"] = "1"
        >>> logger = setup_logger()
        >>> # every loop selection and broadcast is now printed
    """
    logger = logging.getLogger(name)
    if level is None:
        level = logging.DEBUG if os.getenv("DEBUG") else logging.INFO
    logger.setLevel(level)

    for handler in logger.handlers:
        if handler.get_name() == _HANDLER_NAME:
            return logger

    console_handler = logging.StreamHandler(stream or sys.stdout)
    console_handler.set_name(_HANDLER_NAME)
    console_handler.setFormatter(ColorFormatter())
    logger.addHandler(console_handler)
    return logger
