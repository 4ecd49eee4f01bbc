"""
Error types raised by the array engine and the autodiff graph.

Every failure is raised synchronously where it is detected and aborts the current
forward or backward call. NaN and infinity are not errors, they propagate through
arithmetic following the usual floating-point rules.
"""

from typing import Any, Sequence


class NDGradError(Exception):
    """Base class for all errors raised by ``ndgrad``."""


class BroadcastError(NDGradError, ValueError):
    """
    Raised when shapes cannot be aligned by the broadcasting rule.

    Two shapes broadcast iff, aligned at the trailing dimension, every pair of sizes
    is equal or one of them is 1. The error is raised before any loop runs.
    """

    def __init__(self, shapes: Sequence[Any], message: str = "") -> None:
        """
        Args:
            shapes (Sequence[Any]): The conflicting shapes.
            message (str, optional): Extra context appended to the message.
        """
        self.shapes = tuple(tuple(s) for s in shapes)
        text = "Shapes cannot be broadcast together: " + ", ".join(
            str(s) for s in self.shapes
        )
        if message:
            text += f" ({message})"
        super().__init__(text)


class UnsupportedOperationError(NDGradError, TypeError):
    """
    Raised when an operator cannot run on the given data, for example a
    floating-point only operator invoked on an integer dtype, or an in-place write
    through a broadcast view.
    """


class AxisError(NDGradError, IndexError):
    """Raised for an axis outside ``[-rank, rank)`` or a rank >= 1 operation on a scalar."""

    def __init__(self, axis: int, rank: int) -> None:
        self.axis = axis
        self.rank = rank
        super().__init__(f"Axis {axis} is out of bounds for an array of rank {rank}")
