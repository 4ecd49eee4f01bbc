"""
Broadcasting rule for elementwise operators.

Shapes are aligned at their trailing dimension. At every position the target size is
the largest size among the inputs, missing positions count as 1. An input is
compatible when, at every position, its size is equal to the target or is 1.
"""

import logging
from typing import TYPE_CHECKING, Iterable, Tuple, Union

from ndgrad.array.layout import StrideLayout
from ndgrad.array.shape import Shape
from ndgrad.errors import BroadcastError

if TYPE_CHECKING:
    from ndgrad.array.narray import NArray

logger = logging.getLogger(__name__)

ShapeLike = Union[Shape, Iterable[int]]


class ElementWise:
    """
    Result of resolving the broadcast of a group of shapes.

    Attributes:
        valid (bool): True when all the shapes are compatible.
        unchanged (bool): True when every input already has the target shape.
        shape (Shape): The target shape (meaningful only when ``valid``).
        shapes (Tuple[Shape, ...]): The input shapes.
    """

    def __init__(
        self, valid: bool, unchanged: bool, shape: Shape, shapes: Tuple[Shape, ...]
    ) -> None:
        self.valid = valid
        self.unchanged = unchanged
        self.shape = shape
        self.shapes = shapes

    def check(self) -> "ElementWise":
        """
        Raises:
            BroadcastError: If the shapes are not compatible.
        """
        if not self.valid:
            raise BroadcastError(self.shapes)
        return self

    def transform_layout(self, layout: StrideLayout) -> StrideLayout:
        """
        Expand a layout to the target shape without touching its storage.

        Missing leading axes are inserted with stride 0, size-1 axes are stretched to the
        target size with stride 0, matching axes are left alone.

        Raises:
            BroadcastError: If an axis can not be brought to the target size.
        """
        target = self.shape
        if layout.rank > target.rank:
            raise BroadcastError(
                (layout.shape, target), "array has more dimensions than the target"
            )
        while layout.rank < target.rank:
            layout = layout.stretch(0)
        for axis in range(target.rank):
            size = layout.shape[axis]
            if size == target[axis]:
                continue
            if size != 1:
                raise BroadcastError(
                    (layout.shape, target), f"axis {axis} has size {size}"
                )
            layout = layout.expand(axis, target[axis])
        return layout

    def transform(self, array: "NArray") -> "NArray":
        """
        Return a view of ``array`` with the target shape.

        Args:
            array (NArray): One of the arrays whose shapes were resolved.

        Returns:
            NArray: ``array`` itself when no expansion is needed, otherwise a view over
            the same storage.
        """
        if array.shape == self.shape:
            return array
        logger.debug(f"Broadcast {array.shape.dims} to {self.shape.dims}")
        return array.view(self.transform_layout(array.layout))

    def __repr__(self) -> str:
        return (
            f"ElementWise(valid={self.valid}, unchanged={self.unchanged}, "
            f"shape={self.shape.dims})"
        )


class Broadcast:
    """Namespace for the broadcast resolvers."""

    @staticmethod
    def element_wise(*shapes: ShapeLike) -> ElementWise:
        """
        Resolve the common shape of a group of shapes.

        Args:
            *shapes (ShapeLike): The input shapes.

        Returns:
            ElementWise: The resolution, check ``valid`` before using ``shape``.

        Examples:
            >>> Broadcast.element_wise((3, 1), (1, 4)).shape
            Shape(3, 4)
            >>> Broadcast.element_wise((3, 2), (4, 2)).valid
            False
        """
        shapes = tuple(Shape.of(s) for s in shapes)
        rank = max((s.rank for s in shapes), default=0)

        dims = []
        for pos in range(rank):
            size = 1
            for s in shapes:
                i = s.rank - rank + pos
                if i >= 0 and s[i] != 1:
                    size = max(size, s[i]) if size != 1 else s[i]
            dims.append(size)

        valid = True
        unchanged = True
        for s in shapes:
            if s.rank < rank:
                unchanged = False
            for i in range(s.rank):
                target = dims[rank - s.rank + i]
                if s[i] == target:
                    continue
                if s[i] == 1:
                    unchanged = False
                else:
                    valid = False

        return ElementWise(valid, unchanged, Shape(dims), shapes)
