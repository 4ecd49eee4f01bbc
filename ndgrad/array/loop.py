from typing import Iterator

import numpy as np

from ndgrad.array.layout import Order, StrideLayout
from ndgrad.array.shape import Shape


class StrideLoopDescriptor:
    """
    Iteration plan over the elements of a layout.

    The elements are visited as ``len(offsets)`` segments. Segment ``j`` starts at
    storage offset ``offsets[j]`` and holds ``bound`` elements spaced by ``step``:

        $$
        p_{j,i} = offsets_j + i \\cdot step, \\quad 0 \\le i < bound
        $$

    A descriptor is derived from one layout and is only valid for it.
    """

    __slots__ = ("offsets", "step", "bound")

    def __init__(self, offsets: np.ndarray, step: int, bound: int) -> None:
        self.offsets = offsets
        self.step = int(step)
        self.bound = int(bound)

    @classmethod
    def of(cls, layout: StrideLayout, order: Order = Order.S) -> "StrideLoopDescriptor":
        """
        Build the loop for ``layout`` in the given traversal order.

        ``Order.S`` compacts the layout first, so a dense block of storage becomes a
        single segment; use it when the visiting order does not matter (reductions,
        in-place unary operators). ``Order.C`` keeps every axis and visits elements in
        row-major order, which lines up two layouts of the same shape element by
        element (binary operators).

        Args:
            layout (StrideLayout): The layout to iterate.
            order (Order, optional): Traversal order. Defaults to ``Order.S``.

        Returns:
            StrideLoopDescriptor: The loop plan.
        """
        fl = layout.compute_fortran_layout(order, compact=order is Order.S)
        if fl.rank == 0:
            return cls(np.array([layout.offset], dtype=np.int64), 1, 1)
        outer = StrideLayout(Shape(fl.shape.dims[1:]), fl.offset, fl.strides[1:])
        # the outer axes are in fastest-first order, pointers() wants slowest-first
        outer = outer.permute(list(range(outer.rank - 1, -1, -1)))
        return cls(outer.pointers(), fl.strides[0], fl.shape[0])

    @property
    def size(self) -> int:
        return len(self.offsets) * self.bound

    def __iter__(self) -> Iterator[int]:
        """Yield every storage offset in loop order."""
        for p in self.offsets:
            p = int(p)
            for i in range(self.bound):
                yield p + i * self.step

    def __repr__(self) -> str:
        return (
            f"StrideLoopDescriptor(segments={len(self.offsets)}, "
            f"step={self.step}, bound={self.bound})"
        )
