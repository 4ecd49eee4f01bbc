"""
Stride layouts: how the elements of a view map onto linear storage offsets.

The offset of the element at index ``(i_0, ..., i_{r-1})`` is

    $$
    offset + \\sum_k i_k \\cdot strides_k
    $$

Zero strides describe broadcast (stretched) axes: every index along the axis reads the
same storage cell.
"""

from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ndgrad.array.shape import Shape


class Order(Enum):
    """
    Traversal orders.

    ``C`` walks the last axis fastest, ``F`` the first axis fastest, and ``S`` follows
    storage: the axis with the smallest stride is walked fastest.
    """

    C = "C"
    F = "F"
    S = "S"


class StrideLayout:
    """
    Shape + offset + strides of a view over a flat storage.

    Layouts are immutable; every view operation returns a new layout and never touches
    the storage.
    """

    __slots__ = ("shape", "offset", "strides")

    def __init__(self, shape: Shape, offset: int, strides: Sequence[int]) -> None:
        strides = tuple(int(s) for s in strides)
        if len(strides) != shape.rank:
            raise ValueError(
                f"Strides {strides} do not have the same length as shape {shape.dims}"
            )
        self.shape = shape
        self.offset = int(offset)
        self.strides: Tuple[int, ...] = strides

    @classmethod
    def dense(cls, shape: Shape, offset: int = 0, order: Order = Order.C) -> "StrideLayout":
        """Dense layout of ``shape`` in C (row-major) or F (column-major) order."""
        strides = shape.f_strides() if order is Order.F else shape.c_strides()
        return cls(shape, offset, strides)

    @property
    def rank(self) -> int:
        return self.shape.rank

    @property
    def size(self) -> int:
        return self.shape.size

    def dim(self, axis: int) -> int:
        return self.shape.dim(axis)

    def stride(self, axis: int) -> int:
        return self.strides[self.shape.normalize_axis(axis)]

    def is_c_ordered(self) -> bool:
        for i in range(self.rank - 2, -1, -1):
            if self.strides[i] != self.strides[i + 1] * self.shape[i + 1]:
                return False
        return True

    def is_f_ordered(self) -> bool:
        for i in range(1, self.rank):
            if self.strides[i] != self.strides[i - 1] * self.shape[i - 1]:
                return False
        return True

    def is_contiguous(self) -> bool:
        """
        True when the view covers a dense row-major block of storage, ignoring unit
        dimensions (whose strides never matter).
        """
        expected = 1
        for d, s in zip(reversed(self.shape.dims), reversed(self.strides)):
            if d == 1:
                continue
            if s != expected:
                return False
            expected *= d
        return True

    def has_broadcast_axes(self) -> bool:
        """True when some axis of size > 1 has stride 0, so several indices share a cell."""
        return any(s == 0 and d > 1 for d, s in zip(self.shape.dims, self.strides))

    def pointer(self, *index: int) -> int:
        if len(index) != self.rank:
            raise IndexError(
                f"Index {index} does not match an array of rank {self.rank}"
            )
        pointer = self.offset
        for i, (idx, d, s) in enumerate(zip(index, self.shape.dims, self.strides)):
            if idx < 0:
                idx += d
            if not 0 <= idx < d:
                raise IndexError(f"Index {index[i]} is out of bounds for axis {i} with size {d}")
            pointer += idx * s
        return pointer

    def pointers(self) -> np.ndarray:
        """
        Storage offsets of every element, in C order.

        Returns:
            np.ndarray: 1-D ``int64`` array of length ``size``.
        """
        idx = np.full((), self.offset, dtype=np.int64)
        for d, s in zip(self.shape.dims, self.strides):
            idx = idx[..., None] + np.arange(d, dtype=np.int64) * s
        return idx.reshape(-1)

    def compute_fortran_layout(self, order: Order, compact: bool = False) -> "StrideLayout":
        """
        Reorder the axes so that axis 0 is the one walked fastest in ``order``.

        With ``order=Order.S`` axes are sorted by increasing stride, broadcast axes
        (stride 0) go last. When ``compact`` is set, unit dimensions are dropped and
        consecutive axes that are dense with respect to each other are merged into one.

        Args:
            order (Order): Traversal order to represent.
            compact (bool, optional): Merge dense neighbouring axes. Defaults to False.

        Returns:
            StrideLayout: A layout over the same elements, in a different axis order.
        """
        dims = list(self.shape.dims)
        strides = list(self.strides)
        if order is Order.C:
            dims.reverse()
            strides.reverse()
        elif order is Order.S:
            perm = sorted(
                range(self.rank),
                key=lambda i: (strides[i] == 0, strides[i], dims[i]),
            )
            dims = [dims[i] for i in perm]
            strides = [strides[i] for i in perm]
        if compact:
            dims, strides = _compact(dims, strides)
        return StrideLayout(Shape(dims), self.offset, strides)

    # view transforms

    def permute(self, axes: Sequence[int]) -> "StrideLayout":
        axes = [self.shape.normalize_axis(a) for a in axes]
        if sorted(axes) != list(range(self.rank)):
            raise ValueError(f"Axes {tuple(axes)} are not a permutation of rank {self.rank}")
        return StrideLayout(
            Shape(self.shape[a] for a in axes),
            self.offset,
            [self.strides[a] for a in axes],
        )

    def narrow(self, axis: int, start: int, end: int) -> "StrideLayout":
        axis = self.shape.normalize_axis(axis)
        d = self.shape[axis]
        if not 0 <= start <= end <= d:
            raise IndexError(f"Invalid range [{start}, {end}) for axis {axis} with size {d}")
        dims = list(self.shape.dims)
        dims[axis] = end - start
        return StrideLayout(Shape(dims), self.offset + start * self.strides[axis], self.strides)

    def sel(self, axis: int, index: int) -> "StrideLayout":
        """Fix ``axis`` at ``index``, removing the axis."""
        axis = self.shape.normalize_axis(axis)
        d = self.shape[axis]
        if index < 0:
            index += d
        if not 0 <= index < d:
            raise IndexError(f"Index {index} is out of bounds for axis {axis} with size {d}")
        strides = self.strides[:axis] + self.strides[axis + 1 :]
        return StrideLayout(
            self.shape.without(axis), self.offset + index * self.strides[axis], strides
        )

    def stretch(self, axis: int) -> "StrideLayout":
        """Insert a unit dimension before ``axis``."""
        shape = self.shape.insert(axis, 1)
        axis = axis + self.rank + 1 if axis < 0 else axis
        strides = self.strides[:axis] + (0,) + self.strides[axis:]
        return StrideLayout(shape, self.offset, strides)

    def expand(self, axis: int, size: int) -> "StrideLayout":
        """
        Repeat a unit dimension ``size`` times without copying (stride 0).

        Raises:
            ValueError: If the axis does not have size 1.
        """
        axis = self.shape.normalize_axis(axis)
        if self.shape[axis] != 1:
            raise ValueError(
                f"Only unit dimensions can be expanded, axis {axis} has size {self.shape[axis]}"
            )
        dims = list(self.shape.dims)
        dims[axis] = size
        strides = list(self.strides)
        strides[axis] = 0
        return StrideLayout(Shape(dims), self.offset, strides)

    def squeeze(self, axis: Optional[int] = None) -> "StrideLayout":
        if axis is None:
            keep = [i for i, d in enumerate(self.shape.dims) if d != 1]
        else:
            axis = self.shape.normalize_axis(axis)
            if self.shape[axis] != 1:
                return self
            keep = [i for i in range(self.rank) if i != axis]
        return StrideLayout(
            Shape(self.shape[i] for i in keep), self.offset, [self.strides[i] for i in keep]
        )

    def reshape(self, shape: Shape) -> Optional["StrideLayout"]:
        """
        Layout of the same elements under a new shape, or None when it cannot be
        expressed without copying (only contiguous views can be reshaped).
        """
        if shape.size != self.size:
            raise ValueError(f"Cannot reshape {self.shape.dims} into {shape.dims}")
        if not self.is_contiguous():
            return None
        return StrideLayout.dense(shape, self.offset)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StrideLayout):
            return NotImplemented
        return (
            self.shape == other.shape
            and self.offset == other.offset
            and self.strides == other.strides
        )

    def __hash__(self) -> int:
        return hash((self.shape, self.offset, self.strides))

    def __repr__(self) -> str:
        return f"StrideLayout(shape={self.shape.dims}, offset={self.offset}, strides={self.strides})"


def _compact(dims: List[int], strides: List[int]) -> Tuple[List[int], List[int]]:
    pairs = [(d, s) for d, s in zip(dims, strides) if d != 1]
    if not pairs:
        return [], []
    out_dims = [pairs[0][0]]
    out_strides = [pairs[0][1]]
    for d, s in pairs[1:]:
        if out_dims[-1] * out_strides[-1] == s and s != 0:
            out_dims[-1] *= d
            continue
        out_dims.append(d)
        out_strides.append(s)
    return out_dims, out_strides


def resolve_shape(shape: Sequence[int], size: int) -> Shape:
    """
    Replace a single ``-1`` entry of ``shape`` by the size it must have to hold
    ``size`` elements.

    Raises:
        ValueError: If more than one ``-1`` is given or the sizes do not match.
    """
    dims = list(shape)
    unknown = [i for i, d in enumerate(dims) if d == -1]
    if len(unknown) > 1:
        raise ValueError("Only one dimension can be inferred")
    if unknown:
        known = 1
        for d in dims:
            if d != -1:
                known *= d
        if known == 0 or size % known != 0:
            raise ValueError(f"Cannot reshape array of size {size} into {tuple(shape)}")
        dims[unknown[0]] = size // known
    result = Shape(dims)
    if result.size != size:
        raise ValueError(f"Cannot reshape array of size {size} into {tuple(shape)}")
    return result


__all__ = ["Order", "StrideLayout", "resolve_shape"]
