from numbers import Integral
from typing import Iterable, Iterator, Tuple, Union

from ndgrad.errors import AxisError


class Shape:
    """
    Immutable ordered sequence of non-negative dimension sizes.

    ``rank`` is the number of dimensions and ``size`` the number of elements. The
    scalar shape ``Shape()`` has rank 0 and size 1.

    Examples:
        >>> Shape(2, 3).size
        6
        >>> Shape((2, 3)) == (2, 3)
        True
    """

    __slots__ = ("_dims",)

    def __init__(self, *dims: Union[int, Iterable[int]]) -> None:
        if len(dims) == 1 and not isinstance(dims[0], Integral):
            dims = tuple(dims[0])
        values = tuple(int(d) for d in dims)
        for d in values:
            if d < 0:
                raise ValueError(f"Dimension sizes must be non-negative, got {values}")
        self._dims: Tuple[int, ...] = values

    @classmethod
    def of(cls, shape: Union["Shape", int, Iterable[int]]) -> "Shape":
        """Coerce an int, a sequence of ints or a ``Shape`` into a ``Shape``."""
        if isinstance(shape, Shape):
            return shape
        if isinstance(shape, Integral):
            return cls(shape)
        return cls(tuple(shape))

    @property
    def dims(self) -> Tuple[int, ...]:
        return self._dims

    @property
    def rank(self) -> int:
        return len(self._dims)

    @property
    def size(self) -> int:
        size = 1
        for d in self._dims:
            size *= d
        return size

    def dim(self, axis: int) -> int:
        return self._dims[self.normalize_axis(axis)]

    def normalize_axis(self, axis: int) -> int:
        """
        Map a possibly negative axis into ``[0, rank)``.

        Raises:
            AxisError: If the axis is out of range, which includes every axis of a scalar.
        """
        rank = len(self._dims)
        if not -rank <= axis < rank:
            raise AxisError(axis, rank)
        return axis + rank if axis < 0 else axis

    def c_strides(self) -> Tuple[int, ...]:
        """Row-major strides of a dense layout with this shape."""
        strides = [1] * len(self._dims)
        for i in range(len(self._dims) - 2, -1, -1):
            strides[i] = strides[i + 1] * self._dims[i + 1]
        return tuple(strides)

    def f_strides(self) -> Tuple[int, ...]:
        """Column-major strides of a dense layout with this shape."""
        strides = [1] * len(self._dims)
        for i in range(1, len(self._dims)):
            strides[i] = strides[i - 1] * self._dims[i - 1]
        return tuple(strides)

    def unit_dim_count(self) -> int:
        return sum(1 for d in self._dims if d == 1)

    def without(self, axis: int) -> "Shape":
        """Shape with ``axis`` removed."""
        axis = self.normalize_axis(axis)
        return Shape(self._dims[:axis] + self._dims[axis + 1 :])

    def insert(self, axis: int, size: int) -> "Shape":
        """Shape with a new dimension of ``size`` inserted before ``axis`` (``axis`` may equal rank)."""
        rank = len(self._dims)
        if not -rank - 1 <= axis <= rank:
            raise AxisError(axis, rank + 1)
        if axis < 0:
            axis += rank + 1
        return Shape(self._dims[:axis] + (size,) + self._dims[axis:])

    def __len__(self) -> int:
        return len(self._dims)

    def __iter__(self) -> Iterator[int]:
        return iter(self._dims)

    def __getitem__(self, item):
        return self._dims[item]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Shape):
            return self._dims == other._dims
        if isinstance(other, (tuple, list)):
            return self._dims == tuple(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._dims)

    def __repr__(self) -> str:
        return f"Shape{self._dims}"
