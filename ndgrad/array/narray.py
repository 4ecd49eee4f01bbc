import logging
from numbers import Integral, Number as _Number
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from ndgrad.array.broadcast import Broadcast
from ndgrad.array.dtype import DType, Number
from ndgrad.array.layout import Order, StrideLayout, resolve_shape
from ndgrad.array.loop import StrideLoopDescriptor
from ndgrad.array.ops import (
    ArrayOp,
    ArrayOps,
    BinaryOp,
    Compare,
    LaneOp,
    ReduceOp,
    UnaryOp,
)
from ndgrad.array.shape import Shape
from ndgrad.array.storage import Storage, allocate, wrap
from ndgrad.errors import AxisError, BroadcastError, UnsupportedOperationError

logger = logging.getLogger(__name__)

Operand = Union["NArray", int, float]


class NArray:
    """
    A strided view over a flat ``Storage``.

    Several arrays may share one storage (transpose, narrow, expand, reshape and
    select all return views); a write through one of them is visible through all.
    Nothing is copied implicitly, use :meth:`copy` to get an independent array.

    Operations come in two forms: ``x.add(y)`` allocates a new array, ``x.add_(y)``
    updates ``x`` in place and returns it.
    """

    __slots__ = ("storage", "layout")

    def __init__(self, storage: Storage, layout: StrideLayout) -> None:
        if layout.size > 0:
            low = layout.offset + sum(
                (d - 1) * s for d, s in zip(layout.shape, layout.strides) if s < 0
            )
            high = layout.offset + sum(
                (d - 1) * s for d, s in zip(layout.shape, layout.strides) if s > 0
            )
            if low < 0 or high >= storage.size():
                raise ValueError(
                    f"{layout} addresses cells outside a storage of size {storage.size()}"
                )
        self.storage = storage
        self.layout = layout

    @classmethod
    def of_flat(
        cls,
        values: Union[np.ndarray, Sequence[Number]],
        shape: Union[Shape, Iterable[int]],
        dtype: DType,
        kind: str,
    ) -> "NArray":
        """Dense row-major array over ``values`` (used as is for array storages)."""
        shape = Shape.of(shape)
        values = np.asarray(values)
        if values.size != shape.size:
            raise ValueError(
                f"Data of size {values.size} does not match shape {shape.dims} of size {shape.size}"
            )
        return cls(wrap(kind, dtype, values), StrideLayout.dense(shape))

    def view(self, layout: StrideLayout) -> "NArray":
        """A new array over the same storage with another layout."""
        return NArray(self.storage, layout)

    ########### Metadata ###########
    @property
    def shape(self) -> Shape:
        return self.layout.shape

    @property
    def rank(self) -> int:
        return self.layout.rank

    @property
    def size(self) -> int:
        return self.layout.size

    @property
    def dtype(self) -> DType:
        return self.storage.dtype

    @property
    def storage_kind(self) -> str:
        return self.storage.kind

    def dim(self, axis: int) -> int:
        return self.layout.dim(axis)

    def is_contiguous(self) -> bool:
        return self.layout.is_contiguous()

    def is_scalar(self) -> bool:
        return self.rank == 0

    ########### Element access ###########
    def get(self, *index: int) -> Number:
        return self.storage.get(self.layout.pointer(*index))

    def set(self, value: Number, *index: int) -> None:
        self.storage.set(self.layout.pointer(*index), value)

    def inc(self, value: Number, *index: int) -> None:
        self.storage.inc(self.layout.pointer(*index), value)

    def item(self) -> Number:
        """The value of a single element array."""
        if self.size != 1:
            raise ValueError(f"Only arrays with one element can be converted, got shape {self.shape.dims}")
        return self.storage.get(self.layout.offset)

    def __getitem__(self, index: Union[int, Tuple[int, ...]]) -> Union["NArray", Number]:
        """
        ``x[i]`` selects a sub-array along axis 0, ``x[i, j, ...]`` with one index per
        axis returns an element.
        """
        if isinstance(index, Integral):
            return self.sel(0, int(index))
        if isinstance(index, tuple) and all(isinstance(i, Integral) for i in index):
            if len(index) == self.rank:
                return self.get(*index)
            out = self
            for i in index:
                out = out.sel(0, int(i))
            return out
        raise TypeError(f"Unsupported index {index!r}, only integers are supported")

    def __len__(self) -> int:
        if self.rank == 0:
            raise TypeError("len() of a scalar array")
        return self.shape[0]

    def to_numpy(self) -> np.ndarray:
        """
        Copy of the logical content as a NumPy array.

        Array storages are read through a strided NumPy view, other storages element
        by element.
        """
        dims = self.shape.dims
        if self.size == 0:
            return np.zeros(dims, dtype=self.dtype.numpy)
        if self.storage.supports_vectorization:
            base = self.storage.array
            itemsize = base.itemsize
            view = np.lib.stride_tricks.as_strided(
                base[self.layout.offset :],
                shape=dims,
                strides=tuple(s * itemsize for s in self.layout.strides),
                writeable=False,
            )
            return view.copy()
        return self.storage.take(self.layout.pointers()).reshape(dims)

    def __array__(self, dtype: Any = None, copy: Any = None) -> np.ndarray:
        out = self.to_numpy()
        return out if dtype is None else out.astype(dtype)

    def to_list(self) -> Union[List[Any], Number]:
        return self.to_numpy().tolist()

    ########### Views ###########
    def transpose(self) -> "NArray":
        """Reverse the order of the axes."""
        return self.permute(*range(self.rank - 1, -1, -1))

    @property
    def T(self) -> "NArray":
        return self.transpose()

    def permute(self, *axes: int) -> "NArray":
        if len(axes) == 1 and not isinstance(axes[0], Integral):
            axes = tuple(axes[0])
        return self.view(self.layout.permute(axes))

    def swap_axes(self, a: int, b: int) -> "NArray":
        axes = list(range(self.rank))
        a, b = self.shape.normalize_axis(a), self.shape.normalize_axis(b)
        axes[a], axes[b] = axes[b], axes[a]
        return self.view(self.layout.permute(axes))

    def sel(self, axis: int, index: int) -> "NArray":
        """View with ``axis`` fixed at ``index`` (the axis is removed)."""
        return self.view(self.layout.sel(axis, index))

    def map_row(self, row: int) -> "NArray":
        return self.sel(0, row)

    def map_col(self, col: int) -> "NArray":
        return self.sel(1, col)

    def narrow(self, axis: int, start: int, end: int) -> "NArray":
        """View of the indices ``[start, end)`` along ``axis``."""
        return self.view(self.layout.narrow(axis, start, end))

    def expand(self, axis: int, size: int) -> "NArray":
        """Repeat the unit axis ``axis`` ``size`` times (stride 0, no copy)."""
        return self.view(self.layout.expand(axis, size))

    def stretch(self, axis: int) -> "NArray":
        """Insert a unit axis before ``axis``."""
        return self.view(self.layout.stretch(axis))

    def squeeze(self, axis: Optional[int] = None) -> "NArray":
        return self.view(self.layout.squeeze(axis))

    def broadcast_to(self, *shape: int) -> "NArray":
        """
        Raises:
            BroadcastError: If this array can not be broadcast to ``shape``.
        """
        shape = Shape(*shape)
        ew = Broadcast.element_wise(self.shape, shape).check()
        if ew.shape != shape:
            raise BroadcastError((self.shape, shape), "target is not the broadcast shape")
        return ew.transform(self)

    def reshape(self, *shape: int) -> "NArray":
        """
        View of the same elements with another shape. One dimension may be ``-1``.

        Raises:
            ValueError: If the sizes differ or this view is not contiguous, in which
                case ``copy().reshape(...)`` does the job.
        """
        if len(shape) == 1 and not isinstance(shape[0], Integral):
            shape = tuple(shape[0])
        new_shape = resolve_shape(shape, self.size)
        layout = self.layout.reshape(new_shape)
        if layout is None:
            raise ValueError(
                f"Cannot reshape a non contiguous view {self.layout} without copying"
            )
        return self.view(layout)

    def flatten(self) -> "NArray":
        """Rank 1 array of the elements in row-major order; a view when possible."""
        if self.is_contiguous():
            return self.reshape(self.size)
        return self.copy().reshape(self.size)

    def copy(self, dtype: Optional[DType] = None, storage: Optional[str] = None) -> "NArray":
        """
        Dense row-major copy.

        Args:
            dtype (Optional[DType], optional): Target dtype, defaults to this array's.
            storage (Optional[str], optional): Target storage kind, defaults to this
                array's.

        Returns:
            NArray: A new array that shares nothing with this one.
        """
        out = NArray(
            allocate(storage or self.storage.kind, dtype or self.dtype, self.size),
            StrideLayout.dense(self.shape),
        )
        if self.size > 0:
            ArrayOps.ASSIGN.apply(
                out.storage, out._loop(Order.C), self.storage, self._loop(Order.C)
            )
        return out

    def astype(self, dtype: DType) -> "NArray":
        return self.copy(dtype=dtype)

    ########### Loops ###########
    def _loop(self, order: Order = Order.S) -> StrideLoopDescriptor:
        return StrideLoopDescriptor.of(self.layout, order)

    def _lanes(self, axis: int) -> StrideLoopDescriptor:
        """Loop with one segment per 1-d lane along ``axis``, in row-major lane order."""
        axis = self.shape.normalize_axis(axis)
        starts = StrideLayout(
            self.shape.without(axis),
            self.layout.offset,
            self.layout.strides[:axis] + self.layout.strides[axis + 1 :],
        )
        return StrideLoopDescriptor(
            starts.pointers(), self.layout.strides[axis], self.shape[axis]
        )

    def _check_writable(self, op: ArrayOp) -> None:
        if self.layout.has_broadcast_axes():
            raise UnsupportedOperationError(
                f"In-place operator '{op.name}' on a broadcast view {self.layout}: "
                "several elements share one storage cell, copy() the array first"
            )

    ########### Unary ops ###########
    def _unary_(self, op: UnaryOp) -> "NArray":
        op.check_dtype(self.dtype)
        self._check_writable(op)
        if self.size > 0:
            op.apply(self.storage, self._loop(Order.S))
        return self

    def _unary(self, op: UnaryOp) -> "NArray":
        op.check_dtype(self.dtype)
        return self.copy()._unary_(op)

    def abs(self) -> "NArray":
        return self._unary(ArrayOps.ABS)

    def abs_(self) -> "NArray":
        return self._unary_(ArrayOps.ABS)

    def neg(self) -> "NArray":
        return self._unary(ArrayOps.NEG)

    def neg_(self) -> "NArray":
        return self._unary_(ArrayOps.NEG)

    def sqr(self) -> "NArray":
        return self._unary(ArrayOps.SQR)

    def sqr_(self) -> "NArray":
        return self._unary_(ArrayOps.SQR)

    def sqrt(self) -> "NArray":
        return self._unary(ArrayOps.SQRT)

    def sqrt_(self) -> "NArray":
        return self._unary_(ArrayOps.SQRT)

    def exp(self) -> "NArray":
        return self._unary(ArrayOps.EXP)

    def exp_(self) -> "NArray":
        return self._unary_(ArrayOps.EXP)

    def log(self) -> "NArray":
        return self._unary(ArrayOps.LOG)

    def log_(self) -> "NArray":
        return self._unary_(ArrayOps.LOG)

    def tanh(self) -> "NArray":
        return self._unary(ArrayOps.TANH)

    def tanh_(self) -> "NArray":
        return self._unary_(ArrayOps.TANH)

    def sigmoid(self) -> "NArray":
        return self._unary(ArrayOps.SIGMOID)

    def sigmoid_(self) -> "NArray":
        return self._unary_(ArrayOps.SIGMOID)

    def clamp(self, min: Optional[Number] = None, max: Optional[Number] = None) -> "NArray":
        return self._unary(ArrayOps.clamp(min, max))

    def clamp_(self, min: Optional[Number] = None, max: Optional[Number] = None) -> "NArray":
        return self._unary_(ArrayOps.clamp(min, max))

    def compare_mask(self, cmp: Compare, value: Number) -> "NArray":
        """Array of 1 where ``self cmp value`` holds and 0 elsewhere."""
        return self._unary(ArrayOps.compare_mask(cmp, value))

    def compare_mask_(self, cmp: Compare, value: Number) -> "NArray":
        return self._unary_(ArrayOps.compare_mask(cmp, value))

    def fill_(self, value: Number) -> "NArray":
        return self._unary_(ArrayOps.fill(value))

    ########### Binary ops ###########
    def _operand(self, other: Operand) -> "NArray":
        if isinstance(other, NArray):
            return other
        if isinstance(other, _Number):
            if isinstance(other, Integral) or self.dtype.floating:
                dtype = self.dtype
            else:
                dtype = DType.DOUBLE
            return NArray.of_flat([other], (), dtype, self.storage.kind)
        raise TypeError(f"Unsupported operand type {type(other).__name__}")

    def _binary_(self, op: BinaryOp, other: Operand) -> "NArray":
        other = self._operand(other)
        ew = Broadcast.element_wise(self.shape, other.shape).check()
        if ew.shape != self.shape:
            raise BroadcastError(
                (self.shape, other.shape),
                "the result of an in-place operator must keep the shape of the target",
            )
        self._check_writable(op)
        if self.size > 0:
            other = ew.transform(other)
            op.apply(self.storage, self._loop(Order.C), other.storage, other._loop(Order.C))
        return self

    def _binary(self, op: BinaryOp, other: Operand) -> "NArray":
        other = self._operand(other)
        ew = Broadcast.element_wise(self.shape, other.shape).check()
        dtype = DType.promote(self.dtype, other.dtype)
        op.check_dtype(dtype)
        out = ew.transform(self).copy(dtype=dtype)
        return out._binary_(op, ew.transform(other))

    def add(self, other: Operand) -> "NArray":
        return self._binary(ArrayOps.ADD, other)

    def add_(self, other: Operand) -> "NArray":
        return self._binary_(ArrayOps.ADD, other)

    def sub(self, other: Operand) -> "NArray":
        return self._binary(ArrayOps.SUB, other)

    def sub_(self, other: Operand) -> "NArray":
        return self._binary_(ArrayOps.SUB, other)

    def mul(self, other: Operand) -> "NArray":
        return self._binary(ArrayOps.MUL, other)

    def mul_(self, other: Operand) -> "NArray":
        return self._binary_(ArrayOps.MUL, other)

    def div(self, other: Operand) -> "NArray":
        return self._binary(ArrayOps.DIV, other)

    def div_(self, other: Operand) -> "NArray":
        return self._binary_(ArrayOps.DIV, other)

    def minimum(self, other: Operand) -> "NArray":
        return self._binary(ArrayOps.MINIMUM, other)

    def minimum_(self, other: Operand) -> "NArray":
        return self._binary_(ArrayOps.MINIMUM, other)

    def maximum(self, other: Operand) -> "NArray":
        return self._binary(ArrayOps.MAXIMUM, other)

    def maximum_(self, other: Operand) -> "NArray":
        return self._binary_(ArrayOps.MAXIMUM, other)

    def assign_(self, other: Operand) -> "NArray":
        """Copy (broadcasting) the values of ``other`` into this view."""
        return self._binary_(ArrayOps.ASSIGN, other)

    def __add__(self, other: Operand) -> "NArray":
        return self.add(other)

    def __radd__(self, other: Operand) -> "NArray":
        return self.add(other)

    def __sub__(self, other: Operand) -> "NArray":
        return self.sub(other)

    def __rsub__(self, other: Operand) -> "NArray":
        return self._operand(other).sub(self)

    def __mul__(self, other: Operand) -> "NArray":
        return self.mul(other)

    def __rmul__(self, other: Operand) -> "NArray":
        return self.mul(other)

    def __truediv__(self, other: Operand) -> "NArray":
        return self.div(other)

    def __rtruediv__(self, other: Operand) -> "NArray":
        return self._operand(other).div(self)

    def __neg__(self) -> "NArray":
        return self.neg()

    def __matmul__(self, other: "NArray") -> "NArray":
        return self.dot(other)

    ########### Reductions ###########
    def _reduce(self, op: ReduceOp) -> Number:
        return op.reduce(self.storage, self._loop(Order.S))

    def sum(self) -> Number:
        return self._reduce(ArrayOps.SUM)

    def prod(self) -> Number:
        return self._reduce(ArrayOps.PROD)

    def min(self) -> Number:
        return self._reduce(ArrayOps.MIN)

    def max(self) -> Number:
        return self._reduce(ArrayOps.MAX)

    def mean(self) -> Number:
        return self._reduce(ArrayOps.MEAN)

    def varc(self, ddof: int = 0, mean: Optional[float] = None) -> Number:
        """Variance with ``ddof`` delta degrees of freedom; ``mean`` replaces the computed mean."""
        return self._reduce(ArrayOps.varc(ddof, mean))

    def std(self, ddof: int = 0, mean: Optional[float] = None) -> Number:
        return self.dtype.cast(ArrayOps.SQRT.apply_float(self.varc(ddof, mean)))

    def _reduce1d(self, axis: int, ops: Union[ReduceOp, Sequence[ReduceOp]]) -> "NArray":
        """
        Reduce every lane along ``axis``; ``ops`` may give one operator per lane.
        The result has the shape of this array without ``axis``.
        """
        if self.rank == 0:
            raise AxisError(axis, 0)
        lanes = self._lanes(axis)
        out = NArray(
            allocate(self.storage.kind, self.dtype, len(lanes.offsets)),
            StrideLayout.dense(self.shape.without(axis)),
        )
        for j in range(len(lanes.offsets)):
            op = ops[j] if isinstance(ops, Sequence) else ops
            lane = StrideLoopDescriptor(lanes.offsets[j : j + 1], lanes.step, lanes.bound)
            out.storage.set(j, op.reduce(self.storage, lane))
        return out

    def sum1d(self, axis: int) -> "NArray":
        return self._reduce1d(axis, ArrayOps.SUM)

    def prod1d(self, axis: int) -> "NArray":
        return self._reduce1d(axis, ArrayOps.PROD)

    def min1d(self, axis: int) -> "NArray":
        return self._reduce1d(axis, ArrayOps.MIN)

    def max1d(self, axis: int) -> "NArray":
        return self._reduce1d(axis, ArrayOps.MAX)

    def mean1d(self, axis: int) -> "NArray":
        return self._reduce1d(axis, ArrayOps.MEAN)

    def varc1d(self, axis: int, ddof: int = 0, mean: Optional["NArray"] = None) -> "NArray":
        """
        Variance of every lane along ``axis``.

        Args:
            axis (int): The reduced axis.
            ddof (int, optional): Delta degrees of freedom. Defaults to 0.
            mean (Optional[NArray], optional): Lane means, with the shape of the result.
                Computed when not given.

        Returns:
            NArray: The variances, with ``axis`` removed.
        """
        if mean is None:
            return self._reduce1d(axis, ArrayOps.varc(ddof))
        expected = self.shape.without(axis)
        if mean.shape != expected:
            raise ValueError(f"Mean of shape {mean.shape.dims} does not match {expected.dims}")
        means = mean.to_numpy().reshape(-1).tolist()
        return self._reduce1d(axis, [ArrayOps.varc(ddof, m) for m in means])

    def std1d(self, axis: int, ddof: int = 0, mean: Optional["NArray"] = None) -> "NArray":
        return self.varc1d(axis, ddof, mean).sqrt_()

    def argmax1d(self, axis: int) -> "NArray":
        """Index of the largest value of every lane along ``axis`` (first one on ties)."""
        if self.rank == 0:
            raise AxisError(axis, 0)
        lanes = self._lanes(axis)
        if lanes.bound == 0:
            raise ValueError("Zero-size lanes have no maximum")
        result = []
        for p in lanes.offsets:
            offsets = int(p) + np.arange(lanes.bound, dtype=np.int64) * lanes.step
            result.append(int(np.argmax(self.storage.take(offsets))))
        return NArray.of_flat(result, self.shape.without(axis), DType.INT, self.storage.kind)

    ########### Lane ops ###########
    def _lane_(self, op: LaneOp, axis: int) -> "NArray":
        op.check_dtype(self.dtype)
        self._check_writable(op)
        if self.size > 0:
            op.apply(self.storage, self._lanes(axis))
        return self

    def softmax(self, axis: int) -> "NArray":
        ArrayOps.SOFTMAX.check_dtype(self.dtype)
        return self.copy()._lane_(ArrayOps.SOFTMAX, axis)

    def softmax_(self, axis: int) -> "NArray":
        return self._lane_(ArrayOps.SOFTMAX, axis)

    def log_softmax(self, axis: int) -> "NArray":
        ArrayOps.LOG_SOFTMAX.check_dtype(self.dtype)
        return self.copy()._lane_(ArrayOps.LOG_SOFTMAX, axis)

    def log_softmax_(self, axis: int) -> "NArray":
        return self._lane_(ArrayOps.LOG_SOFTMAX, axis)

    ########### Products ###########
    def vdot(self, other: "NArray") -> Number:
        """Inner product of two vectors of the same length."""
        if self.rank != 1 or other.rank != 1 or self.size != other.size:
            raise ValueError(
                f"vdot needs two vectors of the same length, got {self.shape.dims} and {other.shape.dims}"
            )
        return self.mul(other).sum()

    def _vectorized_with(self, other: "NArray") -> bool:
        return self.storage.supports_vectorization and other.storage.supports_vectorization

    def mv(self, other: "NArray") -> "NArray":
        """Matrix ``(n, k)`` times vector ``(k,)``, gives ``(n,)``."""
        if self.rank != 2 or other.rank != 1 or self.dim(1) != other.dim(0):
            raise ValueError(
                f"mv needs shapes (n, k) and (k,), got {self.shape.dims} and {other.shape.dims}"
            )
        dtype = DType.promote(self.dtype, other.dtype)
        if self._vectorized_with(other):
            result = np.matmul(self.to_numpy(), other.to_numpy()).astype(dtype.numpy)
            return NArray.of_flat(result.reshape(-1), (self.dim(0),), dtype, self.storage.kind)
        values = [self.map_row(i).vdot(other) for i in range(self.dim(0))]
        return NArray.of_flat(values, (self.dim(0),), dtype, self.storage.kind)

    def mm(self, other: "NArray") -> "NArray":
        """Matrix ``(n, k)`` times matrix ``(k, m)``, gives ``(n, m)``."""
        if self.rank != 2 or other.rank != 2 or self.dim(1) != other.dim(0):
            raise ValueError(
                f"mm needs shapes (n, k) and (k, m), got {self.shape.dims} and {other.shape.dims}"
            )
        dtype = DType.promote(self.dtype, other.dtype)
        shape = (self.dim(0), other.dim(1))
        if self._vectorized_with(other):
            result = np.matmul(self.to_numpy(), other.to_numpy()).astype(dtype.numpy)
            return NArray.of_flat(result.reshape(-1), shape, dtype, self.storage.kind)
        logger.debug(f"mm {self.shape.dims} x {other.shape.dims} on the generic loop")
        values = [
            self.map_row(i).vdot(other.map_col(j))
            for i in range(shape[0])
            for j in range(shape[1])
        ]
        return NArray.of_flat(values, shape, dtype, self.storage.kind)

    def outer(self, other: "NArray") -> "NArray":
        """Outer product of two vectors, gives ``(n, m)``."""
        if self.rank != 1 or other.rank != 1:
            raise ValueError(
                f"outer needs two vectors, got {self.shape.dims} and {other.shape.dims}"
            )
        return self.stretch(1).mul(other.stretch(0))

    def dot(self, other: "NArray") -> "NArray":
        """
        Matrix product dispatched by rank: vector-vector gives a scalar array,
        matrix-vector and matrix-matrix use ``mv`` / ``mm``, vector-matrix is
        ``other.T.mv(self)``.
        """
        if self.rank == 1 and other.rank == 1:
            dtype = DType.promote(self.dtype, other.dtype)
            return NArray.of_flat([self.vdot(other)], (), dtype, self.storage.kind)
        if self.rank == 2 and other.rank == 1:
            return self.mv(other)
        if self.rank == 1 and other.rank == 2:
            return other.transpose().mv(self)
        if self.rank == 2 and other.rank == 2:
            return self.mm(other)
        raise ValueError(
            f"dot is defined for ranks 1 and 2, got {self.shape.dims} and {other.shape.dims}"
        )

    ########### Indexing ###########
    def _gather_pointers(self, axis: int, index: "NArray") -> np.ndarray:
        """Storage offsets of ``self`` picked by ``index`` along ``axis``, in C order of ``index``."""
        if index.dtype.floating:
            raise TypeError(f"Index array must have an integer dtype, got {index.dtype.label}")
        if index.rank != self.rank:
            raise ValueError(
                f"Index of shape {index.shape.dims} must have the rank of shape {self.shape.dims}"
            )
        axis = self.shape.normalize_axis(axis)
        for d in range(self.rank):
            if d != axis and index.dim(d) > self.dim(d):
                raise ValueError(
                    f"Index of shape {index.shape.dims} does not fit shape {self.shape.dims} "
                    f"outside axis {axis}"
                )
        positions = index.to_numpy().astype(np.int64)
        if positions.size and (positions.min() < 0 or positions.max() >= self.dim(axis)):
            raise IndexError(f"Index out of range [0, {self.dim(axis)}) along axis {axis}")
        coords = np.indices(index.shape.dims, dtype=np.int64)
        coords[axis] = positions
        strides = np.asarray(self.layout.strides, dtype=np.int64)
        return (self.layout.offset + np.tensordot(strides, coords, axes=1)).reshape(-1)

    def gather(self, axis: int, index: "NArray") -> "NArray":
        """
        Pick values along ``axis``: ``out[..., i, ...] = self[..., index[..., i, ...], ...]``.

        Args:
            axis (int): The axis indexed by the values of ``index``.
            index (NArray): Integer array with the rank of this one. Outside ``axis`` its
                dimensions may not exceed the ones of this array.

        Returns:
            NArray: A new array with the shape of ``index``.

        Raises:
            TypeError: If ``index`` is not integral.
            ValueError: If the shapes do not fit.
            IndexError: If an index is out of range.
        """
        pointers = self._gather_pointers(axis, index)
        return NArray.of_flat(
            self.storage.take(pointers), index.shape, self.dtype, self.storage.kind
        )

    def scatter_add_(self, axis: int, index: "NArray", src: "NArray") -> "NArray":
        """
        Inverse of :meth:`gather`: add every value of ``src`` into the cell ``index`` picks.
        Repeated indices accumulate.
        """
        if src.shape != index.shape:
            raise ValueError(
                f"Source of shape {src.shape.dims} does not match index of shape {index.shape.dims}"
            )
        if self.layout.has_broadcast_axes():
            raise UnsupportedOperationError(
                f"In-place scatter on a broadcast view {self.layout}, copy() the array first"
            )
        values = src.to_numpy().reshape(-1).tolist()
        for p, v in zip(self._gather_pointers(axis, index).tolist(), values):
            self.storage.inc(p, v)
        return self

    ########### Misc ###########
    def deep_equals(self, other: "NArray", tol: float = 0.0) -> bool:
        """True when both arrays have the same shape and values (within ``tol``); NaN equals NaN."""
        if self.shape != other.shape:
            return False
        a, b = self.to_numpy(), other.to_numpy()
        if tol > 0:
            return bool(np.allclose(a, b, rtol=0.0, atol=tol, equal_nan=True))
        return bool(np.array_equal(a.astype(np.float64), b.astype(np.float64), equal_nan=True))

    def __repr__(self) -> str:
        body = np.array2string(self.to_numpy(), separator=", ")
        return (
            f"NArray(dtype={self.dtype.label}, shape={self.shape.dims}, "
            f"storage={self.storage.kind},\n{body})"
        )
