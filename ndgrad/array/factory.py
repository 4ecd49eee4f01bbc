"""
Constructors of ``NArray`` values.

Every constructor takes an optional ``dtype`` and ``storage`` kind; missing values
come from :func:`ndgrad.config.get_config`.
"""

from typing import Iterable, Optional, Sequence, Tuple, Union

import numpy as np

from ndgrad.array.dtype import DType, Number
from ndgrad.array.narray import NArray
from ndgrad.array.shape import Shape
from ndgrad.config import get_config

ShapeLike = Union[Shape, int, Iterable[int]]


def _defaults(dtype: Optional[DType], storage: Optional[str]) -> Tuple[DType, str]:
    config = get_config()
    return dtype or config.default_dtype, storage or config.default_storage


def of(
    data: Union[Number, Sequence, np.ndarray, NArray],
    shape: Optional[ShapeLike] = None,
    dtype: Optional[DType] = None,
    storage: Optional[str] = None,
) -> NArray:
    """
    Build a dense array from (nested) Python data, a NumPy array or another ``NArray``.

    The data is always copied.

    Args:
        data: The values, in row-major order when ``shape`` is given.
        shape (Optional[ShapeLike], optional): Target shape; defaults to the shape of
            ``data``.
        dtype (Optional[DType], optional): Defaults to the dtype of a NumPy input and to
            the configured default dtype otherwise.
        storage (Optional[str], optional): Storage kind.

    Returns:
        NArray: The new array.

    Raises:
        ValueError: If the number of values does not match ``shape``.

    Examples:
        >>> of([[1, 2], [3, 4]]).shape
        Shape(2, 2)
        >>> of(range(6), shape=(2, 3)).get(1, 0)
        3.0
    """
    if isinstance(data, NArray):
        data = data.to_numpy()
    if isinstance(data, range):
        data = list(data)
    if dtype is None and isinstance(data, np.ndarray):
        dtype = DType.from_numpy(data.dtype)
    dtype, storage = _defaults(dtype, storage)
    values = np.array(data, dtype=dtype.numpy, copy=True)
    shape = Shape.of(values.shape if shape is None else shape)
    return NArray.of_flat(values.reshape(-1), shape, dtype, storage)


def from_numpy(array: np.ndarray, storage: Optional[str] = None) -> NArray:
    """Copy a NumPy array, keeping its dtype (see :meth:`DType.from_numpy`)."""
    return of(np.asarray(array), storage=storage)


def full(
    shape: ShapeLike,
    value: Number,
    dtype: Optional[DType] = None,
    storage: Optional[str] = None,
) -> NArray:
    dtype, storage = _defaults(dtype, storage)
    shape = Shape.of(shape)
    return NArray.of_flat(np.full(shape.size, value, dtype=dtype.numpy), shape, dtype, storage)


def zeros(shape: ShapeLike, dtype: Optional[DType] = None, storage: Optional[str] = None) -> NArray:
    return full(shape, 0, dtype, storage)


def ones(shape: ShapeLike, dtype: Optional[DType] = None, storage: Optional[str] = None) -> NArray:
    return full(shape, 1, dtype, storage)


def scalar(value: Number, dtype: Optional[DType] = None, storage: Optional[str] = None) -> NArray:
    """Rank 0 array holding ``value``."""
    return full((), value, dtype, storage)


def seq(shape: ShapeLike, dtype: Optional[DType] = None, storage: Optional[str] = None) -> NArray:
    """Array filled with ``0, 1, 2, ...`` in row-major order."""
    dtype, storage = _defaults(dtype, storage)
    shape = Shape.of(shape)
    return NArray.of_flat(np.arange(shape.size, dtype=dtype.numpy), shape, dtype, storage)


def random(
    shape: ShapeLike,
    rng: Optional[np.random.Generator] = None,
    dtype: Optional[DType] = None,
    storage: Optional[str] = None,
) -> NArray:
    """
    Array of random values: uniform in ``[0, 1)`` for floating dtypes, uniform over the
    whole range of the kind for integer dtypes.

    Args:
        shape (ShapeLike): Shape of the array.
        rng (Optional[np.random.Generator], optional): Source of randomness, a fresh
            unseeded generator when not given.
        dtype (Optional[DType], optional): Numeric kind.
        storage (Optional[str], optional): Storage kind.
    """
    dtype, storage = _defaults(dtype, storage)
    shape = Shape.of(shape)
    rng = rng if rng is not None else np.random.default_rng()
    if dtype.floating:
        values = rng.random(shape.size).astype(dtype.numpy)
    else:
        info = np.iinfo(dtype.numpy)
        values = rng.integers(info.min, info.max, size=shape.size, endpoint=True, dtype=dtype.numpy)
    return NArray.of_flat(values, shape, dtype, storage)


def full_like(x: NArray, value: Number, dtype: Optional[DType] = None) -> NArray:
    """Dense array with the shape and storage kind of ``x``."""
    return full(x.shape, value, dtype or x.dtype, x.storage_kind)


def zeros_like(x: NArray, dtype: Optional[DType] = None) -> NArray:
    return full_like(x, 0, dtype)


def ones_like(x: NArray, dtype: Optional[DType] = None) -> NArray:
    return full_like(x, 1, dtype)


def stack(arrays: Sequence[NArray], axis: int = 0) -> NArray:
    """
    Join arrays of the same shape along a new axis.

    Raises:
        ValueError: If no array is given or the shapes differ.
    """
    if not arrays:
        raise ValueError("stack needs at least one array")
    first = arrays[0]
    for a in arrays[1:]:
        if a.shape != first.shape:
            raise ValueError(f"Cannot stack shapes {first.shape.dims} and {a.shape.dims}")
    dtype = first.dtype
    for a in arrays[1:]:
        dtype = DType.promote(dtype, a.dtype)
    out = zeros(first.shape.insert(axis, len(arrays)), dtype, first.storage_kind)
    axis = out.shape.normalize_axis(axis)
    for i, a in enumerate(arrays):
        out.sel(axis, i).assign_(a)
    return out
