"""
Flat numeric buffers.

A storage is never handed to callers as an array; it is always read and written
through an :class:`ndgrad.array.narray.NArray` view. Operators look at
``supports_vectorization`` to decide if they can run their specialized NumPy loops
on ``storage.array`` or must fall back to the ``get`` / ``set`` contract.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Sequence

import numpy as np

from ndgrad.array.dtype import DType, Number

ARRAY = "array"
LIST = "list"
STORAGE_KINDS = (ARRAY, LIST)


class Storage(ABC):
    """
    Base class for a flat buffer of numbers of one ``DType``.

    Subclasses implement element access by linear offset. The generic operator loops
    only rely on this contract.
    """

    supports_vectorization: bool = False

    def __init__(self, dtype: DType) -> None:
        self.dtype = dtype

    @property
    @abstractmethod
    def kind(self) -> str:
        raise NotImplementedError

    @abstractmethod
    def size(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def get(self, offset: int) -> Number:
        raise NotImplementedError

    @abstractmethod
    def set(self, offset: int, value: Number) -> None:
        raise NotImplementedError

    def inc(self, offset: int, value: Number) -> None:
        self.set(offset, self.get(offset) + value)

    def take(self, offsets: Sequence[int]) -> np.ndarray:
        """
        Gather the values at the given offsets into a new NumPy array.

        Args:
            offsets (Sequence[int]): Linear offsets into this storage.

        Returns:
            np.ndarray: A 1-D array with this storage's NumPy dtype.
        """
        return np.array([self.get(int(p)) for p in offsets], dtype=self.dtype.numpy)

    def __len__(self) -> int:
        return self.size()


class ArrayStorage(Storage):
    """
    Storage backed by a contiguous 1-D NumPy array.

    This is the specialized backing the fast and strided operator loops work on.
    """

    supports_vectorization = True

    def __init__(self, array: np.ndarray) -> None:
        array = np.asarray(array)
        if array.ndim != 1:
            raise ValueError(f"Storage arrays must be 1-D, got shape {array.shape}")
        dtype = DType.from_numpy(array.dtype)
        if array.dtype != dtype.numpy:
            array = array.astype(dtype.numpy)
        super().__init__(dtype)
        self.array = np.ascontiguousarray(array)

    @property
    def kind(self) -> str:
        return ARRAY

    def size(self) -> int:
        return self.array.shape[0]

    def get(self, offset: int) -> Number:
        return self.array[offset].item()

    def set(self, offset: int, value: Number) -> None:
        self.array[offset] = self.dtype.cast(value)

    def take(self, offsets: Sequence[int]) -> np.ndarray:
        return self.array[np.asarray(offsets, dtype=np.int64)]


class ListStorage(Storage):
    """
    Storage backed by a plain Python list.

    It does not support vectorization, so every operator runs its generic loop on it.
    Values are stored as Python numbers already rounded to the storage's ``DType``.
    """

    def __init__(self, values: Iterable[Number], dtype: DType) -> None:
        super().__init__(dtype)
        self.values: List[Number] = [dtype.cast(v) for v in values]

    @property
    def kind(self) -> str:
        return LIST

    def size(self) -> int:
        return len(self.values)

    def get(self, offset: int) -> Number:
        return self.values[offset]

    def set(self, offset: int, value: Number) -> None:
        self.values[offset] = self.dtype.cast(value)


def allocate(kind: str, dtype: DType, size: int) -> Storage:
    """
    Allocate a zero-filled storage.

    Args:
        kind (str): ``"array"`` or ``"list"``.
        dtype (DType): Numeric kind of the storage.
        size (int): Number of elements.

    Returns:
        Storage: The new storage.
    """
    return wrap(kind, dtype, np.zeros(size, dtype=dtype.numpy))


def wrap(kind: str, dtype: DType, values: np.ndarray) -> Storage:
    """
    Build a storage of the given kind over flat values.

    For ``"array"`` storages the values are used without copying when they already are a
    contiguous 1-D array of the right dtype.

    Raises:
        ValueError: If the storage kind is unknown.
    """
    if kind == ARRAY:
        return ArrayStorage(np.asarray(values, dtype=dtype.numpy).reshape(-1))
    if kind == LIST:
        return ListStorage(np.asarray(values).reshape(-1).tolist(), dtype)
    raise ValueError(f"Unknown storage kind '{kind}', expected one of {STORAGE_KINDS}")
