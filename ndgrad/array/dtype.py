from enum import Enum
from typing import Union

import numpy as np

Number = Union[int, float]


class DType(Enum):
    """
    Numeric kinds an array can hold.

    ``BYTE`` and ``INT`` are integer-like kinds, ``FLOAT`` and ``DOUBLE`` are
    floating kinds. Each kind maps to the NumPy scalar type used by the specialized
    storage backing.
    """

    BYTE = ("byte", np.int8, False)
    INT = ("int", np.int32, False)
    FLOAT = ("float", np.float32, True)
    DOUBLE = ("double", np.float64, True)

    def __init__(self, label: str, scalar_type: type, floating: bool) -> None:
        self.label = label
        self.scalar_type = scalar_type
        self.floating = floating

    @property
    def numpy(self) -> np.dtype:
        return np.dtype(self.scalar_type)

    @property
    def is_integer(self) -> bool:
        return not self.floating

    @property
    def is_float(self) -> bool:
        return self.floating

    def cast(self, value: Number) -> Number:
        """
        Convert a Python number to the value this kind would store.

        Integer kinds truncate toward zero and wrap around their bit width (like a
        NumPy assignment of an in-range value followed by fixed-width arithmetic),
        ``FLOAT`` rounds to single precision.

        Args:
            value (Number): The value to convert.

        Returns:
            Number: A Python ``int`` or ``float``.
        """
        if self.floating:
            if self is DType.FLOAT:
                return float(np.float32(value))
            return float(value)
        bits = self.numpy.itemsize * 8
        half = 1 << (bits - 1)
        return (int(value) + half) % (1 << bits) - half

    @classmethod
    def from_numpy(cls, dtype: np.dtype) -> "DType":
        """
        Pick the kind matching a NumPy dtype. Booleans and unsigned/other integers map to
        ``INT``, other floats map to ``DOUBLE``.
        """
        dtype = np.dtype(dtype)
        for member in cls:
            if member.numpy == dtype:
                return member
        if dtype.kind in "biu":
            return cls.INT
        if dtype.kind == "f":
            return cls.DOUBLE
        raise TypeError(f"Unsupported numpy dtype: {dtype}")

    @staticmethod
    def promote(a: "DType", b: "DType") -> "DType":
        """Return the wider of two kinds (``BYTE < INT < FLOAT < DOUBLE``)."""
        order = list(DType)
        return a if order.index(a) >= order.index(b) else b
