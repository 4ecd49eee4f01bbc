"""
Process-wide defaults of the engine.

The defaults can be overridden from the environment (``NDGRAD_DTYPE``, ``NDGRAD_STORAGE``)
or by installing another ``EngineConfig`` with :func:`set_config`.
"""

import logging
import os
from dataclasses import dataclass, replace
from typing import Any, Optional

from ndgrad.array.dtype import DType
from ndgrad.array.storage import STORAGE_KINDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineConfig:
    # dtype of arrays built from Python data when no dtype is given
    default_dtype: DType = DType.DOUBLE
    # "array" (NumPy backed, vectorized loops) or "list" (generic loops)
    default_storage: str = "array"
    # added to the variance before the square root in Std1d
    std_epsilon: float = 1e-3
    # added to the input of Log; a negative value disables it
    log_epsilon: float = -1.0

    def __post_init__(self) -> None:
        if self.default_storage not in STORAGE_KINDS:
            raise ValueError(
                f"Unknown storage kind '{self.default_storage}', expected one of {STORAGE_KINDS}"
            )
        if not isinstance(self.default_dtype, DType):
            raise TypeError(f"default_dtype must be a DType, got {self.default_dtype!r}")

    @classmethod
    def from_env(cls, **overrides: Any) -> "EngineConfig":
        """
        Build a config from ``NDGRAD_DTYPE`` (``byte``, ``int``, ``float``, ``double``)
        and ``NDGRAD_STORAGE`` (``array``, ``list``); keyword arguments win over both.
        """
        values = {}
        dtype = os.getenv("NDGRAD_DTYPE")
        if dtype:
            labels = {d.label: d for d in DType}
            if dtype.lower() not in labels:
                raise ValueError(
                    f"NDGRAD_DTYPE={dtype} is not one of {sorted(labels)}"
                )
            values["default_dtype"] = labels[dtype.lower()]
        storage = os.getenv("NDGRAD_STORAGE")
        if storage:
            values["default_storage"] = storage.lower()
        values.update(overrides)
        return cls(**values)


_config: Optional[EngineConfig] = None


def get_config() -> EngineConfig:
    global _config
    if _config is None:
        _config = EngineConfig.from_env()
    return _config


def set_config(config: Optional[EngineConfig] = None, **changes: Any) -> EngineConfig:
    """
    Install ``config`` (or the current config with ``changes`` applied) as the
    process-wide config and return the previous one.
    """
    global _config
    previous = get_config()
    _config = replace(config or previous, **changes)
    logger.debug(f"Engine config set to {_config}")
    return previous
