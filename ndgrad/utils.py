import logging
from typing import Callable, List, Sequence

import numpy as np

from ndgrad.array.narray import NArray
from ndgrad.tensor import Tensor

logger = logging.getLogger(__name__)


def numerical_gradient(
    fn: Callable[..., Tensor],
    inputs: Sequence[Tensor],
    index: int,
    eps: float = 1e-6,
) -> NArray:
    """
    Central difference estimate of d(sum(fn(*inputs)))/d(inputs[index]).

    The value of ``inputs[index]`` is perturbed in place and restored afterwards.
    """
    value = inputs[index].value
    grad = np.zeros(value.shape.dims)
    for idx in np.ndindex(*value.shape.dims):
        original = value.get(*idx)
        value.set(original + eps, *idx)
        plus = fn(*inputs).value.sum()
        value.set(original - eps, *idx)
        minus = fn(*inputs).value.sum()
        value.set(original, *idx)
        grad[idx] = (plus - minus) / (2 * eps)
    return NArray.of_flat(grad.reshape(-1), value.shape, value.dtype, value.storage_kind)


def gradient_errors(
    fn: Callable[..., Tensor],
    inputs: Sequence[Tensor],
    eps: float = 1e-6,
) -> List[float]:
    """
    Largest absolute difference between the analytic and the numerical gradient of every
    input that requires a gradient (NaN for the others).
    """
    for t in inputs:
        t.zero_grad()
    fn(*inputs).backward()
    errors = []
    for i, t in enumerate(inputs):
        if not t.requires_grad or t.grad is None:
            errors.append(float("nan"))
            continue
        expected = numerical_gradient(fn, inputs, i, eps).to_numpy()
        errors.append(float(np.max(np.abs(t.grad.to_numpy() - expected), initial=0.0)))
        logger.debug(f"Input {i}: max gradient error {errors[-1]:.3e}")
    return errors
