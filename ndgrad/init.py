"""
Initialization methods for the values of parameter tensors
"""

from typing import Optional, Tuple

import numpy as np

from ndgrad.array.narray import NArray
from ndgrad.array.shape import Shape
from ndgrad.tensor import Tensor


def xavier_uniform(tensor: Tensor, rng: Optional[np.random.Generator] = None) -> Tensor:
    r"""
    Applies in-place Xavier Uniform Initialization to the value of the given tensor.

    This method initializes the weights of a neural network using the Xavier (Glorot)
    uniform initialization technique, as described in this paper:
    https://proceedings.mlr.press/v9/glorot10a/glorot10a.pdf

    Values are drawn from $U(-limit, limit)$ with
    $$
    \text{limit} = \sqrt{\frac{6}{\text{fan\_in} + \text{fan\_out}}}
    $$

    Args:
        tensor (Tensor): The tensor to be initialized, of rank 2 or more.
        rng (Optional[np.random.Generator], optional): Source of randomness.

    Returns:
        Tensor: The same tensor after in-place initialization.

    Examples:
        >>> from ndgrad.array import factory
        >>> w = xavier_uniform(Tensor(factory.zeros((3, 4)), requires_grad=True))
    """
    fan_in, fan_out = compute_fan_in_out(tensor.shape)
    limit = np.sqrt(6.0 / (fan_in + fan_out))
    rng = rng if rng is not None else np.random.default_rng()

    value = tensor.value
    draws = rng.uniform(low=-limit, high=limit, size=value.size)
    value.assign_(NArray.of_flat(draws, value.shape, value.dtype, value.storage_kind))
    return tensor


def compute_fan_in_out(shape: Shape) -> Tuple[int, int]:
    r"""
    Computes the number of input and output units of a weight of the given shape.

    The first axis counts the inputs and the last axis the outputs; the axes in
    between form a receptive field that multiplies both:

    $$
    \begin{align}
    \text{fan\_in} &= \text{shape}[0] \times \prod_{i=1}^{n-2} \text{shape}[i] \\
    \text{fan\_out} &= \text{shape}[n-1] \times \prod_{i=1}^{n-2} \text{shape}[i]
    \end{align}
    $$

    Args:
        shape (Shape): Shape of the weight, of rank 2 or more.

    Returns:
        Tuple[int, int]: ``(fan_in, fan_out)``.

    Raises:
        ValueError: If the shape has fewer than 2 dimensions.

    Examples:
        >>> compute_fan_in_out(Shape(5, 10))
        (5, 10)
        >>> compute_fan_in_out(Shape(4, 3, 2))
        (12, 6)
    """
    if shape.rank < 2:
        raise ValueError("Tensor must have at least 2 dimensions")

    receptive_field_size = 1
    for s in shape.dims[1:-1]:
        receptive_field_size *= s
    return shape[0] * receptive_field_size, shape[-1] * receptive_field_size
