import logging
from typing import Optional, Sequence

import numpy as np

from ndgrad.array import factory
from ndgrad.array.narray import NArray
from ndgrad.array.ops import Compare
from ndgrad.config import get_config
from ndgrad.tensor import Function, Tensor

logger = logging.getLogger(__name__)


########### Activation Functions ###############
def tanh(x: Tensor) -> Tensor:
    """
    Applies the hyperbolic tangent (tanh) activation function.

    Args:
        x (Tensor): The input tensor.

    Returns:
        Tensor: The tensor after applying the tanh function.
    """
    return Tanh.apply(x)


def sigmoid(x: Tensor) -> Tensor:
    """
    Applies the sigmoid activation function.

    Args:
        x (Tensor): The input tensor.

    Returns:
        Tensor: The tensor after applying the sigmoid function.
    """
    return Sigmoid.apply(x)


def exp(x: Tensor) -> Tensor:
    return Exp.apply(x)


def log(x: Tensor, eps: Optional[float] = None) -> Tensor:
    """
    Natural logarithm of ``x + eps``.

    Args:
        x (Tensor): The input tensor.
        eps (Optional[float], optional): Added to the input when positive. Defaults to
            the configured ``log_epsilon`` (disabled by default).

    Returns:
        Tensor: The logarithm.
    """
    return Log.apply(x, eps=eps)


def softmax(x: Tensor, axis: int = -1) -> Tensor:
    """
    Applies the softmax function along ``axis``.

    Args:
        x (Tensor): The input tensor containing logits.
        axis (int, optional): The normalized axis. Defaults to the last one.

    Returns:
        Tensor: The tensor with softmax probabilities.
    """
    return Softmax.apply(x, axis=axis)


def log_softmax(x: Tensor, axis: int = -1) -> Tensor:
    """
    Applies the logarithm of the softmax function along ``axis``.

    Args:
        x (Tensor): The input tensor containing logits.
        axis (int, optional): The normalized axis. Defaults to the last one.

    Returns:
        Tensor: The log-probabilities.
    """
    return LogSoftmax.apply(x, axis=axis)


def relu(x: Tensor) -> Tensor:
    """
    Applies the Rectified Linear Unit (ReLU) activation function, ``max(x, 0)``.

    Args:
        x (Tensor): The input tensor.

    Returns:
        Tensor: The tensor after applying the ReLU function.
    """
    return Max.apply(x, threshold=0.0)


def max_threshold(x: Tensor, threshold: float) -> Tensor:
    """Element-wise ``max(x, threshold)``; the gradient flows where ``x > threshold``."""
    return Max.apply(x, threshold=threshold)


def dropout(
    x: Tensor,
    p: float,
    rng: Optional[np.random.Generator] = None,
    inplace: bool = False,
) -> Tensor:
    """
    Zero each element with probability ``p`` and scale the survivors by ``1 / (1 - p)``.

    Args:
        x (Tensor): The input tensor.
        p (float): Drop probability, in ``[0, 1]``.
        rng (Optional[np.random.Generator], optional): Source of the draws.
        inplace (bool, optional): Write the result into the value of ``x``.

    Returns:
        Tensor: The tensor after dropout.
    """
    return Dropout.apply(x, p=p, rng=rng, inplace=inplace)


def compare_true(x: Tensor, cmp: Compare, threshold: float) -> Tensor:
    """Keep the elements where ``x cmp threshold`` holds, zero the others."""
    return CompareTrue.apply(x, cmp=cmp, threshold=threshold)


def compare_false(x: Tensor, cmp: Compare, threshold: float) -> Tensor:
    """Keep the elements where ``x cmp threshold`` does not hold, zero the others."""
    return CompareFalse.apply(x, cmp=cmp, threshold=threshold)


def bvtm(v: Tensor, m: Tensor) -> Tensor:
    """
    Batched vector times matrix, see :class:`BatchVtm`.

    Args:
        v (Tensor): Vectors of shape ``(n,)`` or ``(b, n)``.
        m (Tensor): Matrix of shape ``(n, k)`` or matrices of shape ``(b, n, k)``.

    Returns:
        Tensor: Products of shape ``(k,)`` or ``(b, k)``.
    """
    return BatchVtm.apply(v, m)


########### Normalization ###############
def standardize1d(x: Tensor, axis: int, ddof: int = 0, eps: Optional[float] = None) -> Tensor:
    """
    Center and scale ``x`` along ``axis``: ``(x - mean) / sqrt(var + eps)``.

    Args:
        x (Tensor): The input tensor.
        axis (int): Axis of the statistics.
        ddof (int, optional): Delta degrees of freedom of the variance. Defaults to 0.
        eps (Optional[float], optional): Added to the variance. Defaults to the
            configured ``std_epsilon``.

    Returns:
        Tensor: The standardized tensor, with the shape of ``x``.
    """
    return Standardize1d.apply(x, axis=axis, ddof=ddof, eps=eps)


def standardize_on(
    x: Tensor, shape: Sequence[int], ddof: int = 0, eps: Optional[float] = None
) -> Tensor:
    """Like :func:`standardize1d`, with statistics over the trailing dimensions ``shape``."""
    return StandardizeOn.apply(x, shape=shape, ddof=ddof, eps=eps)


class Tanh(Function):
    r"""
    Hyperbolic tangent.

        $$
        \frac{d}{dx} tanh(x) = 1 - tanh(x)^2
        $$

    The local derivative lies in ``(0, 1]``, so the gradient never grows in magnitude.
    """

    def forward(self, x: NArray) -> NArray:
        self.out = x.tanh()
        return self.out

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        return grad.mul(self.out.sqr().neg_().add_(1))


class Sigmoid(Function):
    r"""
    $$
    \sigma(x) = \frac{1}{1 + e^{-x}}, \quad \sigma'(x) = \sigma(x)(1 - \sigma(x))
    $$
    """

    def forward(self, x: NArray) -> NArray:
        self.out = x.sigmoid()
        return self.out

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        return grad.mul(self.out).mul_(self.out.neg().add_(1))


class Exp(Function):
    def forward(self, x: NArray) -> NArray:
        self.out = x.exp()
        return self.out

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        return grad.mul(self.out)


class Log(Function):
    def forward(self, x: NArray, eps: Optional[float] = None) -> NArray:
        eps = get_config().log_epsilon if eps is None else eps
        self.shifted = x.add(eps) if eps > 0 else x
        return self.shifted.log()

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        return grad.div(self.shifted)


class Softmax(Function):
    r"""
    Softmax along one axis, with gradient

        $$
        \frac{\partial L}{\partial x_i} = s_i \left(g_i - \sum_j g_j s_j\right)
        $$
    """

    def forward(self, x: NArray, axis: int = -1) -> NArray:
        self.axis = x.shape.normalize_axis(axis)
        self.out = x.softmax(self.axis)
        return self.out

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        dot = grad.mul(self.out).sum1d(self.axis).stretch(self.axis)
        return grad.sub(dot).mul_(self.out)


class LogSoftmax(Function):
    r"""
    Log-softmax along one axis:

        $$
        y_i = x_i - \log \sum_j e^{x_j}
        $$

    with gradient

        $$
        \frac{\partial L}{\partial x_i} = g_i - softmax(x)_i \sum_j g_j
        $$
    """

    def forward(self, x: NArray, axis: int = -1) -> NArray:
        self.axis = x.shape.normalize_axis(axis)
        self.out = x.log_softmax(self.axis)
        return self.out

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        total = grad.sum1d(self.axis).stretch(self.axis)
        return grad.sub(self.out.exp().mul_(total))


class Dropout(Function):
    """
    Dropout regularization.

    One Bernoulli(p) draw is made per element; elements whose draw is 1 are zeroed and
    the others are scaled by ``1 / (1 - p)``. The backward pass multiplies the upstream
    gradient by the binary mask only.
    """

    def forward(
        self,
        x: NArray,
        p: float,
        rng: Optional[np.random.Generator] = None,
        inplace: bool = False,
    ) -> NArray:
        if not 0.0 <= p <= 1.0:
            raise ValueError(f"Dropout probability must be in [0, 1], got {p}")
        rng = rng if rng is not None else np.random.default_rng()
        draws = rng.binomial(1, p, size=x.size)
        self.mask = NArray.of_flat(
            (draws <= 0.5).astype(x.dtype.numpy), x.shape, x.dtype, x.storage_kind
        )
        scale = 0.0 if p == 1.0 else 1.0 / (1.0 - p)
        out = x if inplace else x.copy()
        return out.mul_(self.mask).mul_(scale)

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        return grad.mul(self.mask)


class CompareTrue(Function):
    """``x * mask`` with ``mask = (x cmp threshold)``."""

    def forward(self, x: NArray, cmp: Compare, threshold: float) -> NArray:
        self.mask = x.compare_mask(cmp, threshold)
        return x.mul(self.mask)

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        return grad.mul(self.mask)


class CompareFalse(Function):
    """``x * mask`` with ``mask = not (x cmp threshold)``."""

    def forward(self, x: NArray, cmp: Compare, threshold: float) -> NArray:
        self.mask = x.compare_mask(cmp, threshold).neg_().add_(1)
        return x.mul(self.mask)

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        return grad.mul(self.mask)


class Max(Function):
    """
    Element-wise ``max(x, threshold)``.

    The gradient is passed where ``x > threshold`` and blocked elsewhere.
    """

    def forward(self, x: NArray, threshold: float = 0.0) -> NArray:
        self.mask = x.compare_mask(Compare.GT, threshold)
        return x.maximum(threshold)

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        return grad.mul(self.mask)


class BatchVtm(Function):
    r"""
    Batched vector times matrix.

    ``v`` is a vector ``(n,)`` or a batch of vectors ``(b, n)``, ``m`` is a matrix
    ``(n, k)`` or a batch of matrices ``(b, n, k)``. Row ``i`` of the output is
    ``v_i @ m_i``, where an unbatched operand is shared by all the rows.

    Backward, with upstream gradient ``g``:

        $$
        \begin{align}
        \frac{\partial L}{\partial m_i} &= v_i \otimes g_i \\
        \frac{\partial L}{\partial v_i} &= m_i \, g_i
        \end{align}
        $$

    A shared matrix sums the contributions of the batch. A shared vector receives the
    mean of the per-row contributions.
    """

    def forward(self, v: NArray, m: NArray) -> NArray:
        if v.rank not in (1, 2) or m.rank not in (2, 3):
            raise ValueError(
                f"BatchVtm needs v of rank 1 or 2 and m of rank 2 or 3, got {v.shape.dims} and {m.shape.dims}"
            )
        if v.dim(-1) != m.dim(-2):
            raise ValueError(f"Cannot multiply vectors {v.shape.dims} with matrices {m.shape.dims}")
        if v.rank == 2 and m.rank == 3 and v.dim(0) != m.dim(0):
            raise ValueError(
                f"Batch sizes differ: {v.dim(0)} vectors and {m.dim(0)} matrices"
            )
        if m.rank == 2:
            # v @ m for a single vector, rows of v @ m for a batch
            return m.transpose().mv(v) if v.rank == 1 else v.mm(m)
        rows = [m.sel(0, i).transpose().mv(self._row(v, i)) for i in range(m.dim(0))]
        return factory.stack(rows)

    @staticmethod
    def _row(x: NArray, i: int) -> NArray:
        return x if x.rank == 1 else x.sel(0, i)

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        v, m = self.tensors[0].value, self.tensors[1].value
        if index == 0:
            if m.rank == 2:
                return m.mv(grad) if v.rank == 1 else grad.mm(m.transpose())
            rows = factory.stack([m.sel(0, i).mv(grad.sel(0, i)) for i in range(m.dim(0))])
            return rows.mean1d(0) if v.rank == 1 else rows
        if m.rank == 2:
            return v.outer(grad) if v.rank == 1 else v.transpose().mm(grad)
        return factory.stack([self._row(v, i).outer(grad.sel(0, i)) for i in range(m.dim(0))])


class Standardize1d(Function):
    r"""
    Standardization along one axis, with ``N`` elements per lane and ``d = N - ddof``:

        $$
        y = \frac{x - \bar{x}}{s}, \quad s = \sqrt{\frac{1}{d} \sum_i (x_i - \bar{x})^2 + \epsilon}
        $$

    Unlike :class:`ndgrad.tensor.Std1d` the gradient goes through the mean and the
    deviation:

        $$
        \frac{\partial L}{\partial x} = \frac{1}{s} \left( g - \bar{g} - y \, \frac{\sum_i g_i y_i}{d} \right)
        $$
    """

    def forward(self, x: NArray, axis: int, ddof: int = 0, eps: Optional[float] = None) -> NArray:
        self.axis = x.shape.normalize_axis(axis)
        self.count = x.dim(self.axis) - ddof
        eps = get_config().std_epsilon if eps is None else eps
        mean = x.mean1d(self.axis)
        self.std = x.varc1d(self.axis, ddof, mean).add_(eps).sqrt_().stretch(self.axis)
        self.out = x.sub(mean.stretch(self.axis)).div_(self.std)
        return self.out

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        grad_mean = grad.mean1d(self.axis).stretch(self.axis)
        projection = grad.mul(self.out).sum1d(self.axis).div_(self.count).stretch(self.axis)
        return grad.sub(grad_mean).sub_(self.out.mul(projection)).div_(self.std)


class StandardizeOn(Standardize1d):
    """Standardization over trailing dimensions, flattened into one axis."""

    def forward(
        self, x: NArray, shape: Sequence[int], ddof: int = 0, eps: Optional[float] = None
    ) -> NArray:
        self.shape = shape
        flat, lead = Function.flatten_trailing(x, shape)
        return super().forward(flat, len(lead), ddof, eps).reshape(*x.shape)

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        flat_grad, _ = Function.flatten_trailing(grad, self.shape)
        return super().backward(index, flat_grad, value).reshape(*value.shape)
