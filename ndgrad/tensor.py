import functools
import itertools
import logging
from dataclasses import dataclass
from numbers import Number as _Number
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ndgrad.array import factory
from ndgrad.array.broadcast import Broadcast
from ndgrad.array.dtype import DType, Number
from ndgrad.array.narray import NArray
from ndgrad.array.shape import Shape
from ndgrad.config import get_config

logger = logging.getLogger(__name__)

# construction order of the tensors, a valid topological order of any graph
_sequence = itertools.count()


@dataclass
class BackEdge:
    """
    Link from a node to one of its operands.

    ``fn(node_grad, operand_value)`` returns the contribution of the node's gradient to
    the operand's gradient. It only reads state captured by the forward pass.
    """

    ref: "Tensor"
    fn: Callable[[NArray, NArray], Optional[NArray]]


class Function:
    """
    Base class for differentiable operations.

    Subclasses implement ``forward``, which gets the values of the operands, and
    ``backward``, which gets the index of one operand, the gradient of the output and
    the value of that operand. Some subclasses can be found in the `functional.py` module.
    """

    def __init__(self, *tensors: "Tensor"):
        """
        Args:
            *tensors (Tensor): The operands of this operation.
        """
        self.tensors = tensors

    def forward(self, *args: NArray, **kwargs: Any) -> NArray:
        """
        Compute the value of the operation.

        Args:
            *args (NArray): Values of the operands.
            **kwargs (Any): Parameters of the operation.

        Returns:
            NArray: The output value.
        """
        raise NotImplementedError("Forward pass not implemented for this function")

    def backward(self, index: int, grad: NArray, value: NArray) -> Optional[NArray]:
        """
        Compute the contribution to the gradient of one operand.

        In this context:
        - ``grad`` is the gradient of the loss with respect to the *output* (dL/d[out]).
        - The return value is the gradient of the loss with respect to the operand
          ``index`` (dL/d[input]), with the shape of ``value``.

        Args:
            index (int): Position of the operand.
            grad (NArray): The gradient with respect to the **output** of this operation.
            value (NArray): The value of the operand.

        Returns:
            Optional[NArray]: The gradient with respect to the operand, None when there
            is no contribution.
        """
        raise NotImplementedError("Backward pass not implemented for this function")

    @classmethod
    def apply(cls, *tensors: "Tensor", **kwargs: Any) -> "Tensor":
        """
        Construct and apply this function to the given tensors.

        This method:
        1) Creates an instance of the function.
        2) Runs `forward` on the operand values.
        3) Wraps the result in a new `Tensor` with one `BackEdge` per operand that
           requires a gradient.

        Args:
            *tensors (Tensor): Operands of the operation.
            **kwargs (Any): Parameters passed to the forward method.

        Returns:
            Tensor: The output node.
        """
        func = cls(*tensors)
        out = Tensor(func.forward(*(t.value for t in tensors), **kwargs), creator=func)
        for index, t in enumerate(tensors):
            if t.requires_grad:
                out.back_edges.append(BackEdge(t, functools.partial(func.backward, index)))
        out.requires_grad = bool(out.back_edges)
        return out

    @staticmethod
    def reduce_to_shape(grad: NArray, shape: Shape) -> NArray:
        """
        Sum out broadcast dimensions so that ``grad`` gets ``shape``.
        Essentially the inverse of broadcasting.

        Args:
            grad (NArray): Gradient with the broadcast shape.
            shape (Shape): Shape of the operand before broadcasting.

        Returns:
            NArray: Gradient with ``shape``.
        """
        if grad.shape == shape:
            return grad
        # leading dims that did not exist in the operand
        while grad.rank > shape.rank:
            grad = grad.sum1d(0)
        # dims where the operand had size 1
        for axis in range(shape.rank):
            if shape[axis] == 1 and grad.dim(axis) != 1:
                grad = grad.sum1d(axis).stretch(axis)
        return grad

    @staticmethod
    def flatten_trailing(x: NArray, shape: Sequence[int]) -> Tuple[NArray, Tuple[int, ...]]:
        """
        Merge the trailing dimensions of ``x`` given by ``shape`` into one last axis.

        Args:
            x (NArray): The array.
            shape (Sequence[int]): Trailing dimensions of ``x``.

        Returns:
            Tuple[NArray, Tuple[int, ...]]: ``x`` with shape ``(*lead, prod(shape))`` and
            the leading dimensions ``lead``.

        Raises:
            ValueError: If ``shape`` is empty or does not end the shape of ``x``.
        """
        trailing = Shape.of(shape)
        lead = x.rank - trailing.rank
        if trailing.rank == 0 or lead < 0 or x.shape.dims[lead:] != trailing.dims:
            raise ValueError(
                f"Shape {trailing.dims} is not a trailing part of shape {x.shape.dims}"
            )
        lead_dims = x.shape.dims[:lead]
        return _dense(x).reshape(*lead_dims, trailing.size), lead_dims


def _as_value(data: Any, dtype: Optional[DType] = None) -> NArray:
    if isinstance(data, Tensor):
        data = data.value
    if isinstance(data, NArray):
        if dtype is None or dtype == data.dtype:
            return data
        return data.copy(dtype=dtype)
    return factory.of(data, dtype=dtype)


class Tensor:
    """
    A node of the autodiff graph.

    It holds an ``NArray`` value (set once at construction), a gradient accumulator
    created by the first contribution, and the back edges to its operands. Only leaves
    keep their gradient after a backward pass. Nodes are numbered in construction
    order, and ``backward`` visits them in reverse order.
    """

    def __init__(
        self,
        data: Union[NArray, Number, Sequence, "Tensor"],
        requires_grad: bool = False,
        name: Optional[str] = None,
        dtype: Optional[DType] = None,
        creator: Optional[Function] = None,
    ):
        """
        Args:
            data (Union[NArray, Number, Sequence, Tensor]): The value. An ``NArray`` is
                used as is (no copy), other data goes through :func:`factory.of`.
            requires_grad (bool, optional): Whether gradients flow into this tensor.
                Defaults to False.
            name (Optional[str], optional): Label used in ``repr``.
            dtype (Optional[DType], optional): Converts the value to this dtype.
            creator (Optional[Function], optional): The function that created this
                tensor, None for leaves.
        """
        self.value: NArray = _as_value(data, dtype)
        self.requires_grad = requires_grad
        self.name = name
        self.creator = creator
        self.back_edges: List[BackEdge] = []
        self._grad: Optional[NArray] = None
        self.seq = next(_sequence)

    @property
    def grad(self) -> Optional[NArray]:
        """The accumulated gradient, None before the first contribution."""
        return self._grad

    def check_grad(self, grad: NArray) -> None:
        """
        Raises:
            ValueError: If ``grad`` does not have the shape of this tensor.
        """
        if grad.shape != self.value.shape:
            raise ValueError(
                f"Gradient of shape {grad.shape.dims} does not match tensor of shape {self.value.shape.dims}"
            )

    def add_grad(self, grad: NArray) -> None:
        """
        Add a contribution into the gradient accumulator.

        The first contribution is copied, so the accumulator never aliases another
        array; later contributions are added in place.

        Raises:
            ValueError: If the contribution does not have the shape of this tensor.
        """
        self.check_grad(grad)
        if self._grad is None:
            self._grad = grad.copy(dtype=self.value.dtype)
        else:
            self._grad.add_(grad)

    def zero_grad(self) -> None:
        self._grad = None

    def backward(self, grad: Optional[Union[NArray, Number, Sequence]] = None) -> None:
        """See :func:`backward`."""
        backward(self, grad)

    def detach(self) -> "Tensor":
        """A leaf over the same value that does not track gradients."""
        return Tensor(self.value, requires_grad=False, name=self.name)

    ########### Metadata ###########
    @property
    def shape(self) -> Shape:
        return self.value.shape

    @property
    def rank(self) -> int:
        return self.value.rank

    @property
    def size(self) -> int:
        return self.value.size

    @property
    def dtype(self) -> DType:
        return self.value.dtype

    def dim(self, axis: int) -> int:
        return self.value.dim(axis)

    def numpy(self):
        return self.value.to_numpy()

    def item(self) -> Number:
        return self.value.item()

    ########### Operators ###########
    def _wrap(self, other: Union["Tensor", Number]) -> "Tensor":
        if isinstance(other, Tensor):
            return other
        if isinstance(other, _Number):
            dtype = self.dtype if self.dtype.floating or isinstance(other, int) else None
            return Tensor(factory.scalar(other, dtype, self.value.storage_kind))
        return Tensor(other)

    def __add__(self, other: Union["Tensor", Number]) -> "Tensor":
        return Add.apply(self, self._wrap(other))

    def __radd__(self, other: Union["Tensor", Number]) -> "Tensor":
        return Add.apply(self._wrap(other), self)

    def __sub__(self, other: Union["Tensor", Number]) -> "Tensor":
        return Sub.apply(self, self._wrap(other))

    def __rsub__(self, other: Union["Tensor", Number]) -> "Tensor":
        return Sub.apply(self._wrap(other), self)

    def __mul__(self, other: Union["Tensor", Number]) -> "Tensor":
        return Mul.apply(self, self._wrap(other))

    def __rmul__(self, other: Union["Tensor", Number]) -> "Tensor":
        return Mul.apply(self._wrap(other), self)

    def __truediv__(self, other: Union["Tensor", Number]) -> "Tensor":
        return Div.apply(self, self._wrap(other))

    def __rtruediv__(self, other: Union["Tensor", Number]) -> "Tensor":
        return Div.apply(self._wrap(other), self)

    def __neg__(self) -> "Tensor":
        return Neg.apply(self)

    def __hash__(self) -> int:
        return id(self)

    def identity(self) -> "Tensor":
        return Identity.apply(self)

    def sqr(self) -> "Tensor":
        return Sqr.apply(self)

    def sqrt(self) -> "Tensor":
        return Sqrt.apply(self)

    def sum(self) -> "Tensor":
        r"""
        Sum of all the elements, as a rank 0 tensor.

            $$
            y = \sum_i x_i
            $$
        """
        return Sum.apply(self)

    def sum1d(self, axis: int) -> "Tensor":
        """Sum along ``axis``; the axis is removed."""
        return Sum1d.apply(self, axis=axis)

    def mean(self) -> "Tensor":
        return Mean.apply(self)

    def mean1d(self, axis: int) -> "Tensor":
        r"""
        Mean along ``axis``; the axis is removed.

            $$
            y = \frac{1}{N} \sum_{i} x_i, \quad N = dim(axis)
            $$
        """
        return Mean1d.apply(self, axis=axis)

    def std1d(
        self,
        axis: int,
        ddof: int = 0,
        eps: Optional[float] = None,
        mean: Optional["Tensor"] = None,
    ) -> "Tensor":
        """
        Standard deviation along ``axis``, ``sqrt(var + eps)``.

        Args:
            axis (int): The reduced axis.
            ddof (int, optional): Delta degrees of freedom. Defaults to 0.
            eps (Optional[float], optional): Added to the variance. Defaults to the
                configured ``std_epsilon``.
            mean (Optional[Tensor], optional): Precomputed mean along ``axis``. No gradient
                flows into it.

        Returns:
            Tensor: The standard deviations, with ``axis`` removed.
        """
        if mean is None:
            return Std1d.apply(self, axis=axis, ddof=ddof, eps=eps)
        return Std1d.apply(self, mean, axis=axis, ddof=ddof, eps=eps)

    def mean_on(self, shape: Sequence[int]) -> "Tensor":
        """Mean over the trailing dimensions ``shape``, which are removed."""
        return MeanOn.apply(self, shape=shape)

    def std_on(
        self,
        shape: Sequence[int],
        ddof: int = 0,
        eps: Optional[float] = None,
        mean: Optional["Tensor"] = None,
    ) -> "Tensor":
        """
        Standard deviation over the trailing dimensions ``shape``, which are removed.
        Same arguments as :meth:`std1d`, ``mean`` has the leading dimensions.
        """
        if mean is None:
            return StdOn.apply(self, shape=shape, ddof=ddof, eps=eps)
        return StdOn.apply(self, mean, shape=shape, ddof=ddof, eps=eps)

    def gather(self, axis: int, index: Union["Tensor", NArray, Sequence]) -> "Tensor":
        """
        Pick values along ``axis`` with an integer ``index`` of the same rank, see
        :meth:`NArray.gather`. No gradient flows into ``index``.
        """
        if isinstance(index, Tensor):
            index = index.value
        elif not isinstance(index, NArray):
            index = factory.of(index, dtype=DType.INT)
        return Gather.apply(self, axis=axis, index=index)

    def reshape(self, *shape: int) -> "Tensor":
        return Reshape.apply(self, shape=shape)

    def narrow(self, axis: int, start: int, end: int) -> "Tensor":
        """Indices ``[start, end)`` along ``axis``."""
        return Narrow.apply(self, axis=axis, start=start, end=end)

    def split(self, axis: int, *indices: int) -> List["Tensor"]:
        """
        Cut the tensor along ``axis`` at the start ``indices``. Piece ``i`` covers
        ``[indices[i], indices[i + 1])``, the last piece runs to the end of the axis.

        Raises:
            ValueError: If no index is given, or the indices are not increasing inside
                the axis.
        """
        dim = self.dim(axis)
        if not indices:
            raise ValueError("Split needs at least one start index")
        if any(i < 0 or i >= dim for i in indices) or list(indices) != sorted(set(indices)):
            raise ValueError(f"Split indices {indices} must be increasing in [0, {dim})")
        ends = indices[1:] + (dim,)
        return [self.narrow(axis, start, end) for start, end in zip(indices, ends)]

    def stretch(self, axis: int) -> "Tensor":
        """Insert a unit axis before ``axis``."""
        return Stretch.apply(self, axis=axis)

    def __repr__(self) -> str:
        name = f", name={self.name}" if self.name else ""
        return f"Tensor(value={self.value.to_list()}, requires_grad={self.requires_grad}{name})"


def _collect(root: Tensor) -> List[Tensor]:
    """Every node reachable from ``root`` through back edges, root included."""
    seen = {id(root)}
    nodes = [root]
    stack = [root]
    while stack:
        node = stack.pop()
        for edge in node.back_edges:
            if id(edge.ref) not in seen:
                seen.add(id(edge.ref))
                nodes.append(edge.ref)
                stack.append(edge.ref)
    return nodes


def backward(root: Tensor, grad: Optional[Union[NArray, Number, Sequence]] = None) -> None:
    """
    Compute gradients for all upstream nodes in the graph via backpropagation.

    1. The gradient of ``root`` is seeded with ones (d(root)/d(root) = 1) unless ``grad``
       is given.
    2. The nodes reachable from ``root`` are visited in reverse construction order,
       which is a reverse topological order.
    3. For every node that got a gradient, every back edge is evaluated and its
       contribution is added to the operand's gradient. A node used by several
       consumers sums the contributions of all of them.

    Gradients of intermediate nodes live only for the duration of one pass, so every
    pass sends each contribution exactly once. Leaves (tensors created by the caller)
    add the gradient of the pass into their accumulator, which keeps growing over
    passes until ``zero_grad``.

    Args:
        root (Tensor): The output to differentiate.
        grad (Optional[Union[NArray, Number, Sequence]], optional): Gradient of the loss
            with respect to ``root``.
    """
    if not root.requires_grad:
        # nothing upstream needs a gradient
        return
    if grad is None:
        grad = factory.ones_like(root.value)
    elif not isinstance(grad, NArray):
        grad = factory.of(grad, dtype=root.dtype)
    root.check_grad(grad)

    nodes = sorted(_collect(root), key=lambda t: t.seq, reverse=True)
    logger.debug(f"Backward pass over {len(nodes)} nodes")
    grads: Dict[Tensor, NArray] = {root: grad}
    for node in nodes:
        node_grad = grads.pop(node, None)
        if node_grad is None:
            continue
        if node.creator is None:
            node.add_grad(node_grad)
            continue
        for edge in node.back_edges:
            contribution = edge.fn(node_grad, edge.ref.value)
            if contribution is None:
                continue
            edge.ref.check_grad(contribution)
            previous = grads.get(edge.ref)
            # contributions may be views of other gradients, sum without writing into them
            grads[edge.ref] = contribution if previous is None else previous.add(contribution)


def zero_grad(tensors: Iterable[Tensor]) -> None:
    """Clear the gradient accumulators, to be called before the next iteration."""
    for t in tensors:
        t.zero_grad()


def _dense(x: NArray) -> NArray:
    return x if x.is_contiguous() else x.copy()


"""
Binary Ops
"""


class Add(Function):
    """Element-wise sum of two tensors, with broadcasting.
    See :func:`ndgrad.tensor.Tensor.__add__` function
    """

    def forward(self, x: NArray, y: NArray) -> NArray:
        return x.add(y)

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        return Function.reduce_to_shape(grad, value.shape)


class Sub(Function):
    """Element-wise difference of two tensors, with broadcasting."""

    def forward(self, x: NArray, y: NArray) -> NArray:
        return x.sub(y)

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        if index == 1:
            grad = grad.neg()
        return Function.reduce_to_shape(grad, value.shape)


class Mul(Function):
    r"""Element-wise product of two tensors, with broadcasting.

    $$
    \frac{\partial z}{\partial x} = y, \quad \frac{\partial z}{\partial y} = x
    $$
    """

    def forward(self, x: NArray, y: NArray) -> NArray:
        return x.mul(y)

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        other = self.tensors[1 - index].value
        return Function.reduce_to_shape(grad.mul(other), value.shape)


class Div(Function):
    r"""
    Element-wise quotient of two tensors, with broadcasting.

    The gradients are:

        $$
        \begin{align}
        \frac{\partial z}{\partial x} &= \frac{1}{y} \\
        \frac{\partial z}{\partial y} &= -\frac{x}{y^2}
        \end{align}
        $$

    each summed back to the shape of its operand.
    """

    def forward(self, x: NArray, y: NArray) -> NArray:
        Broadcast.element_wise(x.shape, y.shape).check()
        return x.div(y)

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        x, y = self.tensors[0].value, self.tensors[1].value
        if index == 0:
            return Function.reduce_to_shape(grad.div(y), value.shape)
        return Function.reduce_to_shape(grad.mul(x.div(y.sqr()).neg_()), value.shape)


"""
Unary Ops
"""


class Neg(Function):
    def forward(self, x: NArray) -> NArray:
        return x.neg()

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        return grad.neg()


class Identity(Function):
    def forward(self, x: NArray) -> NArray:
        return x

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        return grad


class Sqr(Function):
    def forward(self, x: NArray) -> NArray:
        return x.sqr()

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        return grad.mul(value).mul_(2)


class Sqrt(Function):
    r"""
    $$
    \frac{d}{dx} \sqrt{x} = \frac{1}{2 \sqrt{x}}
    $$
    """

    def forward(self, x: NArray) -> NArray:
        self.out = x.sqrt()
        return self.out

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        return grad.div(self.out.mul(2))


"""
Reduction Ops
"""


class Sum(Function):
    """Sum of all the elements. See :func:`ndgrad.tensor.Tensor.sum` function"""

    def forward(self, x: NArray) -> NArray:
        return NArray.of_flat([x.sum()], (), x.dtype, x.storage_kind)

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        # the output is a scalar, every element gets the same gradient
        return grad.broadcast_to(*value.shape)


class Sum1d(Function):
    """Sum along one axis. See :func:`ndgrad.tensor.Tensor.sum1d` function"""

    def forward(self, x: NArray, axis: int) -> NArray:
        self.axis = x.shape.normalize_axis(axis)
        return x.sum1d(self.axis)

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        return grad.stretch(self.axis).expand(self.axis, value.dim(self.axis))


class Mean(Function):
    def forward(self, x: NArray) -> NArray:
        return NArray.of_flat([x.mean()], (), x.dtype, x.storage_kind)

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        return grad.div(value.size).broadcast_to(*value.shape)


class Mean1d(Function):
    """Mean along one axis. See :func:`ndgrad.tensor.Tensor.mean1d` function"""

    def forward(self, x: NArray, axis: int) -> NArray:
        self.axis = x.shape.normalize_axis(axis)
        return x.mean1d(self.axis)

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        dim = value.dim(self.axis)
        return grad.div(dim).stretch(self.axis).expand(self.axis, dim)


class Std1d(Function):
    r"""
    Standard deviation along one axis:

        $$
        s = \sqrt{\frac{1}{N - ddof} \sum_i (x_i - \bar{x})^2 + \epsilon}
        $$

    with gradient

        $$
        \frac{\partial s}{\partial x_i} = \frac{x_i - \bar{x}}{s \, (N - ddof)}
        $$

    The mean is computed from ``x`` unless passed as a second operand. A mean operand
    receives a zero gradient.
    """

    def forward(
        self,
        x: NArray,
        mean: Optional[NArray] = None,
        axis: int = 0,
        ddof: int = 0,
        eps: Optional[float] = None,
    ) -> NArray:
        self.axis = x.shape.normalize_axis(axis)
        self.ddof = ddof
        eps = get_config().std_epsilon if eps is None else eps
        self.mean = x.mean1d(self.axis) if mean is None else mean
        self.std = x.varc1d(self.axis, ddof, self.mean).add_(eps).sqrt_()
        return self.std

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        if index == 1:
            return factory.zeros_like(value)
        centered = value.sub(self.mean.stretch(self.axis))
        scale = grad.div(self.std).div_(value.dim(self.axis) - self.ddof)
        return centered.mul_(scale.stretch(self.axis))


class MeanOn(Function):
    """Mean over trailing dimensions. See :func:`ndgrad.tensor.Tensor.mean_on` function"""

    def forward(self, x: NArray, shape: Sequence[int]) -> NArray:
        flat, self.lead = Function.flatten_trailing(x, shape)
        self.count = flat.dim(-1)
        return flat.mean1d(-1)

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        axis = len(self.lead)
        spread = grad.div(self.count).stretch(axis).expand(axis, self.count)
        return _dense(spread).reshape(*value.shape)


class StdOn(Std1d):
    """
    Standard deviation over trailing dimensions, computed as :class:`Std1d` over the
    flattened trailing axis.
    """

    def forward(
        self,
        x: NArray,
        mean: Optional[NArray] = None,
        shape: Sequence[int] = (),
        ddof: int = 0,
        eps: Optional[float] = None,
    ) -> NArray:
        flat, self.lead = Function.flatten_trailing(x, shape)
        return super().forward(flat, mean, axis=len(self.lead), ddof=ddof, eps=eps)

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        if index == 1:
            return factory.zeros_like(value)
        flat = _dense(value).reshape(*self.lead, -1)
        return super().backward(index, grad, flat).reshape(*value.shape)


"""
Movement Ops
"""


class Reshape(Function):
    def forward(self, x: NArray, shape: Sequence[int]) -> NArray:
        return _dense(x).reshape(*shape)

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        return _dense(grad).reshape(*value.shape)


class Narrow(Function):
    def forward(self, x: NArray, axis: int, start: int, end: int) -> NArray:
        self.axis, self.start, self.end = axis, start, end
        return x.narrow(axis, start, end)

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        out = factory.zeros_like(value)
        out.narrow(self.axis, self.start, self.end).assign_(grad)
        return out


class Stretch(Function):
    def forward(self, x: NArray, axis: int) -> NArray:
        out = x.stretch(axis)
        # position of the new axis in the output
        self.axis = out.shape.normalize_axis(axis)
        return out

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        return grad.squeeze(self.axis)


class Gather(Function):
    """
    Values picked along an axis by an integer index array.

    The backward pass scatters the gradient back into the picked cells; a cell picked
    several times sums its gradients.
    """

    def forward(self, x: NArray, axis: int, index: NArray) -> NArray:
        self.axis, self.positions = axis, index
        return x.gather(axis, index)

    def backward(self, index: int, grad: NArray, value: NArray) -> NArray:
        return factory.zeros_like(value).scatter_add_(self.axis, self.positions, grad)
