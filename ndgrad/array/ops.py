"""
Operator dispatch.

Every operator is a stateless object with a scalar rule and three loops:

- the unit loop runs NumPy kernels on contiguous segments of an ``ArrayStorage``,
- the step loop runs the same kernels on strided segments of an ``ArrayStorage``,
- the generic loop only uses ``Storage.get`` / ``Storage.set`` and the scalar rule.

``select_path`` picks the loop. All the loops produce the same values for the same
logical data; reductions may differ by floating-point summation order.
"""

import logging
import math
import operator
from enum import Enum
from typing import Callable, List, Optional

import numpy as np

from ndgrad.array.dtype import DType, Number
from ndgrad.array.loop import StrideLoopDescriptor
from ndgrad.array.storage import Storage
from ndgrad.errors import UnsupportedOperationError

logger = logging.getLogger(__name__)


class LoopPath(Enum):
    UNIT = "unit"
    STEP = "step"
    GENERIC = "generic"


def _segment(array: np.ndarray, start: int, step: int, bound: int) -> np.ndarray:
    """
    NumPy view of ``bound`` elements of ``array`` starting at ``start`` spaced by ``step``.

    A zero step gives a read-only broadcast view of a single cell.
    """
    if step == 1:
        return array[start : start + bound]
    if step == 0:
        return np.broadcast_to(array[start], (bound,))
    if bound == 0:
        return array[start:start]
    stop = start + (bound - 1) * step
    if step > 0:
        return array[start : stop + 1 : step]
    return array[start : (stop - 1 if stop > 0 else None) : step]


class ArrayOp:
    """Base class for all operators."""

    name: str = ""
    floating_point_only: bool = False

    def check_dtype(self, dtype: DType) -> None:
        """
        Raises:
            UnsupportedOperationError: If this operator only works on floating dtypes and
                ``dtype`` is an integer kind.
        """
        if self.floating_point_only and not dtype.floating:
            raise UnsupportedOperationError(
                f"Operator '{self.name}' is available only for floating point arrays, "
                f"got dtype {dtype.label}"
            )

    def select_path(self, step: int, *storages: Storage) -> LoopPath:
        """Pick the loop for the given storages and loop step."""
        if all(s.supports_vectorization for s in storages):
            path = LoopPath.UNIT if step == 1 else LoopPath.STEP
        else:
            path = LoopPath.GENERIC
        logger.debug(f"{self.name}: {path.value} loop (step={step})")
        return path

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name})"


"""
Unary ops: x <- f(x), applied in place
"""


class UnaryOp(ArrayOp):
    """
    In-place elementwise operator ``x <- f(x)``.

    Subclasses define ``apply_float`` (and ``apply_int`` when integers behave
    differently) and the NumPy kernel ``vector``.
    """

    def apply_int(self, value: int) -> Number:
        return self.apply_float(value)

    def apply_float(self, value: float) -> Number:
        raise NotImplementedError(f"Scalar rule not implemented for {self.name}")

    def vector(self, a: np.ndarray) -> np.ndarray:
        raise NotImplementedError(f"Vector rule not implemented for {self.name}")

    def apply(self, storage: Storage, loop: StrideLoopDescriptor) -> None:
        """
        Apply the operator to every element visited by ``loop``.

        Args:
            storage (Storage): The storage to update.
            loop (StrideLoopDescriptor): The elements to visit. The loop must not visit a
                storage cell twice.
        """
        self.check_dtype(storage.dtype)
        path = self.select_path(loop.step, storage)
        if path is LoopPath.UNIT:
            self.apply_unit(storage.array, loop)
        elif path is LoopPath.STEP:
            self.apply_step(storage.array, loop)
        else:
            self.apply_generic(storage, loop)

    def apply_unit(self, array: np.ndarray, loop: StrideLoopDescriptor) -> None:
        bound = loop.bound
        for p in loop.offsets:
            seg = array[p : p + bound]
            seg[...] = self.vector(seg)

    def apply_step(self, array: np.ndarray, loop: StrideLoopDescriptor) -> None:
        for p in loop.offsets:
            seg = _segment(array, p, loop.step, loop.bound)
            seg[...] = self.vector(seg)

    def apply_generic(self, storage: Storage, loop: StrideLoopDescriptor) -> None:
        rule = self.apply_float if storage.dtype.floating else self.apply_int
        for q in loop:
            storage.set(q, rule(storage.get(q)))


class AbsOp(UnaryOp):
    name = "abs"

    def apply_float(self, value: float) -> Number:
        return abs(value)

    def vector(self, a: np.ndarray) -> np.ndarray:
        return np.abs(a)


class NegOp(UnaryOp):
    name = "neg"

    def apply_float(self, value: float) -> Number:
        return -value

    def vector(self, a: np.ndarray) -> np.ndarray:
        return np.negative(a)


class SqrOp(UnaryOp):
    name = "sqr"

    def apply_float(self, value: float) -> Number:
        return value * value

    def vector(self, a: np.ndarray) -> np.ndarray:
        return np.square(a)


class ExpOp(UnaryOp):
    name = "exp"
    floating_point_only = True

    def apply_float(self, value: float) -> Number:
        try:
            return math.exp(value)
        except OverflowError:
            return math.inf

    def vector(self, a: np.ndarray) -> np.ndarray:
        with np.errstate(over="ignore"):
            return np.exp(a)


class LogOp(UnaryOp):
    name = "log"
    floating_point_only = True

    def apply_float(self, value: float) -> Number:
        if value > 0:
            return math.log(value)
        if value == 0:
            return -math.inf
        return math.nan

    def vector(self, a: np.ndarray) -> np.ndarray:
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.log(a)


class SqrtOp(UnaryOp):
    name = "sqrt"
    floating_point_only = True

    def apply_float(self, value: float) -> Number:
        if value >= 0:
            return math.sqrt(value)
        return math.nan

    def vector(self, a: np.ndarray) -> np.ndarray:
        with np.errstate(invalid="ignore"):
            return np.sqrt(a)


class TanhOp(UnaryOp):
    name = "tanh"
    floating_point_only = True

    def apply_float(self, value: float) -> Number:
        return math.tanh(value)

    def vector(self, a: np.ndarray) -> np.ndarray:
        return np.tanh(a)


class SigmoidOp(UnaryOp):
    r"""
    Logistic function, evaluated without overflow on both tails:

        $$
        \sigma(x) = \begin{cases}
        \frac{1}{1 + e^{-x}} & x \ge 0 \\
        \frac{e^x}{1 + e^x} & x < 0
        \end{cases}
        $$
    """

    name = "sigmoid"
    floating_point_only = True

    def apply_float(self, value: float) -> Number:
        if value >= 0:
            return 1.0 / (1.0 + math.exp(-value))
        e = math.exp(value)
        return e / (1.0 + e)

    def vector(self, a: np.ndarray) -> np.ndarray:
        out = np.empty_like(a)
        pos = a >= 0
        out[pos] = 1.0 / (1.0 + np.exp(-a[pos]))
        e = np.exp(a[~pos])
        out[~pos] = e / (1.0 + e)
        return out


class ClampOp(UnaryOp):
    """Clamp values into ``[min, max]``; a missing bound is not applied. NaN stays NaN."""

    name = "clamp"

    def __init__(self, min: Optional[Number] = None, max: Optional[Number] = None) -> None:
        if min is not None and max is not None and min > max:
            raise ValueError(f"Clamp bounds are inverted: min={min} > max={max}")
        self.min = min
        self.max = max

    def apply_float(self, value: float) -> Number:
        if self.min is not None and value < self.min:
            value = self.min
        if self.max is not None and value > self.max:
            value = self.max
        return value

    def vector(self, a: np.ndarray) -> np.ndarray:
        if self.min is not None:
            a = np.maximum(a, self.min)
        if self.max is not None:
            a = np.minimum(a, self.max)
        return a


class Compare(Enum):
    """Comparison used by threshold masks."""

    EQ = ("==", operator.eq, np.equal)
    NE = ("!=", operator.ne, np.not_equal)
    GT = (">", operator.gt, np.greater)
    GE = (">=", operator.ge, np.greater_equal)
    LT = ("<", operator.lt, np.less)
    LE = ("<=", operator.le, np.less_equal)

    def __init__(self, symbol: str, scalar: Callable, vector: Callable) -> None:
        self.symbol = symbol
        self.scalar = scalar
        self.vector = vector

    def test(self, a: Number, b: Number) -> bool:
        return bool(self.scalar(a, b))


class CompareMaskOp(UnaryOp):
    """Replace each value by 1 when ``value cmp threshold`` holds, by 0 otherwise."""

    name = "compare_mask"

    def __init__(self, cmp: Compare, value: Number) -> None:
        self.cmp = cmp
        self.value = value

    def apply_float(self, value: float) -> Number:
        return 1 if self.cmp.test(value, self.value) else 0

    def vector(self, a: np.ndarray) -> np.ndarray:
        return self.cmp.vector(a, self.value).astype(a.dtype)


class FillOp(UnaryOp):
    name = "fill"

    def __init__(self, value: Number) -> None:
        self.value = value

    def apply_float(self, value: float) -> Number:
        return self.value

    def vector(self, a: np.ndarray) -> np.ndarray:
        return np.full(a.shape, self.value)


"""
Binary ops: x <- f(x, y), applied in place on x
"""


def _float_div(a: float, b: float) -> float:
    if b == 0:
        if a == 0 or a != a:
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b


def _nan_min(a: Number, b: Number) -> Number:
    if a != a or b != b:
        return math.nan
    return a if a <= b else b


def _nan_max(a: Number, b: Number) -> Number:
    if a != a or b != b:
        return math.nan
    return a if a >= b else b


class BinaryOp(ArrayOp):
    """
    In-place elementwise operator ``x <- f(x, y)`` over two aligned loops.

    The loops of ``x`` and ``y`` must visit the same logical elements in the same order
    (both built with ``Order.C`` over layouts of the same shape). The scalar rule is
    picked by the dtype of ``x``.
    """

    def apply_int(self, a: Number, b: Number) -> Number:
        return self.apply_float(a, b)

    def apply_float(self, a: Number, b: Number) -> Number:
        raise NotImplementedError(f"Scalar rule not implemented for {self.name}")

    def vector(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        raise NotImplementedError(f"Vector rule not implemented for {self.name}")

    def apply(
        self,
        dst: Storage,
        dst_loop: StrideLoopDescriptor,
        src: Storage,
        src_loop: StrideLoopDescriptor,
    ) -> None:
        """
        Args:
            dst (Storage): Storage of the updated operand ``x``.
            dst_loop (StrideLoopDescriptor): Loop over ``x``.
            src (Storage): Storage of ``y``.
            src_loop (StrideLoopDescriptor): Loop over ``y``, aligned with ``dst_loop``.
        """
        if dst_loop.bound != src_loop.bound or len(dst_loop.offsets) != len(
            src_loop.offsets
        ):
            raise ValueError(
                f"Loops are not aligned: {dst_loop} and {src_loop} for operator {self.name}"
            )
        self.check_dtype(dst.dtype)
        step = dst_loop.step if dst_loop.step != 1 else src_loop.step
        path = self.select_path(step, dst, src)
        if path is LoopPath.UNIT:
            self.apply_unit(dst.array, dst_loop, src.array, src_loop)
        elif path is LoopPath.STEP:
            self.apply_step(dst.array, dst_loop, src.array, src_loop)
        else:
            self.apply_generic(dst, dst_loop, src, src_loop)

    def apply_unit(self, a, a_loop, b, b_loop) -> None:
        bound = a_loop.bound
        for p, q in zip(a_loop.offsets, b_loop.offsets):
            seg = a[p : p + bound]
            seg[...] = self.vector(seg, b[q : q + bound])

    def apply_step(self, a, a_loop, b, b_loop) -> None:
        bound = a_loop.bound
        for p, q in zip(a_loop.offsets, b_loop.offsets):
            seg = _segment(a, p, a_loop.step, bound)
            seg[...] = self.vector(seg, _segment(b, q, b_loop.step, bound))

    def apply_generic(self, a, a_loop, b, b_loop) -> None:
        rule = self.apply_float if a.dtype.floating else self.apply_int
        for p, q in zip(a_loop, b_loop):
            a.set(p, rule(a.get(p), b.get(q)))


class AddOp(BinaryOp):
    name = "add"

    def apply_float(self, a, b):
        return a + b

    def vector(self, a, b):
        return a + b


class SubOp(BinaryOp):
    name = "sub"

    def apply_float(self, a, b):
        return a - b

    def vector(self, a, b):
        return a - b


class MulOp(BinaryOp):
    name = "mul"

    def apply_float(self, a, b):
        return a * b

    def vector(self, a, b):
        return a * b


class DivOp(BinaryOp):
    """True division on floating arrays, floor division on integer arrays (0 when dividing by 0)."""

    name = "div"

    def apply_int(self, a, b):
        if b == 0:
            return 0
        return a // b

    def apply_float(self, a, b):
        return _float_div(a, b)

    def vector(self, a, b):
        with np.errstate(divide="ignore", invalid="ignore"):
            if np.issubdtype(a.dtype, np.integer):
                return np.floor_divide(a, b)
            return np.true_divide(a, b)


class MinimumOp(BinaryOp):
    name = "minimum"

    def apply_float(self, a, b):
        return _nan_min(a, b)

    def vector(self, a, b):
        return np.minimum(a, b)


class MaximumOp(BinaryOp):
    name = "maximum"

    def apply_float(self, a, b):
        return _nan_max(a, b)

    def vector(self, a, b):
        return np.maximum(a, b)


class AssignOp(BinaryOp):
    name = "assign"

    def apply_float(self, a, b):
        return b

    def vector(self, a, b):
        return b


"""
Reduce ops
"""


class ReduceOp(ArrayOp):
    """
    Fold of the visited elements with a seed and an associative ``combine``.

    The vector loops reduce each segment with the NumPy kernel ``vector`` and combine
    the partial results; the generic loop combines the elements one by one, after
    mapping them with ``element``.
    """

    def seed(self, dtype: DType) -> Number:
        raise NotImplementedError

    def combine(self, acc: Number, value: Number) -> Number:
        raise NotImplementedError

    def element(self, value: Number) -> Number:
        return value

    def vector(self, a: np.ndarray) -> Number:
        raise NotImplementedError

    def empty(self, dtype: DType) -> Number:
        """Value of the reduction over no elements."""
        return self.seed(dtype)

    def reduce(self, storage: Storage, loop: StrideLoopDescriptor) -> Number:
        """
        Args:
            storage (Storage): The storage to read.
            loop (StrideLoopDescriptor): The elements to fold.

        Returns:
            Number: The reduced value, as a Python number of the storage's kind.
        """
        self.check_dtype(storage.dtype)
        if loop.size == 0:
            return self.empty(storage.dtype)
        return self.finish(self.fold(storage, loop), storage.dtype)

    def fold(self, storage: Storage, loop: StrideLoopDescriptor) -> Number:
        """Run the loops from the seed, without the final cast."""
        acc = self.seed(storage.dtype)
        if loop.size == 0:
            return acc
        path = self.select_path(loop.step, storage)
        if path is LoopPath.UNIT:
            return self.fold_unit(storage.array, loop, acc)
        if path is LoopPath.STEP:
            return self.fold_step(storage.array, loop, acc)
        return self.fold_generic(storage, loop, acc)

    def fold_unit(self, array: np.ndarray, loop: StrideLoopDescriptor, acc: Number) -> Number:
        bound = loop.bound
        for p in loop.offsets:
            acc = self.combine(acc, self.vector(array[p : p + bound]))
        return acc

    def fold_step(self, array: np.ndarray, loop: StrideLoopDescriptor, acc: Number) -> Number:
        for p in loop.offsets:
            acc = self.combine(acc, self.vector(_segment(array, p, loop.step, loop.bound)))
        return acc

    def fold_generic(self, storage: Storage, loop: StrideLoopDescriptor, acc: Number) -> Number:
        for q in loop:
            acc = self.combine(acc, self.element(storage.get(q)))
        return acc

    def finish(self, acc: Number, dtype: DType) -> Number:
        return dtype.cast(acc)


class SumOp(ReduceOp):
    name = "sum"

    def seed(self, dtype):
        return 0.0 if dtype.floating else 0

    def combine(self, acc, value):
        return acc + value

    def vector(self, a):
        return a.sum().item()


class ProdOp(ReduceOp):
    name = "prod"

    def seed(self, dtype):
        return 1.0 if dtype.floating else 1

    def combine(self, acc, value):
        return acc * value

    def vector(self, a):
        if np.issubdtype(a.dtype, np.integer):
            # python ints do not overflow
            acc = 1
            for v in a.tolist():
                acc *= v
            return acc
        return a.prod().item()


class MinReduceOp(ReduceOp):
    name = "min"

    def seed(self, dtype):
        return math.inf if dtype.floating else np.iinfo(dtype.numpy).max

    def combine(self, acc, value):
        return _nan_min(acc, value)

    def vector(self, a):
        return a.min().item()

    def empty(self, dtype):
        raise ValueError("Zero-size array has no minimum")


class MaxReduceOp(ReduceOp):
    name = "max"

    def seed(self, dtype):
        return -math.inf if dtype.floating else np.iinfo(dtype.numpy).min

    def combine(self, acc, value):
        return _nan_max(acc, value)

    def vector(self, a):
        return a.max().item()

    def empty(self, dtype):
        raise ValueError("Zero-size array has no maximum")


class _CenteredPowerSum(SumOp):
    """Sum of ``(x - center) ** power``."""

    def __init__(self, center: float, power: int) -> None:
        self.center = center
        self.power = power

    def seed(self, dtype):
        return 0.0

    def element(self, value):
        return (value - self.center) ** self.power

    def vector(self, a):
        return ((a - self.center) ** self.power).sum().item()

    def finish(self, acc, dtype):
        return acc


class MeanOp(ReduceOp):
    r"""
    Arithmetic mean with a second compensation pass:

        $$
        \bar{x} = m + \frac{1}{n}\sum_i (x_i - m), \quad m = \frac{1}{n}\sum_i x_i
        $$
    """

    name = "mean"
    floating_point_only = True

    def reduce(self, storage, loop):
        self.check_dtype(storage.dtype)
        n = loop.size
        if n == 0:
            return math.nan
        raw = SUM.fold(storage, loop) / n
        mean = raw + _CenteredPowerSum(raw, 1).fold(storage, loop) / n
        return storage.dtype.cast(mean)


class VarcOp(ReduceOp):
    r"""
    Variance with ``ddof`` delta degrees of freedom, by the corrected two-pass formula

        $$
        \frac{1}{n - ddof}\left(\sum_i c_i^2 - \frac{(\sum_i c_i)^2}{n - ddof}\right),
        \quad c_i = x_i - \bar{x}
        $$

    ``mean`` replaces the computed mean when given.
    """

    name = "varc"
    floating_point_only = True

    def __init__(self, ddof: int = 0, mean: Optional[float] = None) -> None:
        self.ddof = ddof
        self.mean = mean

    def reduce(self, storage, loop):
        self.check_dtype(storage.dtype)
        n = loop.size - self.ddof
        if n <= 0:
            return math.nan
        mean = self.mean if self.mean is not None else MEAN.reduce(storage, loop)
        sum2 = _CenteredPowerSum(mean, 2).fold(storage, loop)
        sum3 = _CenteredPowerSum(mean, 1).fold(storage, loop)
        return storage.dtype.cast((sum2 - sum3 * sum3 / n) / n)


"""
Lane ops: each loop segment is one lane (a 1-d slice along an axis)
"""


class LaneOp(ArrayOp):
    """
    In-place operator that maps a whole lane to a new lane, for example softmax.

    ``apply`` expects a loop whose segments are the lanes.
    """

    floating_point_only = True

    def lane_vector(self, a: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def lane_scalar(self, values: List[float]) -> List[float]:
        raise NotImplementedError

    def apply(self, storage: Storage, loop: StrideLoopDescriptor) -> None:
        self.check_dtype(storage.dtype)
        if loop.bound == 0:
            return
        path = self.select_path(loop.step, storage)
        if path is LoopPath.GENERIC:
            self.apply_generic(storage, loop)
        else:
            for p in loop.offsets:
                seg = _segment(storage.array, p, loop.step, loop.bound)
                seg[...] = self.lane_vector(seg)

    def apply_generic(self, storage: Storage, loop: StrideLoopDescriptor) -> None:
        for p in loop.offsets:
            offsets = [int(p) + i * loop.step for i in range(loop.bound)]
            values = self.lane_scalar([storage.get(q) for q in offsets])
            for q, v in zip(offsets, values):
                storage.set(q, v)


def _lane_max(values: List[float]) -> float:
    acc = -math.inf
    for v in values:
        acc = _nan_max(acc, v)
    return acc


class SoftmaxOp(LaneOp):
    r"""
    $$
    softmax(x)_i = \frac{e^{x_i - \max(x)}}{\sum_j e^{x_j - \max(x)}}
    $$
    """

    name = "softmax"

    def lane_vector(self, a):
        with np.errstate(invalid="ignore", over="ignore"):
            e = np.exp(a - a.max())
            return e / e.sum()

    def lane_scalar(self, values):
        m = _lane_max(values)
        exps = [EXP.apply_float(v - m) for v in values]
        total = sum(exps)
        return [_float_div(e, total) for e in exps]


class LogSoftmaxOp(LaneOp):
    r"""
    $$
    logsoftmax(x)_i = x_i - \max(x) - \log \sum_j e^{x_j - \max(x)}
    $$
    """

    name = "log_softmax"

    def lane_vector(self, a):
        with np.errstate(invalid="ignore", over="ignore", divide="ignore"):
            shifted = a - a.max()
            return shifted - np.log(np.exp(shifted).sum())

    def lane_scalar(self, values):
        m = _lane_max(values)
        shifted = [v - m for v in values]
        log_total = LOG.apply_float(sum(EXP.apply_float(v) for v in shifted))
        return [v - log_total for v in shifted]


ABS = AbsOp()
NEG = NegOp()
SQR = SqrOp()
EXP = ExpOp()
LOG = LogOp()
SQRT = SqrtOp()
TANH = TanhOp()
SIGMOID = SigmoidOp()

SUM = SumOp()
PROD = ProdOp()
MIN = MinReduceOp()
MAX = MaxReduceOp()
MEAN = MeanOp()


class ArrayOps:
    """
    Process-wide operator singletons, built once at import. Parameterized operators
    are built by the factory methods.
    """

    ABS = ABS
    NEG = NEG
    SQR = SQR
    EXP = EXP
    LOG = LOG
    SQRT = SQRT
    TANH = TANH
    SIGMOID = SIGMOID

    ADD = AddOp()
    SUB = SubOp()
    MUL = MulOp()
    DIV = DivOp()
    MINIMUM = MinimumOp()
    MAXIMUM = MaximumOp()
    ASSIGN = AssignOp()

    SUM = SUM
    PROD = PROD
    MIN = MIN
    MAX = MAX
    MEAN = MEAN

    SOFTMAX = SoftmaxOp()
    LOG_SOFTMAX = LogSoftmaxOp()

    @staticmethod
    def clamp(min: Optional[Number] = None, max: Optional[Number] = None) -> ClampOp:
        return ClampOp(min, max)

    @staticmethod
    def compare_mask(cmp: Compare, value: Number) -> CompareMaskOp:
        return CompareMaskOp(cmp, value)

    @staticmethod
    def fill(value: Number) -> FillOp:
        return FillOp(value)

    @staticmethod
    def varc(ddof: int = 0, mean: Optional[float] = None) -> VarcOp:
        return VarcOp(ddof, mean)
