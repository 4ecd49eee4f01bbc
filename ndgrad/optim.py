import logging
from typing import Any, Dict, Iterable, Union

from ndgrad.array.narray import NArray
from ndgrad.tensor import Tensor, zero_grad

logger = logging.getLogger(__name__)

Parameters = Union[Dict[str, Tensor], Iterable[Tensor]]


class Optimizer:
    """
    Base Optimizer Class.

    Parameters are updated in place: ``param.value`` keeps its storage, so every view
    taken on it before the step sees the new values.

    Usage Example:

    .. code-block:: python

        optimizer = SGD({"w": w, "b": b}, lr=0.01)
        for x, y in dataset:
            optimizer.zero_grad()
            loss = ((x * w + b) - y).sqr().mean()
            loss.backward()
            optimizer.step()
    """

    def __init__(self, parameters: Parameters, lr: float, **kwargs: Any) -> None:
        """
        Args:
            parameters (Parameters): Named parameters, or a sequence of parameters
                (named by position).
            lr (float): The learning rate.
            **kwargs: Additional hyperparameters.
        """
        if isinstance(parameters, dict):
            self.parameters: Dict[str, Tensor] = dict(parameters)
        else:
            self.parameters = {str(i): p for i, p in enumerate(parameters)}
        for name, param in self.parameters.items():
            if not param.requires_grad:
                logger.warning(f"Parameter {name} does not require a gradient, it will never be updated")
        self._hyperparams: Dict[str, Any] = {"lr": lr, **kwargs}
        self._states: Dict[str, Dict[str, NArray]] = {}
        self.timestep = 0

    @property
    def lr(self) -> float:
        return self._hyperparams["lr"]

    @lr.setter
    def lr(self, value: float) -> None:
        self._hyperparams["lr"] = value

    def zero_grad(self) -> None:
        """Clear the gradients of all the parameters."""
        zero_grad(self.parameters.values())

    def _clip_grad_norm(self, max_norm: float) -> None:
        r"""
        Scale all the gradients in place so that their global L2 norm is at most ``max_norm``:

        $$
        g \leftarrow \frac{\text{max\_norm} \cdot g}{\|g\|_2}
        $$
        """
        total = 0.0
        for param in self.parameters.values():
            if param.grad is not None:
                total += param.grad.sqr().sum()
        total_norm = total**0.5
        if total_norm > max_norm:
            scale = max_norm / (total_norm + 1e-10)
            logger.debug(f"Clipping gradient norm {total_norm:.4f} to {max_norm}")
            for param in self.parameters.values():
                if param.grad is not None:
                    param.grad.mul_(scale)

    def step(self) -> None:
        """Perform a single optimization step."""
        self.timestep += 1


class SGD(Optimizer):
    r"""
    Stochastic Gradient Descent, with optional momentum and weight decay:

        $$
        \begin{align}
        g &\leftarrow g + \lambda \theta \\
        b &\leftarrow \mu b + g \\
        \theta &\leftarrow \theta - \eta b
        \end{align}
        $$
    """

    def __init__(
        self,
        parameters: Parameters,
        lr: float,
        momentum: float = 0.0,
        weight_decay: float = 0.0,
        **kwargs: Any,
    ) -> None:
        """
        Args:
            parameters (Parameters): Parameters to optimize.
            lr (float): The learning rate.
            momentum (float, optional): Momentum factor. Defaults to 0.
            weight_decay (float, optional): L2 penalty factor. Defaults to 0.
            **kwargs: Additional hyperparameters, ``max_grad_norm`` enables clipping.
        """
        super().__init__(parameters, lr=lr, momentum=momentum, weight_decay=weight_decay, **kwargs)

    def step(self) -> None:
        super().step()
        if "max_grad_norm" in self._hyperparams:
            self._clip_grad_norm(self._hyperparams["max_grad_norm"])

        momentum = self._hyperparams["momentum"]
        weight_decay = self._hyperparams["weight_decay"]
        for name, param in self.parameters.items():
            if param.grad is None:
                continue
            grad = param.grad
            if weight_decay:
                grad = grad.add(param.value.mul(weight_decay))
            if momentum:
                state = self._states.setdefault(name, {})
                if "buffer" not in state:
                    state["buffer"] = grad.copy()
                else:
                    state["buffer"].mul_(momentum).add_(grad)
                grad = state["buffer"]
            param.value.sub_(grad.mul(self.lr))
