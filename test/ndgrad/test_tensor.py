from unittest import TestCase

import numpy as np
import pytest
import torch  # for comparison

from ndgrad.array import factory
from ndgrad.array.dtype import DType
from ndgrad.array.shape import Shape
from ndgrad.functional import tanh
from ndgrad.tensor import Function, Tensor, backward, zero_grad
from ndgrad.utils import gradient_errors, numerical_gradient


class TestTensor(TestCase):
    def setUp(self) -> None:
        torch.manual_seed(42)
        np.random.seed(42)

        self.x_data = np.random.randn(2, 3)
        self.y_data = np.random.uniform(0.5, 2.0, (3,))
        self.x = Tensor(self.x_data, requires_grad=True)
        self.y = Tensor(self.y_data, requires_grad=True)

        # Torch tensors for comparison
        self.x_torch = torch.tensor(self.x_data, requires_grad=True)
        self.y_torch = torch.tensor(self.y_data, requires_grad=True)

    def assert_grads_match(self):
        assert np.allclose(self.x.grad.to_numpy(), self.x_torch.grad.numpy())
        assert np.allclose(self.y.grad.to_numpy(), self.y_torch.grad.numpy())

    def test_construction(self):
        t = Tensor([1.0, 2.0])
        assert not t.requires_grad
        assert t.grad is None
        assert t.shape == Shape(2)
        assert t.dtype is DType.DOUBLE
        value = factory.of([1.0, 2.0])
        assert Tensor(value).value is value
        assert Tensor(value, dtype=DType.FLOAT).dtype is DType.FLOAT
        assert Tensor(3.0).rank == 0
        assert Tensor(Tensor([1.0])).value.to_list() == [1.0]

    def test_sum_gradient_is_ones(self):
        x = Tensor([1.0, 2.0, 3.0, 4.0], requires_grad=True)
        x.sum().backward()
        assert x.grad.to_list() == [1.0, 1.0, 1.0, 1.0]

    def test_mean1d_gradient(self):
        x = Tensor([1.0, 2.0, 3.0, 4.0], requires_grad=True)
        out = x.mean1d(0)
        assert out.item() == 2.5
        out.backward()
        assert x.grad.to_list() == [0.25] * 4

    def test_add(self):
        (self.x + self.y).sum().backward()
        (self.x_torch + self.y_torch).sum().backward()
        self.assert_grads_match()

    def test_sub(self):
        out = self.x - self.y
        out_torch = self.x_torch - self.y_torch
        assert np.allclose(out.numpy(), out_torch.detach().numpy())
        out.sum().backward()
        out_torch.sum().backward()
        self.assert_grads_match()

    def test_mul(self):
        (self.x * self.y).sum().backward()
        (self.x_torch * self.y_torch).sum().backward()
        self.assert_grads_match()

    def test_div(self):
        out = self.x / self.y
        out_torch = self.x_torch / self.y_torch
        assert np.allclose(out.numpy(), out_torch.detach().numpy())
        out.sum().backward()
        out_torch.sum().backward()
        self.assert_grads_match()

    def test_div_matches_central_differences(self):
        errors = gradient_errors(lambda a, b: a / b, [self.x, self.y])
        assert max(errors) < 1e-6

    def test_div_broadcast_error_before_compute(self):
        with pytest.raises(ValueError):
            Tensor(np.ones((2, 3))) / Tensor(np.ones((2,)))

    def test_broadcast_gradients_reduce_to_operand_shape(self):
        col = Tensor(np.random.randn(2, 1), requires_grad=True)
        col_torch = torch.tensor(col.numpy(), requires_grad=True)
        (self.x * col).sum().backward()
        (self.x_torch * col_torch).sum().backward()
        assert col.grad.shape == Shape(2, 1)
        assert np.allclose(col.grad.to_numpy(), col_torch.grad.numpy())

    def test_scalar_operands(self):
        out = 2 * self.x - 1 + 1 / self.y
        out_torch = 2 * self.x_torch - 1 + 1 / self.y_torch
        assert np.allclose(out.numpy(), out_torch.detach().numpy())
        out.sum().backward()
        out_torch.sum().backward()
        self.assert_grads_match()

    def test_unary(self):
        out = (-self.x).sqr() + self.y.sqrt() + self.x.identity()
        out_torch = (-self.x_torch) ** 2 + self.y_torch.sqrt() + self.x_torch
        assert np.allclose(out.numpy(), out_torch.detach().numpy())
        out.sum().backward()
        out_torch.sum().backward()
        self.assert_grads_match()

    def test_reused_operand_accumulates(self):
        x = Tensor([1.0, -2.0, 3.0], requires_grad=True)
        (x * x).sum().backward()
        assert x.grad.to_list() == [2.0, -4.0, 6.0]

    def test_diamond(self):
        c = Tensor([2.0, 4.0, 8.0])
        x = Tensor([0.5, -1.0, 2.0], requires_grad=True)
        (x / c + tanh(x)).sum().backward()
        expected = 1 / np.array([2.0, 4.0, 8.0]) + 1 - np.tanh([0.5, -1.0, 2.0]) ** 2
        assert np.allclose(x.grad.to_numpy(), expected)
        assert c.grad is None

    def test_sum1d_and_mean(self):
        out = self.x.sum1d(0) * self.y + self.x.mean()
        out_torch = self.x_torch.sum(dim=0) * self.y_torch + self.x_torch.mean()
        assert np.allclose(out.numpy(), out_torch.detach().numpy())
        out.sum().backward()
        out_torch.sum().backward()
        self.assert_grads_match()

    def test_mean1d_negative_axis(self):
        out = self.x.mean1d(-1)
        out_torch = self.x_torch.mean(dim=-1)
        assert np.allclose(out.numpy(), out_torch.detach().numpy())
        (out * Tensor([1.0, 2.0])).sum().backward()
        (out_torch * torch.tensor([1.0, 2.0], dtype=torch.float64)).sum().backward()
        assert np.allclose(self.x.grad.to_numpy(), self.x_torch.grad.numpy())

    def test_std1d(self):
        data = np.random.randn(4, 5)
        for ddof, eps in [(0, 1e-3), (1, 0.0)]:
            x = Tensor(data, requires_grad=True)
            x_torch = torch.tensor(data, requires_grad=True)
            out = x.std1d(1, ddof=ddof, eps=eps)
            out_torch = torch.sqrt(x_torch.var(dim=1, unbiased=ddof == 1) + eps)
            assert np.allclose(out.numpy(), out_torch.detach().numpy())
            weights = np.arange(1.0, 5.0)
            (out * Tensor(weights)).sum().backward()
            (out_torch * torch.tensor(weights)).sum().backward()
            assert np.allclose(x.grad.to_numpy(), x_torch.grad.numpy())

    def test_std1d_uses_configured_epsilon(self):
        x = Tensor([1.0, 3.0])
        # variance 1, default epsilon 1e-3
        assert np.isclose(x.std1d(0).item(), np.sqrt(1.001))

    def test_std1d_with_given_mean(self):
        data = np.random.randn(3, 4)
        x = Tensor(data, requires_grad=True)
        mean = Tensor(data.mean(axis=0), requires_grad=True)
        x.std1d(0, mean=mean).sum().backward()
        assert mean.grad.to_list() == [0.0] * 4

        x_ref = Tensor(data, requires_grad=True)
        x_ref.std1d(0).sum().backward()
        assert np.allclose(x.grad.to_numpy(), x_ref.grad.to_numpy())

    def test_mean_on(self):
        data = np.random.randn(2, 3, 4)
        x = Tensor(data, requires_grad=True)
        x_torch = torch.tensor(data, requires_grad=True)
        out = x.mean_on((3, 4))
        out_torch = x_torch.mean(dim=(1, 2))
        assert out.shape == Shape(2)
        assert np.allclose(out.numpy(), out_torch.detach().numpy())
        weights = np.array([1.0, -2.0])
        (out * Tensor(weights)).sum().backward()
        (out_torch * torch.tensor(weights)).sum().backward()
        assert np.allclose(x.grad.to_numpy(), x_torch.grad.numpy())
        with pytest.raises(ValueError):
            x.mean_on((2, 3))
        with pytest.raises(ValueError):
            x.mean_on(())

    def test_mean_on_whole_shape(self):
        x = Tensor(np.arange(6.0).reshape(2, 3), requires_grad=True)
        out = x.mean_on((2, 3))
        assert out.shape == Shape()
        assert out.item() == 2.5
        out.backward()
        assert np.allclose(x.grad.to_numpy(), np.full((2, 3), 1 / 6))

    def test_std_on(self):
        data = np.random.randn(2, 3, 4)
        for ddof, eps in [(0, 1e-3), (1, 0.0)]:
            x = Tensor(data, requires_grad=True)
            x_torch = torch.tensor(data, requires_grad=True)
            out = x.std_on((3, 4), ddof=ddof, eps=eps)
            out_torch = torch.sqrt(x_torch.var(dim=(1, 2), unbiased=ddof == 1) + eps)
            assert np.allclose(out.numpy(), out_torch.detach().numpy())
            weights = np.array([0.5, 3.0])
            (out * Tensor(weights)).sum().backward()
            (out_torch * torch.tensor(weights)).sum().backward()
            assert np.allclose(x.grad.to_numpy(), x_torch.grad.numpy())

    def test_std_on_with_given_mean(self):
        data = np.random.randn(3, 2, 2)
        x = Tensor(data, requires_grad=True)
        mean = Tensor(data.reshape(3, 4).mean(axis=1), requires_grad=True)
        x.std_on((2, 2), mean=mean).sum().backward()
        assert mean.grad.to_list() == [0.0] * 3

        x_ref = Tensor(data, requires_grad=True)
        x_ref.std_on((2, 2)).sum().backward()
        assert np.allclose(x.grad.to_numpy(), x_ref.grad.to_numpy())

    def test_gather(self):
        data = np.random.randn(3, 4)
        # row 1 picks column 1 twice, its gradient is summed
        index = np.array([[0, 3], [1, 1], [2, 0]])
        x = Tensor(data, requires_grad=True)
        x_torch = torch.tensor(data, requires_grad=True)
        out = x.gather(1, index)
        out_torch = torch.gather(x_torch, 1, torch.tensor(index))
        assert np.allclose(out.numpy(), out_torch.detach().numpy())
        upstream = np.random.randn(3, 2)
        out.backward(upstream)
        out_torch.backward(torch.tensor(upstream))
        assert np.allclose(x.grad.to_numpy(), x_torch.grad.numpy())

    def test_gather_along_first_axis(self):
        index = Tensor(factory.of([[1, 0, 1]], dtype=DType.INT))
        out = self.x.gather(0, index)
        out_torch = torch.gather(self.x_torch, 0, torch.tensor([[1, 0, 1]]))
        assert out.shape == Shape(1, 3)
        assert np.allclose(out.numpy(), out_torch.detach().numpy())
        (out * self.y).sum().backward()
        (out_torch * self.y_torch).sum().backward()
        self.assert_grads_match()

    def test_backward_twice_through_shared_node(self):
        x = Tensor([1.0, 1.0], requires_grad=True)
        h = x * 2
        h.sum().backward()
        h.sum().backward()
        assert x.grad.to_list() == [4.0, 4.0]

    def test_backward_twice_from_same_root(self):
        x = Tensor([1.0, 1.0], requires_grad=True)
        loss = (x * 2).sum()
        loss.backward()
        loss.backward()
        assert x.grad.to_list() == [4.0, 4.0]

    def test_two_losses_over_shared_node(self):
        h = self.x * self.y
        h.sum().backward()
        h.sqr().sum().backward()
        h_torch = self.x_torch * self.y_torch
        h_torch.sum().backward(retain_graph=True)
        (h_torch**2).sum().backward()
        self.assert_grads_match()

    def test_intermediate_nodes_keep_no_gradient(self):
        h = self.x * 2
        h.sum().backward()
        assert h.grad is None
        assert np.allclose(self.x.grad.to_numpy(), np.full((2, 3), 2.0))

    def test_reshape(self):
        out = self.x.reshape(3, 2) * Tensor(np.arange(6.0).reshape(3, 2))
        out.sum().backward()
        assert self.x.grad.shape == Shape(2, 3)
        assert np.allclose(self.x.grad.to_numpy(), np.arange(6.0).reshape(2, 3))

    def test_reshape_of_non_contiguous_value(self):
        x = Tensor(factory.of(self.x_data.T).transpose(), requires_grad=True)
        out = x.reshape(-1)
        assert np.allclose(out.numpy(), self.x_data.reshape(-1))
        (out * Tensor(np.arange(6.0))).sum().backward()
        assert np.allclose(x.grad.to_numpy(), np.arange(6.0).reshape(2, 3))

    def test_narrow(self):
        out = self.x.narrow(1, 1, 3)
        assert np.allclose(out.numpy(), self.x_data[:, 1:3])
        out.sum().backward()
        assert self.x.grad.to_list() == [[0.0, 1.0, 1.0], [0.0, 1.0, 1.0]]

    def test_split(self):
        x = Tensor(np.random.randn(5, 2), requires_grad=True)
        x_torch = torch.tensor(x.numpy(), requires_grad=True)
        parts = x.split(0, 0, 2, 4)
        parts_torch = torch.split(x_torch, 2, dim=0)
        assert [p.shape.dims for p in parts] == [(2, 2), (2, 2), (1, 2)]
        loss = parts[0].sum() + parts[1].sqr().sum() * 2 + parts[2].sum() * 3
        loss_torch = parts_torch[0].sum() + (parts_torch[1] ** 2).sum() * 2 + parts_torch[2].sum() * 3
        loss.backward()
        loss_torch.backward()
        assert np.allclose(x.grad.to_numpy(), x_torch.grad.numpy())
        # pieces start at the given indices, rows before the first one are left out
        tail = x.split(0, 1, 4)
        assert [p.shape.dims for p in tail] == [(3, 2), (1, 2)]
        assert np.allclose(tail[0].numpy(), x.numpy()[1:4])
        with pytest.raises(ValueError):
            x.split(0)
        with pytest.raises(ValueError):
            x.split(0, 3, 1)
        with pytest.raises(ValueError):
            x.split(0, 5)

    def test_stretch(self):
        out = self.y.stretch(0)
        assert out.shape == Shape(1, 3)
        (out * self.x).sum().backward()
        (self.y_torch.unsqueeze(0) * self.x_torch).sum().backward()
        self.assert_grads_match()

    def test_no_grad_inputs(self):
        a = Tensor([1.0, 2.0])
        b = Tensor([3.0, 4.0])
        out = a * b
        assert not out.requires_grad
        assert out.back_edges == []
        out.backward()
        assert a.grad is None and b.grad is None

    def test_only_grad_inputs_get_edges(self):
        a = Tensor([1.0, 2.0], requires_grad=True)
        b = Tensor([3.0, 4.0])
        out = a * b
        assert out.requires_grad
        assert [e.ref for e in out.back_edges] == [a]
        out.sum().backward()
        assert a.grad.to_list() == [3.0, 4.0]
        assert b.grad is None

    def test_explicit_seed_gradient(self):
        out = self.x * 3
        out.backward(np.ones((2, 3)) * 2)
        assert np.allclose(self.x.grad.to_numpy(), np.full((2, 3), 6.0))
        with pytest.raises(ValueError):
            (self.x * 3).backward([1.0, 2.0])

    def test_gradients_accumulate_until_zeroed(self):
        self.x.sum().backward()
        self.x.sum().backward()
        assert np.allclose(self.x.grad.to_numpy(), np.full((2, 3), 2.0))
        zero_grad([self.x, self.y])
        assert self.x.grad is None
        backward(self.x.sum())
        assert np.allclose(self.x.grad.to_numpy(), np.ones((2, 3)))

    def test_first_gradient_is_copied(self):
        seed = factory.ones((2, 3))
        self.x.identity().backward(seed)
        seed.fill_(5.0)
        assert np.allclose(self.x.grad.to_numpy(), np.ones((2, 3)))

    def test_add_grad_shape_check(self):
        with pytest.raises(ValueError):
            self.x.add_grad(factory.ones((3, 2)))

    def test_detach(self):
        d = (self.x * 2).detach()
        assert not d.requires_grad
        assert d.back_edges == []
        (d * self.y).sum().backward()
        assert self.x.grad is None

    def test_nodes_are_numbered_in_construction_order(self):
        a = Tensor(1.0, requires_grad=True)
        b = a * 2
        c = b + a
        assert a.seq < b.seq < c.seq

    def test_reduce_to_shape(self):
        grad = factory.ones((4, 2, 3))
        assert Function.reduce_to_shape(grad, Shape(3)).to_list() == [8.0] * 3
        assert Function.reduce_to_shape(grad, Shape(2, 1)).to_list() == [[12.0], [12.0]]
        assert Function.reduce_to_shape(grad, Shape()).item() == 24.0
        assert Function.reduce_to_shape(grad, Shape(4, 2, 3)) is grad

    def test_repr(self):
        assert "requires_grad=True" in repr(Tensor([1.0], requires_grad=True, name="w"))


class TestNumericalGradient(TestCase):
    def test_numerical_gradient_of_square(self):
        x = Tensor([1.0, -2.0, 0.5], requires_grad=True)
        grad = numerical_gradient(lambda t: t.sqr(), [x], 0)
        assert np.allclose(grad.to_numpy(), [2.0, -4.0, 1.0], atol=1e-6)
        # the input is restored
        assert x.value.to_list() == [1.0, -2.0, 0.5]

    def test_errors_skip_inputs_without_grad(self):
        x = Tensor([1.0, 2.0], requires_grad=True)
        c = Tensor([3.0, 4.0])
        errors = gradient_errors(lambda a, b: a * b, [x, c])
        assert errors[0] < 1e-6
        assert np.isnan(errors[1])
