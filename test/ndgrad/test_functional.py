from unittest import TestCase

import numpy as np
import pytest
import torch  # for comparison

from ndgrad import functional
from ndgrad.array import factory
from ndgrad.array.ops import Compare
from ndgrad.errors import AxisError
from ndgrad.tensor import Tensor


class TestActivationFunctions(TestCase):
    def setUp(self) -> None:
        torch.manual_seed(42)
        np.random.seed(42)
        self.data = np.random.randn(3, 4)
        self.x = Tensor(self.data, requires_grad=True)
        self.x_torch = torch.tensor(self.data, requires_grad=True)
        self.upstream = np.random.randn(3, 4)

    def check(self, out, out_torch):
        """Compare the forward values and the gradients for the same upstream gradient."""
        assert np.allclose(out.numpy(), out_torch.detach().numpy())
        out.backward(self.upstream)
        out_torch.backward(torch.tensor(self.upstream))
        assert np.allclose(self.x.grad.to_numpy(), self.x_torch.grad.numpy())

    def test_tanh(self):
        self.check(functional.tanh(self.x), torch.tanh(self.x_torch))

    def test_tanh_gradient_never_grows(self):
        out = functional.tanh(Tensor(np.linspace(-5, 5, 11), requires_grad=True))
        upstream = np.random.randn(11)
        out.backward(upstream)
        grad = out.creator.tensors[0].grad.to_numpy()
        assert (np.abs(grad) <= np.abs(upstream)).all()

    def test_sigmoid(self):
        self.check(functional.sigmoid(self.x), torch.sigmoid(self.x_torch))

    def test_exp(self):
        self.check(functional.exp(self.x), torch.exp(self.x_torch))

    def test_log(self):
        data = np.random.uniform(0.5, 2.0, (3, 4))
        x = Tensor(data, requires_grad=True)
        x_torch = torch.tensor(data, requires_grad=True)
        out = functional.log(x)
        out_torch = torch.log(x_torch)
        assert np.allclose(out.numpy(), out_torch.detach().numpy())
        out.sum().backward()
        out_torch.sum().backward()
        assert np.allclose(x.grad.to_numpy(), x_torch.grad.numpy())

    def test_log_epsilon(self):
        x = Tensor([0.0, 1.0], requires_grad=True)
        out = functional.log(x, eps=1e-8)
        assert np.isfinite(out.numpy()).all()
        out.sum().backward()
        assert np.allclose(x.grad.to_numpy(), [1e8, 1 / (1 + 1e-8)])

    def test_softmax(self):
        for axis in (0, 1, -1):
            self.x.zero_grad()
            self.x_torch.grad = None
            self.check(
                functional.softmax(self.x, axis=axis),
                torch.softmax(self.x_torch, dim=axis),
            )

    def test_log_softmax(self):
        for axis in (0, -1):
            self.x.zero_grad()
            self.x_torch.grad = None
            self.check(
                functional.log_softmax(self.x, axis=axis),
                torch.log_softmax(self.x_torch, dim=axis),
            )

    def test_softmax_rows_sum_to_one(self):
        out = functional.softmax(Tensor(np.random.randn(5, 7) * 50))
        assert np.allclose(out.value.sum1d(1).to_numpy(), np.ones(5))

    def test_relu(self):
        self.check(functional.relu(self.x), torch.relu(self.x_torch))

    def test_max_threshold(self):
        x = Tensor([-1.0, 0.5, 2.0], requires_grad=True)
        out = functional.max_threshold(x, 0.5)
        assert out.value.to_list() == [0.5, 0.5, 2.0]
        out.sum().backward()
        assert x.grad.to_list() == [0.0, 0.0, 1.0]


class TestCompare(TestCase):
    def test_compare_true(self):
        x = Tensor([-1.0, 0.0, 2.0, 3.0], requires_grad=True)
        out = functional.compare_true(x, Compare.GE, 2.0)
        assert out.value.to_list() == [0.0, 0.0, 2.0, 3.0]
        out.sum().backward()
        assert x.grad.to_list() == [0.0, 0.0, 1.0, 1.0]

    def test_compare_false(self):
        x = Tensor([-1.0, 0.0, 2.0, 3.0], requires_grad=True)
        out = functional.compare_false(x, Compare.GE, 2.0)
        assert out.value.to_list() == [-1.0, 0.0, 0.0, 0.0]
        out.sum().backward()
        assert x.grad.to_list() == [1.0, 1.0, 0.0, 0.0]

    def test_masks_are_complementary(self):
        data = np.random.randn(10)
        for cmp in Compare:
            a = functional.compare_true(Tensor(data), cmp, 0.1)
            b = functional.compare_false(Tensor(data), cmp, 0.1)
            assert np.allclose(a.numpy() + b.numpy(), data)


class TestStandardize(TestCase):
    def setUp(self) -> None:
        torch.manual_seed(42)
        np.random.seed(42)
        self.data = np.random.randn(3, 4, 5)
        self.x = Tensor(self.data, requires_grad=True)
        self.x_torch = torch.tensor(self.data, requires_grad=True)
        self.upstream = np.random.randn(3, 4, 5)

    def check(self, out, out_torch):
        assert np.allclose(out.numpy(), out_torch.detach().numpy())
        out.backward(self.upstream)
        out_torch.backward(torch.tensor(self.upstream))
        assert np.allclose(self.x.grad.to_numpy(), self.x_torch.grad.numpy())

    def test_standardize1d(self):
        out = functional.standardize1d(self.x, 1, ddof=1, eps=1e-3)
        mean = self.x_torch.mean(dim=1, keepdim=True)
        var = self.x_torch.var(dim=1, unbiased=True, keepdim=True)
        self.check(out, (self.x_torch - mean) / torch.sqrt(var + 1e-3))

    def test_standardize1d_last_axis(self):
        out = functional.standardize1d(self.x, -1, eps=1e-5)
        self.check(out, torch.nn.functional.layer_norm(self.x_torch, (5,), eps=1e-5))

    def test_standardize_on(self):
        out = functional.standardize_on(self.x, (4, 5), eps=1e-5)
        assert out.shape == self.x.shape
        self.check(out, torch.nn.functional.layer_norm(self.x_torch, (4, 5), eps=1e-5))

    def test_standardize_on_broadcast_upstream(self):
        weights = np.random.randn(5)
        out = functional.standardize_on(self.x, (4, 5), ddof=1, eps=0.0)
        (out * Tensor(weights)).sum().backward()
        mean = self.x_torch.mean(dim=(1, 2), keepdim=True)
        var = self.x_torch.var(dim=(1, 2), unbiased=True, keepdim=True)
        out_torch = (self.x_torch - mean) / torch.sqrt(var)
        (out_torch * torch.tensor(weights)).sum().backward()
        assert np.allclose(self.x.grad.to_numpy(), self.x_torch.grad.numpy())

    def test_standardized_lanes_have_zero_mean_and_unit_std(self):
        out = functional.standardize1d(Tensor(self.data), 2, eps=0.0).numpy()
        assert np.allclose(out.mean(axis=2), 0.0)
        assert np.allclose(out.std(axis=2), 1.0)

    def test_shape_errors(self):
        with pytest.raises(ValueError):
            functional.standardize_on(self.x, (3, 4))
        with pytest.raises(AxisError):
            functional.standardize1d(self.x, 3)


class TestDropout(TestCase):
    def setUp(self) -> None:
        self.data = np.random.randn(20, 10)

    def test_zero_probability_is_identity(self):
        x = Tensor(self.data, requires_grad=True)
        out = functional.dropout(x, 0.0, np.random.default_rng(0))
        assert np.allclose(out.numpy(), self.data)
        out.sum().backward()
        assert np.allclose(x.grad.to_numpy(), np.ones((20, 10)))

    def test_full_probability_zeros_everything(self):
        x = Tensor(self.data, requires_grad=True)
        out = functional.dropout(x, 1.0, np.random.default_rng(0))
        assert np.allclose(out.numpy(), 0.0)
        out.sum().backward()
        assert np.allclose(x.grad.to_numpy(), 0.0)

    def test_mask_and_scaling(self):
        x = Tensor(self.data, requires_grad=True)
        out = functional.dropout(x, 0.3, np.random.default_rng(0))
        mask = out.creator.mask.to_numpy()
        assert set(np.unique(mask)) <= {0.0, 1.0}
        assert 0 < mask.sum() < mask.size
        assert np.allclose(out.numpy(), self.data * mask / 0.7)
        # the backward pass only applies the mask
        out.sum().backward()
        assert np.allclose(x.grad.to_numpy(), mask)

    def test_same_seed_same_mask(self):
        a = functional.dropout(Tensor(self.data), 0.5, np.random.default_rng(7))
        b = functional.dropout(Tensor(self.data), 0.5, np.random.default_rng(7))
        assert np.allclose(a.numpy(), b.numpy())

    def test_inplace(self):
        x = Tensor(self.data.copy())
        out = functional.dropout(x, 0.5, np.random.default_rng(0), inplace=True)
        assert out.value is x.value
        assert not np.allclose(x.numpy(), self.data)

    def test_invalid_probability(self):
        x = Tensor(self.data)
        with pytest.raises(ValueError):
            functional.dropout(x, -0.1)
        with pytest.raises(ValueError):
            functional.dropout(x, 1.5)


class TestBatchVtm(TestCase):
    def setUp(self) -> None:
        torch.manual_seed(42)
        np.random.seed(42)
        self.b, self.n, self.k = 3, 4, 2

    def run_case(self, v_shape, m_shape, reference):
        v_data = np.random.randn(*v_shape)
        m_data = np.random.randn(*m_shape)
        v = Tensor(v_data, requires_grad=True)
        m = Tensor(m_data, requires_grad=True)
        v_torch = torch.tensor(v_data, requires_grad=True)
        m_torch = torch.tensor(m_data, requires_grad=True)

        out = functional.bvtm(v, m)
        out_torch = reference(v_torch, m_torch)
        assert np.allclose(out.numpy(), out_torch.detach().numpy())

        upstream = np.random.randn(*out_torch.shape)
        out.backward(upstream)
        out_torch.backward(torch.tensor(upstream))
        return v, m, v_torch, m_torch

    def test_vector_times_matrix(self):
        v, m, v_torch, m_torch = self.run_case((self.n,), (self.n, self.k), lambda v, m: v @ m)
        assert np.allclose(v.grad.to_numpy(), v_torch.grad.numpy())
        assert np.allclose(m.grad.to_numpy(), m_torch.grad.numpy())

    def test_batch_of_vectors_shared_matrix(self):
        v, m, v_torch, m_torch = self.run_case(
            (self.b, self.n), (self.n, self.k), lambda v, m: v @ m
        )
        assert np.allclose(v.grad.to_numpy(), v_torch.grad.numpy())
        # the shared matrix sums the contributions of the batch
        assert np.allclose(m.grad.to_numpy(), m_torch.grad.numpy())

    def test_batch_of_vectors_and_matrices(self):
        v, m, v_torch, m_torch = self.run_case(
            (self.b, self.n),
            (self.b, self.n, self.k),
            lambda v, m: torch.bmm(v.unsqueeze(1), m).squeeze(1),
        )
        assert np.allclose(v.grad.to_numpy(), v_torch.grad.numpy())
        assert np.allclose(m.grad.to_numpy(), m_torch.grad.numpy())

    def test_shared_vector_gets_mean_of_contributions(self):
        v, m, v_torch, m_torch = self.run_case(
            (self.n,),
            (self.b, self.n, self.k),
            lambda v, m: torch.einsum("n,bnk->bk", v, m),
        )
        assert np.allclose(m.grad.to_numpy(), m_torch.grad.numpy())
        assert np.allclose(v.grad.to_numpy(), v_torch.grad.numpy() / self.b)

    def test_shape_errors(self):
        with pytest.raises(ValueError):
            functional.bvtm(Tensor(np.ones((2, 3))), Tensor(np.ones((4, 2))))
        with pytest.raises(ValueError):
            functional.bvtm(Tensor(np.ones((2, 3))), Tensor(np.ones((5, 3, 2))))
        with pytest.raises(ValueError):
            functional.bvtm(Tensor(np.ones((2, 2, 3))), Tensor(np.ones((3, 2))))

    def test_values_on_list_storage(self):
        v = Tensor(factory.of([[1.0, 2.0]], storage="list"))
        m = Tensor(factory.of([[[1.0, 0.0], [0.0, 1.0]]], storage="list"))
        assert functional.bvtm(v, m).value.to_list() == [[1.0, 2.0]]
