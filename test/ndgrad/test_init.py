from unittest import TestCase

import numpy as np
import pytest

from ndgrad.array import factory
from ndgrad.array.shape import Shape
from ndgrad.init import compute_fan_in_out, xavier_uniform
from ndgrad.tensor import Tensor


class TestInit(TestCase):
    def test_compute_fan_in_out(self):
        assert compute_fan_in_out(Shape(5, 10)) == (5, 10)
        assert compute_fan_in_out(Shape(4, 3, 2)) == (12, 6)
        with pytest.raises(ValueError):
            compute_fan_in_out(Shape(5))

    def test_xavier_uniform_in_place(self):
        w = Tensor(factory.zeros((40, 60)), requires_grad=True)
        value = w.value
        out = xavier_uniform(w, np.random.default_rng(0))
        assert out is w
        assert w.value is value
        limit = np.sqrt(6.0 / 100)
        values = w.numpy()
        assert (np.abs(values) <= limit).all()
        # uniform on [-limit, limit] has standard deviation limit / sqrt(3)
        assert np.isclose(values.std(), limit / np.sqrt(3), rtol=0.05)

    def test_xavier_uniform_is_reproducible(self):
        a = xavier_uniform(Tensor(factory.zeros((3, 4))), np.random.default_rng(1))
        b = xavier_uniform(Tensor(factory.zeros((3, 4))), np.random.default_rng(1))
        assert a.value.deep_equals(b.value)
