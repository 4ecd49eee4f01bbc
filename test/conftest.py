import numpy as np
import pytest
import torch

from ndgrad.config import EngineConfig, set_config


@pytest.fixture(autouse=True)
def seed_everything():
    """
    Seed numpy and torch before every test so that random inputs are the same
    from one run to the next.
    """
    np.random.seed(42)
    torch.manual_seed(42)
    yield


@pytest.fixture(autouse=True)
def default_config():
    """Run every test on the default engine config and restore it afterwards."""
    previous = set_config(EngineConfig())
    yield
    set_config(previous)
