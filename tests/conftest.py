from __future__ import annotations

import os
import random

import numpy as np
import pytest

from tiny_factorgraph.utils.config import config as tfg_config

DEFAULT_SEED = int(os.getenv("TINY_FACTORGRAPH_SEED", "1234"))


def pytest_configure(config) -> None:  # pylint: disable=unused-argument
    random.seed(DEFAULT_SEED)
    np.random.seed(DEFAULT_SEED)

    try:
        import torch

        torch.manual_seed(DEFAULT_SEED)
    except ModuleNotFoundError:
        pass

    try:
        from jax import random as jrandom

        jrandom.PRNGKey(DEFAULT_SEED)
    except ModuleNotFoundError:
        pass


@pytest.fixture(autouse=True)
def _default_config(monkeypatch):
    # Tests assume sequential execution without debug validation unless
    # they opt in.
    monkeypatch.setattr(tfg_config, "debug", False)
    monkeypatch.setattr(tfg_config, "n_thread", 1)
