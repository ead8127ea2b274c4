"""
Shared fixtures for the path-tracking controller tests.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from controller.control_model.TrackingNLP import TrackingNLP
from controller.control_utils.config import load_config
from controller.control_utils.roadmap import RoadmapStore


def build_nlp(N=5, index_style=0, **overrides):
    """TrackingNLP from the packaged defaults with a short horizon."""
    cfg = load_config(overrides={"time": {"N": N}, **overrides})
    return TrackingNLP(cfg["time"], cfg["constraints"], cfg["controller"], cfg["reference"],
                       index_style=index_style)


def straight_roadmap(length=50, spacing=1.0, y=0.0):
    store = RoadmapStore()
    store.ingest("\n".join(f"{i * spacing},{y}" for i in range(length + 1)))
    return store


def random_iterate(nlp, seed=0):
    """Moderate iterate inside the region where tan(delta) is well behaved."""
    rng = np.random.default_rng(seed)
    x = rng.uniform(-0.5, 0.5, nlp.n)
    for k in range(nlp.N):
        x[nlp.state_index(k, 3)] = rng.uniform(2.0, 6.0)
        x[nlp.control_index(k, 0)] = rng.uniform(-0.3, 0.3)
    return x


@pytest.fixture
def config():
    return load_config()


@pytest.fixture
def small_nlp():
    return build_nlp(N=5)


@pytest.fixture
def curve_coeffs():
    return np.array([0.3, 0.05, 0.01, -0.0005])
