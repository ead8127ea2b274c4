"""
Tests for decoding a decision vector into a trajectory.
"""

import math

import numpy as np
import pytest

from controller.control_utils.solution import Trajectory, extract_trajectory


def layout(N):
    """Decision vector whose step k carries state [k]*6 and actuation [10k, 10k+1]."""
    blocks = [np.concatenate((np.full(6, k, dtype=float), [10.0 * k, 10.0 * k + 1])) for k in range(N)]
    return np.concatenate(blocks)


class TestExtractTrajectory:

    def test_shapes_and_values(self):
        traj = extract_trajectory(layout(3), N=3, n_states=6, n_controls=2, dt=0.1)

        assert traj.states.shape == (3, 6)
        assert traj.actuations.shape == (3, 2)
        np.testing.assert_allclose(traj.first_actuation(), [0.0, 1.0])
        np.testing.assert_allclose(traj.next_state(), np.ones(6))
        np.testing.assert_allclose(traj.as_vector(), [0, 1, 1, 1, 1, 1, 1, 1])
        assert traj.multipliers is None

    def test_dynamics_multipliers(self):
        lam = np.arange(6 + 12 + 3, dtype=float)
        traj = extract_trajectory(layout(3), 3, 6, 2, 0.1, lambda_=lam, dynamics_rows=slice(6, 18))

        assert traj.multipliers.shape == (2, 6)
        np.testing.assert_allclose(traj.multipliers[1], np.arange(12, 18))

    def test_size_mismatch(self):
        with pytest.raises(ValueError):
            extract_trajectory(np.zeros(10), 2, 6, 2, 0.1)

    def test_single_step_horizon(self):
        traj = extract_trajectory(layout(1), 1, 6, 2, 0.1)
        np.testing.assert_allclose(traj.next_state(), traj.states[0])

    def test_extraction_copies(self):
        x = layout(2)
        traj = extract_trajectory(x, 2, 6, 2, 0.1)
        x[:] = -1.0
        assert traj.states[1, 0] == 1.0


class TestTrajectory:

    def test_shifted(self):
        traj = extract_trajectory(layout(3), 3, 6, 2, 0.1)
        shifted = traj.shifted()

        np.testing.assert_allclose(shifted.states[:, 0], [1, 2, 2])
        np.testing.assert_allclose(shifted.actuations[:, 0], [10, 20, 20])
        assert shifted.N == 3

    def test_stacked_matches_decision_layout(self):
        x = layout(3)
        traj = extract_trajectory(x, 3, 6, 2, 0.1)
        np.testing.assert_allclose(traj.stacked().reshape(-1), x)

    def test_to_world(self):
        states = np.zeros((2, 6))
        states[1, 0] = 1.0
        traj = Trajectory(states=states, actuations=np.zeros((2, 2)), dt=0.1)

        world = traj.to_world(5.0, 5.0, math.pi / 2)
        np.testing.assert_allclose(world[1], [5.0, 6.0, math.pi / 2], atol=1e-12)
