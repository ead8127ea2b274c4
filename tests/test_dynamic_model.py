"""
Tests for the kinematic bicycle model and its discrete step.
"""

import math

import numpy as np
import pytest

from controller.control_utils.dynamic_model import KinematicBicycle


def step(model, state, control, coeffs, dt=0.1):
    F = model.get_step(dt)
    return F(np.asarray(state, dtype=float), np.asarray(control, dtype=float),
             np.asarray(coeffs, dtype=float)).full().reshape(-1)


class TestKinematicBicycle:

    def test_straight_step_on_straight_reference(self):
        model = KinematicBicycle(wheelbase=2.67)
        nxt = step(model, [0, 0, 0, 5, 0, 0], [0, 0], [0, 0, 0, 0])
        np.testing.assert_allclose(nxt, [0.5, 0, 0, 5, 0, 0], atol=1e-12)

    def test_acceleration_and_yaw_rate(self):
        model = KinematicBicycle(wheelbase=2.0)
        nxt = step(model, [0, 0, 0, 4, 0, 0], [0.2, 1.0], [0, 0, 0, 0])

        yaw_rate = 4 * math.tan(0.2) / 2.0
        assert nxt[2] == pytest.approx(0.1 * yaw_rate)
        assert nxt[3] == pytest.approx(4.1)
        assert nxt[5] == pytest.approx(0.1 * yaw_rate)

    def test_errors_are_reanchored_on_reference(self):
        """The error states restart from the polynomial at the current position."""
        model = KinematicBicycle(wheelbase=2.67)
        # stale error states must not leak into the next step
        nxt = step(model, [0, 0, 0, 0, 9.0, 9.0], [0, 0], [1.0, 0.5, 0, 0])

        assert nxt[4] == pytest.approx(1.0)
        assert nxt[5] == pytest.approx(-math.atan(0.5))

    def test_continuous_rhs(self):
        model = KinematicBicycle(wheelbase=2.5)
        f = model.get_f()
        rhs = f(np.array([0, 0, math.pi / 2, 3, 0, 0.1]), np.array([0, -1])).full().reshape(-1)
        np.testing.assert_allclose(rhs, [0, 3, 0, -1, -3 * math.sin(0.1), 0], atol=1e-12)

    def test_polynomial_helpers_on_numpy(self):
        coeffs = np.array([1.0, 2.0, 3.0])
        assert KinematicBicycle.polyval(coeffs, 2.0) == pytest.approx(17.0)
        assert KinematicBicycle.polyder(coeffs, 2.0) == pytest.approx(14.0)

    @pytest.mark.parametrize("kwargs", [{"wheelbase": 0.0}, {"wheelbase": 2.0, "n_coeffs": 1}])
    def test_invalid_construction(self, kwargs):
        with pytest.raises(ValueError):
            KinematicBicycle(**kwargs)

    def test_non_positive_dt(self):
        with pytest.raises(ValueError):
            KinematicBicycle(wheelbase=2.0).get_step(0.0)
