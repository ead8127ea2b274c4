"""
Tests for the local polynomial reference fit and the frame helpers.
"""

import math

import numpy as np
import pytest

from conftest import straight_roadmap
from controller.control_utils.errors import EndOfPathError, InputMalformedError
from controller.control_utils.reference_fit import (
    ReferenceFitter,
    initial_errors,
    polyeval,
    reframe_states,
    to_vehicle_frame,
    to_world_frame,
)
from controller.control_utils.roadmap import RoadmapStore


class TestFrames:

    def test_vehicle_and_world_frames_are_inverse(self):
        xs, ys = np.array([1.0, 3.0, -2.0]), np.array([0.5, -1.0, 4.0])
        lx, ly = to_vehicle_frame(xs, ys, 1.0, 2.0, 0.7)
        wx, wy = to_world_frame(lx, ly, 1.0, 2.0, 0.7)
        np.testing.assert_allclose(wx, xs)
        np.testing.assert_allclose(wy, ys)

    def test_point_ahead_lies_on_local_x_axis(self):
        lx, ly = to_vehicle_frame([1.0], [1.0], 0.0, 0.0, math.pi / 4)
        np.testing.assert_allclose(lx, [math.sqrt(2)])
        np.testing.assert_allclose(ly, [0.0], atol=1e-12)

    def test_reframe_states_moves_pose_columns_only(self):
        states = np.array([[2.0, 0.0, 0.0, 5.0, 0.1, 0.2]])
        out = reframe_states(states, (0.0, 0.0, 0.0), (1.0, 0.0, 0.0))

        np.testing.assert_allclose(out[0, :3], [1.0, 0.0, 0.0])
        np.testing.assert_allclose(out[0, 3:], states[0, 3:])
        # input untouched
        assert states[0, 0] == 2.0


class TestReferenceFitter:

    def test_straight_roadmap_fits_zero_polynomial(self):
        store = RoadmapStore()
        store.ingest("0,0\n1,0\n2,0\n3,0")

        coeffs = ReferenceFitter(degree=3).fit_roadmap(store, 0.0, 0.0, 0.0)
        assert coeffs.shape == (4,)
        np.testing.assert_allclose(coeffs, 0.0, atol=1e-9)

    def test_lateral_offset_shows_up_as_constant_term(self):
        coeffs = ReferenceFitter().fit_roadmap(straight_roadmap(y=1.0), 0.0, 0.0, 0.0)
        np.testing.assert_allclose(coeffs, [1.0, 0.0, 0.0, 0.0], atol=1e-9)

        cte, epsi = initial_errors(coeffs)
        assert cte == pytest.approx(1.0)
        assert epsi == pytest.approx(0.0, abs=1e-9)

    def test_heading_offset_shows_up_as_heading_error(self):
        coeffs = ReferenceFitter().fit_roadmap(straight_roadmap(), 0.0, 0.0, 0.1)

        assert coeffs[1] == pytest.approx(-math.tan(0.1), abs=1e-9)
        _, epsi = initial_errors(coeffs)
        assert epsi == pytest.approx(0.1, abs=1e-9)

    def test_parabola_is_recovered(self):
        xs = np.arange(0.0, 11.0)
        store = RoadmapStore()
        store.ingest("\n".join(f"{x},{0.1 * x * x}" for x in xs))

        coeffs = ReferenceFitter(degree=3, lookahead=10).fit_roadmap(store, 0.0, 0.0, 0.0)
        np.testing.assert_allclose(coeffs, [0.0, 0.0, 0.1, 0.0], atol=1e-8)
        assert polyeval(coeffs, 4.0) == pytest.approx(1.6)

    def test_end_of_path(self):
        """At the last waypoint too few samples remain ahead."""
        with pytest.raises(EndOfPathError):
            ReferenceFitter().fit_roadmap(straight_roadmap(length=50), 50.0, 0.0, 0.0)

    def test_samples_behind_the_vehicle_are_cut(self):
        """Facing backwards, the window collapses to the nearest samples."""
        with pytest.raises(EndOfPathError):
            ReferenceFitter().fit_roadmap(straight_roadmap(), 10.0, 0.0, math.pi)

    def test_empty_roadmap(self):
        with pytest.raises(EndOfPathError):
            ReferenceFitter().fit_roadmap(RoadmapStore(), 0.0, 0.0, 0.0)

    def test_non_finite_pose(self):
        with pytest.raises(InputMalformedError):
            ReferenceFitter().fit_roadmap(straight_roadmap(), float("nan"), 0.0, 0.0)

    def test_from_config(self, config):
        fitter = ReferenceFitter.from_config(config["reference"])
        assert fitter.degree == 3
        assert fitter.n_coeffs == 4
        assert fitter.min_points == 4

    @pytest.mark.parametrize("kwargs", [{"degree": 0}, {"degree": 3, "min_points": 2}, {"lookahead": 1}])
    def test_invalid_construction(self, kwargs):
        with pytest.raises(ValueError):
            ReferenceFitter(**kwargs)
