"""
Tests for cold-start generation and warm-start shifting.
"""

import numpy as np
import pytest

from controller.control_utils.warmstart import Warmstart


class TestColdStart:

    def test_hold_replicates_state_with_zero_actuation(self):
        x0 = np.array([1.0, 2.0, 0.3, 5.0, 0.1, -0.1])
        guess = Warmstart("hold").generate(x0, 4)

        assert guess.shape == (4, 8)
        np.testing.assert_allclose(guess[:, :6], np.tile(x0, (4, 1)))
        np.testing.assert_allclose(guess[:, 6:], 0.0)

    def test_const_vx_rolls_out_along_heading(self):
        guess = Warmstart("const_vx").generate([0, 0, 0, 5, 0, 0], 3, dt=0.1)
        np.testing.assert_allclose(guess[:, 0], [0.0, 0.5, 1.0])
        np.testing.assert_allclose(guess[:, 1], 0.0)

    def test_const_vx_requires_dt(self):
        with pytest.raises(ValueError):
            Warmstart("const_vx").generate([0, 0, 0, 5, 0, 0], 3)

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            Warmstart("spline").generate([0, 0, 0, 5, 0, 0], 3)

    def test_short_state_and_empty_horizon(self):
        with pytest.raises(ValueError):
            Warmstart().generate([0, 0, 0], 3)
        with pytest.raises(ValueError):
            Warmstart().generate([0, 0, 0, 5, 0, 0], 0)


class TestShift:

    def test_shift_moves_rows_and_pads_tail(self):
        previous = np.arange(24, dtype=float).reshape(3, 8)
        x0 = -np.ones(6)
        guess = Warmstart().shift(previous, x0)

        np.testing.assert_allclose(guess[0, :6], x0)
        np.testing.assert_allclose(guess[0, 6:], previous[1, 6:])
        np.testing.assert_allclose(guess[1], previous[2])
        np.testing.assert_allclose(guess[2], previous[2])

    def test_shift_blocks(self):
        values = np.array([1.0, 1.0, 2.0, 2.0, 3.0, 3.0])
        np.testing.assert_allclose(Warmstart.shift_blocks(values, 2), [2, 2, 3, 3, 3, 3])

    def test_shift_blocks_single_block_is_unchanged(self):
        values = np.array([1.0, 2.0])
        np.testing.assert_allclose(Warmstart.shift_blocks(values, 2), values)
