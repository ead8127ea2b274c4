"""
Copyright 2025 AUMOVIO. All rights reserved.
"""
import numpy as np
from typing import Optional

class Warmstart:
    """
    Starting-point generator for the stacked [state | actuation] horizon layout.

    State (len=6): [x, y, psi, v, cte, epsi]
      x,y:  position in the frame of the current solve
      psi:  heading [rad]
      v:    speed [m/s]
      cte:  cross-track error [m]
      epsi: heading error [rad]

    Cold-start modes:
        - hold:     current state replicated over the horizon
        - const_vx: straight-line rollout at constant speed and heading
    with zero actuation in both.

    Warm start: `shift` moves a previous horizon one step forward and pads the
    tail by repeating the final step.

    Output: array shape (N, n_states + n_controls), row k is step k
    """

    def __init__(self, mode: str = "hold", n_controls: int = 2):
        self.mode = mode
        self.n_controls = n_controls

    def generate(self, x0: np.ndarray, N: int, dt: Optional[float] = None) -> np.ndarray:
        """
        Generate a cold start with the selected mode.

        Returns:
            guess: np.ndarray, shape (N, n_states + n_controls)
        """
        x0 = np.asarray(x0, dtype=float).reshape(-1)
        if x0.shape[0] < 6:
            raise ValueError("x0 must be length 6: [x, y, psi, v, cte, epsi].")
        if N < 1:
            raise ValueError("N must be at least 1.")

        if self.mode == "hold":
            states = self._hold(x0, N)
        elif self.mode == "const_vx":
            if dt is None:
                raise ValueError("const_vx requires dt.")
            states = self._const_vx(x0, N, dt)
        else:
            raise ValueError(f"Unknown mode '{self.mode}'.")
        return np.hstack((states, np.zeros((N, self.n_controls))))

    def shift(self, previous: np.ndarray, x0: np.ndarray) -> np.ndarray:
        """
        Shift a previous (N, stride) horizon one step forward.

        Row k takes row k+1, the last row is repeated and the state block of row
        0 is replaced by the measured state so the initial condition holds.
        """
        previous = np.asarray(previous, dtype=float)
        x0 = np.asarray(x0, dtype=float).reshape(-1)
        guess = np.concatenate((previous[1:], previous[-1:]), axis=0)
        guess[0, :x0.shape[0]] = x0
        return guess

    @staticmethod
    def shift_blocks(values: np.ndarray, block: int) -> np.ndarray:
        """
        Shift a flat vector of equal blocks of size `block` forward by one
        block, padding with the last block.
        """
        values = np.asarray(values, dtype=float)
        if block <= 0 or values.size < 2 * block:
            return values.copy()
        return np.concatenate((values[block:], values[-block:]))

    # ---------------- internal, all return (N, 6) ----------------

    @staticmethod
    def _hold(x0: np.ndarray, N: int) -> np.ndarray:
        return np.tile(x0[:6], (N, 1))

    def _const_vx(self, x0: np.ndarray, N: int, dt: float) -> np.ndarray:
        x, y, psi, v0, cte0, epsi0 = x0[:6]
        # s_k = k * v * dt along the initial heading
        s_incr = dt * v0 * np.arange(N, dtype=float)
        c, s = np.cos(psi), np.sin(psi)

        states = np.zeros((N, 6), dtype=float)
        states[:, 0] = x + c * s_incr
        states[:, 1] = y + s * s_incr
        states[:, 2] = psi
        states[:, 3] = v0
        states[:, 4] = cte0
        states[:, 5] = epsi0
        return states
