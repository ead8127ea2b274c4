"""
Copyright 2025 AUMOVIO. All rights reserved.
"""
from dataclasses import dataclass
from typing import Optional

import numpy as np

from controller.control_utils.reference_fit import to_world_frame


@dataclass
class Trajectory:
    """
    Decoded horizon of one solve.

    states      (N, 6): [x, y, psi, v, cte, epsi] per step
    actuations  (N, 2): [delta, a] per step
    multipliers (N-1, 6) or None: dynamics-row multipliers, one row per transition
    """
    states: np.ndarray
    actuations: np.ndarray
    dt: float
    multipliers: Optional[np.ndarray] = None

    @property
    def N(self) -> int:
        return self.states.shape[0]

    def first_actuation(self) -> np.ndarray:
        return self.actuations[0].copy()

    def next_state(self) -> np.ndarray:
        # horizon of one step has no successor, the projection is step 0 itself
        return self.states[min(1, self.N - 1)].copy()

    def stacked(self) -> np.ndarray:
        """(N, 8) array in decision-vector order."""
        return np.hstack((self.states, self.actuations))

    def shifted(self) -> "Trajectory":
        """Horizon moved one step forward with the last step repeated."""
        return Trajectory(
            states=np.concatenate((self.states[1:], self.states[-1:])),
            actuations=np.concatenate((self.actuations[1:], self.actuations[-1:])),
            dt=self.dt,
        )

    def to_world(self, px: float, py: float, psi: float) -> np.ndarray:
        """Predicted [x, y, psi] in the world, for a horizon solved in the frame of pose (px, py, psi)."""
        wx, wy = to_world_frame(self.states[:, 0], self.states[:, 1], px, py, psi)
        return np.column_stack((wx, wy, self.states[:, 2] + psi))

    def as_vector(self) -> np.ndarray:
        """First actuation followed by the predicted next state."""
        return np.concatenate((self.first_actuation(), self.next_state()))


def extract_trajectory(x, N: int, n_states: int, n_controls: int, dt: float,
                       lambda_=None, dynamics_rows: Optional[slice] = None) -> Trajectory:
    """
    Decode a flat decision vector into a `Trajectory`.

    `lambda_` are the constraint multipliers reported by the solver and
    `dynamics_rows` the slice of the constraint vector holding the dynamics
    rows; both are needed to attach the dynamics multipliers.
    """
    stride = n_states + n_controls
    x = np.asarray(x, dtype=float).reshape(-1)
    if x.size != N * stride:
        raise ValueError(f"decision vector has {x.size} entries, expected {N * stride}")
    blocks = x.reshape(N, stride)

    multipliers = None
    if lambda_ is not None and dynamics_rows is not None:
        rows = np.asarray(lambda_, dtype=float).reshape(-1)[dynamics_rows]
        multipliers = rows.reshape(-1, n_states)

    return Trajectory(
        states=blocks[:, :n_states].copy(),
        actuations=blocks[:, n_states:].copy(),
        dt=dt,
        multipliers=multipliers,
    )
