"""
Copyright 2025 AUMOVIO. All rights reserved.
"""
import logging
import math
from typing import Optional, Tuple

import numpy as np
from numpy.polynomial import polynomial as P

from controller.control_utils.errors import EndOfPathError, InputMalformedError

logger = logging.getLogger(__name__)


def to_vehicle_frame(xs, ys, px: float, py: float, psi: float) -> Tuple[np.ndarray, np.ndarray]:
    """Express world points in the frame of a vehicle at (px, py) heading psi."""
    dx = np.asarray(xs, dtype=float) - px
    dy = np.asarray(ys, dtype=float) - py
    c, s = math.cos(psi), math.sin(psi)
    return dx * c + dy * s, -dx * s + dy * c


def to_world_frame(lx, ly, px: float, py: float, psi: float) -> Tuple[np.ndarray, np.ndarray]:
    """Inverse of :func:`to_vehicle_frame`."""
    lx = np.asarray(lx, dtype=float)
    ly = np.asarray(ly, dtype=float)
    c, s = math.cos(psi), math.sin(psi)
    return px + lx * c - ly * s, py + lx * s + ly * c


def reframe_states(states: np.ndarray, from_pose, to_pose) -> np.ndarray:
    """
    Move a block of [x, y, psi, ...] rows from one vehicle frame into another.

    Only the pose columns change; speed and the error states are frame free.
    """
    out = np.array(states, dtype=float, copy=True)
    wx, wy = to_world_frame(out[:, 0], out[:, 1], *from_pose)
    out[:, 0], out[:, 1] = to_vehicle_frame(wx, wy, *to_pose)
    out[:, 2] = out[:, 2] + from_pose[2] - to_pose[2]
    return out


def polyeval(coeffs, x):
    """Evaluate ascending-order coefficients at x."""
    return P.polyval(x, coeffs)


def initial_errors(coeffs) -> Tuple[float, float]:
    """Cross-track and heading error of a vehicle sitting at the local origin."""
    coeffs = np.asarray(coeffs, dtype=float)
    cte = float(coeffs[0])
    epsi = -math.atan(float(coeffs[1])) if coeffs.size > 1 else 0.0
    return cte, epsi


class ReferenceFitter:
    """
    Fit a local polynomial to the centerline ahead of the vehicle.

    The window starts ``lookbehind`` samples before the centerline point nearest
    to the vehicle and ends ``lookahead`` samples after it. Its points are moved
    into the vehicle frame and cut at the first sample whose local x does not
    increase, so the remaining points describe y as a function of x. A least
    squares fit of degree ``degree`` through them gives the ascending-order
    coefficient vector tracked by the MPC cost.

    When fewer than ``min_points`` samples survive, or their local x spread is
    below ``min_span``, the path is considered finished and
    :class:`EndOfPathError` is raised instead of returning an ill-conditioned fit.
    """

    def __init__(self, degree: int = 3, lookbehind: int = 1, lookahead: int = 10,
                 min_points: Optional[int] = None, min_span: float = 1e-3):
        if degree < 1:
            raise ValueError("degree must be at least 1.")
        self.degree = int(degree)
        self.lookbehind = max(0, int(lookbehind))
        self.lookahead = int(lookahead)
        self.min_points = int(min_points) if min_points is not None else self.degree + 1
        if self.min_points < self.degree + 1:
            raise ValueError("min_points must be at least degree + 1.")
        if self.lookahead + 1 < self.min_points:
            raise ValueError("lookahead too short to ever collect min_points samples.")
        self.min_span = float(min_span)

    @property
    def n_coeffs(self) -> int:
        return self.degree + 1

    @classmethod
    def from_config(cls, cfg: dict) -> "ReferenceFitter":
        return cls(
            degree=cfg.get("degree", 3),
            lookbehind=cfg.get("lookbehind", 1),
            lookahead=cfg.get("lookahead", 10),
            min_points=cfg.get("min_points"),
            min_span=cfg.get("min_span", 1e-3),
        )

    def fit(self, px: float, py: float, psi: float, cl_x, cl_y) -> np.ndarray:
        if not all(math.isfinite(v) for v in (px, py, psi)):
            raise InputMalformedError(f"vehicle pose must be finite, got {(px, py, psi)}")
        cl_x = np.asarray(cl_x, dtype=float)
        cl_y = np.asarray(cl_y, dtype=float)
        if cl_x.size == 0:
            raise EndOfPathError("roadmap holds no centerline samples")

        nearest = int(np.argmin(np.hypot(cl_x - px, cl_y - py)))
        lo = max(0, nearest - self.lookbehind)
        hi = min(cl_x.size, nearest + self.lookahead + 1)
        lx, ly = to_vehicle_frame(cl_x[lo:hi], cl_y[lo:hi], px, py, psi)

        # keep the monotone prefix, y(x) is single valued there
        steps = np.diff(lx)
        stop = np.flatnonzero(steps <= 0.0)
        if stop.size:
            lx, ly = lx[:stop[0] + 1], ly[:stop[0] + 1]

        if lx.size < self.min_points:
            raise EndOfPathError(
                f"only {lx.size} usable centerline samples ahead of index {nearest}, need {self.min_points}")
        if lx[-1] - lx[0] < self.min_span:
            raise EndOfPathError(f"centerline window spans {lx[-1] - lx[0]:.3g} m, below {self.min_span} m")

        coeffs = P.polyfit(lx, ly, self.degree)
        logger.debug(f"Fitted reference on samples [{lo}, {hi}) -> {np.round(coeffs, 5)}")
        return np.asarray(coeffs, dtype=float)

    def fit_roadmap(self, roadmap, px: float, py: float, psi: float) -> np.ndarray:
        return self.fit(px, py, psi, roadmap.cl_x, roadmap.cl_y)
