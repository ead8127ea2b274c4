"""
Copyright 2025 AUMOVIO. All rights reserved.
"""
#!/usr/bin/env python
import logging
import numpy as np
from dataclasses import dataclass
from typing import Optional

from common_utils.time_tracking import timeit
from controller.control_model.BaseNLP import SolverReturn
from controller.control_model.TrackingNLP import TrackingNLP
from controller.control_utils.config import load_config
from controller.control_utils.nlp_solvers import build_backend
from controller.control_utils.reference_fit import ReferenceFitter, initial_errors, reframe_states
from controller.control_utils.roadmap import MalformedRecordPolicy, RoadmapStore
from controller.control_utils.solution import Trajectory, extract_trajectory
from controller.control_utils.warmstart import Warmstart

logger = logging.getLogger(__name__)


@dataclass
class MPCResult:
    """
    Outcome of one control cycle.

    `actuation` is the command to apply ([delta, a]). When the solver did not
    converge `degraded` is set, `status` keeps what the solver reported and
    `actuation` / `trajectory` come from the recovery strategy instead of the
    solver's iterate, and `objective` is nan.
    """
    actuation: np.ndarray
    trajectory: Trajectory
    status: SolverReturn
    degraded: bool
    objective: float
    iterations: int
    wall_time: float
    coeffs: np.ndarray

    @property
    def success(self) -> bool:
        return self.status.is_success and not self.degraded

    def as_vector(self) -> np.ndarray:
        """Actuation followed by the predicted next state."""
        return np.concatenate((self.actuation, self.trajectory.next_state()))


class TrackingMPC:
    """
    Receding-horizon driver around one `TrackingNLP` instance.

    Each call to `solve` installs the measured state and reference on the
    formulation, seeds it with a warm start (previous horizon shifted by one
    step) or a cold start, runs the NLP backend and decodes the result.
    `step` runs the whole pipeline from a world pose and a roadmap.
    """

    def __init__(self, time, constraints, controller, reference, solver, roadmap=None, verbose=False):
        self.config = {
            "time": time,
            "constraints": constraints,
            "controller": controller,
            "reference": reference,
            "solver": solver,
            "roadmap": roadmap,
            "verbose": verbose,
        }
        self.verbose = verbose
        if self.verbose: logger.info(f"Initialize {self.__class__.__name__}...")
        self._set_solver(solver)
        self.nlp = TrackingNLP(time, constraints, controller, reference, verbose=verbose)
        self.fitter = ReferenceFitter.from_config(reference)
        self.backend = build_backend(solver, verbose=verbose)
        self.a_min = constraints["a_min"]
        self.malformed_policy = MalformedRecordPolicy.parse((roadmap or {}).get("malformed_policy", "abort"))
        self.reset()
        if self.verbose: logger.info(f"Initialize {self.__class__.__name__}... DONE!")

    @classmethod
    def from_config(cls, path=None, overrides=None) -> "TrackingMPC":
        cfg = load_config(path, overrides)
        return cls(cfg["time"], cfg["constraints"], cfg["controller"], cfg["reference"], cfg["solver"],
                   roadmap=cfg.get("roadmap"), verbose=cfg.get("verbose", False))

    def __str__(self):
        return f"{self.__class__!s} with initialization configuration {self.config}"

    def _set_solver(self, cfg):
        self.warm_start = bool(cfg.get("warm_start", True))
        self.max_fail_streak = int(cfg.get("max_fail_streak", 3))
        self.warmstarter = Warmstart(mode=cfg.get("cold_start", "hold"))

    def reset(self):
        """Forget the previous horizon, the last reference and the failure streak."""
        self._previous: Optional[Trajectory] = None
        self._previous_lambda: Optional[np.ndarray] = None
        self._previous_z = None
        self._last_coeffs: Optional[np.ndarray] = None
        self._last_pose = None
        self._fail_streak = 0
        self._emergency_mode = False

    @property
    def previous_trajectory(self) -> Optional[Trajectory]:
        return self._previous

    def load_roadmap(self, path) -> RoadmapStore:
        """Read a roadmap file with the configured malformed-record policy."""
        return RoadmapStore.from_csv(path, malformed_policy=self.malformed_policy)

    def solve(self, state, coeffs=None) -> MPCResult:
        """
        Solve the MPC problem for the current snapshot.

        Parameters
        ----------
        state : array_like, shape (6,)
            Measured state [x, y, psi, v, cte, epsi] in the frame the reference
            coefficients are expressed in. Consecutive calls are assumed to use
            the same frame for the warm start.
        coeffs : array_like, shape (degree + 1,), optional
            Ascending reference polynomial. When omitted the coefficients of the
            previous call are reused; before any reference was given the path
            is taken as straight ahead (all zeros).

        Returns
        -------
        MPCResult
            First actuation, decoded horizon and solver outcome.
        """
        self._last_pose = None
        return self._solve(state, coeffs)

    def step(self, px: float, py: float, psi: float, v: float, roadmap) -> MPCResult:
        """
        Fit the roadmap around the world pose and solve in the vehicle frame.

        The vehicle sits at the origin of its own frame, so the state handed to
        the formulation is [0, 0, 0, v, cte, epsi] with the errors read off the
        fitted polynomial. The previous horizon is moved into the new vehicle
        frame before it seeds the warm start; a horizon left by a plain `solve`
        has no known frame and is dropped. `EndOfPathError` from the fitter
        propagates to the caller.
        """
        pose = (float(px), float(py), float(psi))
        coeffs = self.fitter.fit_roadmap(roadmap, *pose)
        cte, epsi = initial_errors(coeffs)
        state = np.array([0.0, 0.0, 0.0, float(v), cte, epsi])
        if self._last_pose is None:
            # horizon of a plain solve() has no known frame
            self._drop_previous()
        if self._previous is not None:
            self._previous = Trajectory(
                states=reframe_states(self._previous.states, self._last_pose, pose),
                actuations=self._previous.actuations,
                dt=self._previous.dt,
            )
        result = self._solve(state, coeffs)
        self._last_pose = pose
        return result

    @timeit
    def _solve(self, state, coeffs) -> MPCResult:
        if coeffs is None:
            coeffs = self._last_coeffs if self._last_coeffs is not None else np.zeros(self.nlp.n_coeffs)

        ### initial decision variable values
        initial_guess, multipliers = self.build_initial_values(state)
        bound_multipliers = self._shift_bound_multipliers() if multipliers is not None else None
        self.nlp.reset(state, coeffs, initial_guess=initial_guess, multipliers=multipliers,
                       bound_multipliers=bound_multipliers)
        self._last_coeffs = self.nlp.coeffs.copy()

        ### call solver
        stats = self.backend.solve(self.nlp)
        solution = self.nlp.solution
        estimated = extract_trajectory(
            solution.x, self.nlp.N, self.nlp.n_states, self.nlp.n_controls, self.nlp.dt,
            lambda_=solution.lambda_, dynamics_rows=self.nlp.constraint_blocks.get("dynamics_eq"))

        # handle success/emergency braking
        if stats.status.is_success:
            self._fail_streak = 0
            self._emergency_mode = False
            trajectory = estimated
            self._previous_lambda = solution.lambda_
            self._previous_z = None if solution.z_L is None or solution.z_U is None else (solution.z_L, solution.z_U)
        else:
            self._fail_streak += 1
            logger.warning(f"NLP solve ended with status {stats.status.value} ({stats.message}), "
                           f"fail streak {self._fail_streak}")
            trajectory = self.fallback_trajectory(self.nlp.x0)
            self._previous_lambda = None
            self._previous_z = None
        self._previous = trajectory

        return MPCResult(
            actuation=trajectory.first_actuation(),
            trajectory=trajectory,
            status=stats.status,
            degraded=not stats.status.is_success,
            # the iterate of a failed solve is not the returned horizon
            objective=solution.obj_value if stats.status.is_success else float("nan"),
            iterations=stats.iterations,
            wall_time=stats.wall_time,
            coeffs=self.nlp.coeffs.copy(),
        )

    def build_initial_values(self, state):
        """
        Primal and dual starting point for the next solve.

        Warm start: the previous horizon shifted one step forward (tail padded
        with its last step) and the previous constraint multipliers shifted the
        same way. Cold start: the configured `Warmstart` mode with zero
        actuation and no multipliers.
        """
        state = np.asarray(state, dtype=float).reshape(-1)
        if self.warm_start and self._previous is not None and state.size == self.nlp.n_states:
            guess = self.warmstarter.shift(self._previous.stacked(), state)
            multipliers = None
            if self._previous_lambda is not None:
                multipliers = self._shift_multipliers(self._previous_lambda)
            return guess, multipliers
        if state.size != self.nlp.n_states or not np.all(np.isfinite(state)):
            # nlp.reset rejects the state with the proper error
            return None, None
        return self.warmstarter.generate(state, self.nlp.N, dt=self.nlp.dt), None

    def _shift_multipliers(self, lam):
        lam = np.asarray(lam, dtype=float).copy()
        for key, block in (("dynamics_eq", self.nlp.n_states), ("lateral_ineq", 1)):
            rows = self.nlp.constraint_blocks.get(key)
            if rows is not None:
                lam[rows] = Warmstart.shift_blocks(lam[rows], block)
        return lam

    def _shift_bound_multipliers(self):
        if self._previous_z is None:
            return None
        return tuple(Warmstart.shift_blocks(z, self.nlp.stride) for z in self._previous_z)

    def _drop_previous(self):
        self._previous = None
        self._previous_lambda = None
        self._previous_z = None

    def fallback_trajectory(self, state) -> Trajectory:
        """
        Horizon used when the solver did not converge.

        While the failure streak stays within `max_fail_streak`, the previous
        horizon is shifted one step forward. Past that, or without a previous
        horizon, the safe default holds the steering straight and brakes with
        `a_min` over the whole horizon.
        """
        if self._previous is not None and self._fail_streak <= self.max_fail_streak:
            return self._previous.shifted()

        if not self._emergency_mode:
            logger.warning("No usable horizon, switching to emergency braking.")
        self._emergency_mode = True
        N = self.nlp.N
        states = self.warmstarter.generate(state, N, dt=self.nlp.dt)[:, :self.nlp.n_states]
        actuations = np.tile(np.array([0.0, self.a_min]), (N, 1))
        return Trajectory(states=states, actuations=actuations, dt=self.nlp.dt)
