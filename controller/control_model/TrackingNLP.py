"""
Copyright 2025 AUMOVIO. All rights reserved.
"""
#!/usr/bin/env python
import logging
import casadi as ca
import numpy as np
from typing import Dict, Optional

from controller.control_model.BaseNLP import (
    IndexStyle,
    NLPBounds,
    NLPInfo,
    NLPProblem,
    NLPSolution,
    StartingPoint,
)
from controller.control_utils.dynamic_model import KinematicBicycle
from controller.control_utils.errors import CoefficientLengthError, FormulationError, InputMalformedError
from controller.control_utils.warmstart import Warmstart

logger = logging.getLogger(__name__)

class TrackingNLP(NLPProblem):
    """
    Path-tracking MPC problem exposed through the NLP callback contract.

    The decision vector stacks, for each of the N horizon steps, the state block
    [x, y, psi, v, cte, epsi] followed by the actuation block [delta, a]. The
    constraint vector holds the initial-condition rows, the dynamics-consistency
    rows of the discretized kinematic bicycle and, when a lateral acceleration
    limit is configured, one lateral-acceleration row per step.

    Objective, constraints and their exact first and second derivatives are
    assembled once with casadi; sparsity structures are read from the symbolic
    result, so they are fixed for the lifetime of the instance. Each control
    cycle only changes the measured state, the reference coefficients and the
    starting point through `reset`.
    """

    def __init__(self, time, constraints, controller, reference, index_style=IndexStyle.C, verbose=False):
        self.config = {
            "time": time,
            "constraints": constraints,
            "controller": controller,
            "reference": reference,
            "verbose": verbose,
        }
        self.verbose = verbose
        self.index_style = IndexStyle(index_style)
        if self.verbose: logger.info(f"Initialize {self.__class__.__name__}...")
        self._set_time(time)
        self._set_constraints(constraints)
        self._set_controller(controller)
        self._set_reference_signal(reference)
        self.dynamics = KinematicBicycle(wheelbase=self.wheelbase, n_coeffs=self.n_coeffs)
        self.warmstarter = Warmstart(mode="hold", n_controls=self.dynamics.n_controls)
        if self.verbose: logger.info(f"Initialize {self.__class__.__name__} configuration...  DONE!")
        self.setup_NLP()
        self.solution: Optional[NLPSolution] = None
        self.reset(np.zeros(self.n_states), np.zeros(self.n_coeffs))
        if self.verbose: logger.info(f"Initialize {self.__class__.__name__}... DONE!")

    def setup_NLP(self):
        """
        Assemble the symbolic nonlinear program and its derivative functions.

        The setup builds, in order: the discrete vehicle model, the flat decision
        vector and its per-step views, the parameter vector (measured state and
        reference coefficients), the cost terms, the box bounds, the constraint
        blocks in their fixed concatenation order, and finally the casadi
        functions evaluating objective, gradient, constraints, constraint
        Jacobian and lower-triangular Hessian of the Lagrangian.

        Returns
        -------
        None
            All symbolic elements, bounds and compiled functions are stored on
            the instance.
        """
        self.init_system_model()
        self.init_decision_variables()
        self.init_parameter_variables()
        self.init_costs()
        self.init_box_constraints()
        self.init_nonlinear_constraints()
        self.init_derivative_functions()

    def __str__(self):
        return f"{self.__class__!s} with initialization configuration {self.config}"

    def _set_time(self, cfg):
        self.N = int(cfg["N"])
        self.dt = float(cfg["dt"])
        if self.N < 1:
            raise ValueError("horizon N must be at least 1.")
        if self.dt <= 0:
            raise ValueError("dt must be positive.")

    def _set_constraints(self, cfg):
        # vehicle geometry
        self.wheelbase = cfg["wheelbase"]
        # actuation limits
        self.delta_max = cfg["delta_max"]
        self.a_max = cfg["a_max"]
        self.a_min = cfg["a_min"]
        # state limits
        self.v_min = _as_bound(cfg.get("v_min"), -np.inf)
        self.v_max = _as_bound(cfg.get("v_max"), np.inf)
        self.ay_max = _as_bound(cfg.get("ay_max"), np.inf)

    def _set_controller(self, cfg):
        self.q_cte = cfg["q_cte"] # cost on cross-track error
        self.q_epsi = cfg["q_epsi"] # cost on heading error
        self.q_path = cfg.get("q_path", 0.0) # cost on deviation from the fitted polynomial
        self.q_v = cfg["q_v"] # cost on deviation from reference speed
        self.q_delta = cfg["q_delta"] # cost on steering magnitude
        self.q_a = cfg["q_a"] # cost on acceleration magnitude
        self.q_ddelta = cfg["q_ddelta"] # cost on steering rate
        self.q_da = cfg["q_da"] # cost on acceleration rate (jerk)
        self.q_terminal = cfg.get("q_terminal", 0.0) # cost on final-step errors

    def _set_reference_signal(self, cfg):
        self.v_ref = cfg["v_ref"]
        self.degree = int(cfg.get("degree", 3))
        self.n_coeffs = self.degree + 1

    def init_system_model(self):
        self.F = self.dynamics.get_step(self.dt)
        self.n_states = self.dynamics.n_states
        self.n_controls = self.dynamics.n_controls
        self.stride = self.n_states + self.n_controls

    def init_decision_variables(self):
        """
        Create the flat decision vector and its per-step state / actuation views.

        Step k occupies entries [k*stride, (k+1)*stride): first the state block,
        then the actuation block.
        """
        self.n = self.N * self.stride
        self.opt_variables = ca.MX.sym("X", self.n)
        self.X_steps = []
        self.U_steps = []
        for k in range(self.N):
            base = k * self.stride
            self.X_steps.append(self.opt_variables[base : base + self.n_states])
            self.U_steps.append(self.opt_variables[base + self.n_states : base + self.stride])

    def init_parameter_variables(self):
        parameters = {}
        parameters["x_init"] = ca.MX.sym("x_init", self.n_states)
        parameters["coeffs"] = ca.MX.sym("coeffs", self.n_coeffs)
        self.parameters = parameters
        concat_order = ["x_init", "coeffs"]
        self.P = ca.vertcat(*[parameters[key] for key in concat_order])

    def init_costs(self):
        """
        Assemble the objective from its named cost groups.

        The groups are kept apart in `self.cost_groups` so that each contribution
        can be reported on its own; the objective is their sum.
        """
        groups = {
            "tracking": 0,
            "velocity": 0,
            "effort": 0,
            "rate": 0,
            "terminal": 0,
        }
        groups = self.add_node_costs(groups)
        groups = self.add_rate_costs(groups)
        groups = self.add_terminal_costs(groups)
        self.cost_groups = groups
        self.cost = ca.MX(groups["tracking"] + groups["velocity"] + groups["effort"] + groups["rate"] + groups["terminal"])

    def add_node_costs(self, groups):
        """
        Add the per-step tracking, speed and actuation-effort costs.

        Tracking combines the squared cross-track and heading errors carried in
        the state with the squared vertical deviation between the predicted
        position and the fitted polynomial. Speed deviation is measured against
        the reference speed, effort is the weighted squared actuation.
        """
        coeffs = self.parameters["coeffs"]
        for k in range(self.N):
            xk = self.X_steps[k]
            uk = self.U_steps[k]
            path_dev = self.dynamics.polyval(coeffs, xk[0]) - xk[1]

            groups["tracking"] += self.q_cte * xk[4]**2 + self.q_epsi * xk[5]**2 + self.q_path * path_dev**2
            groups["velocity"] += self.q_v * (xk[3] - self.v_ref)**2
            groups["effort"] += self.q_delta * uk[0]**2 + self.q_a * uk[1]**2
        return groups

    def add_rate_costs(self, groups):
        for k in range(self.N - 1):
            du = self.U_steps[k + 1] - self.U_steps[k]
            groups["rate"] += self.q_ddelta * du[0]**2 + self.q_da * du[1]**2
        return groups

    def add_terminal_costs(self, groups):
        x_final = self.X_steps[-1]
        groups["terminal"] += self.q_terminal * (x_final[4]**2 + x_final[5]**2)
        return groups

    def init_box_constraints(self):
        """
        Build the variable bounds for every horizon step.

        Positions, heading and error states are unbounded, speed is kept in
        [v_min, v_max], steering and acceleration within their actuator limits.
        The state of step 0 is left unbounded because the initial-condition rows
        pin it to the measurement, which may itself lie outside the speed limits.
        """
        X_lbx = np.array([-np.inf, -np.inf, -np.inf, self.v_min, -np.inf, -np.inf])
        X_ubx = np.array([ np.inf,  np.inf,  np.inf, self.v_max,  np.inf,  np.inf])
        U_lbx = np.array([-self.delta_max, self.a_min])
        U_ubx = np.array([ self.delta_max, self.a_max])

        lbx = np.tile(np.concatenate((X_lbx, U_lbx)), (self.N, 1))
        ubx = np.tile(np.concatenate((X_ubx, U_ubx)), (self.N, 1))
        lbx[0, :self.n_states] = -np.inf
        ubx[0, :self.n_states] = np.inf
        self.lbx = lbx.reshape(-1)
        self.ubx = ubx.reshape(-1)

    def init_nonlinear_constraints(self):
        """
        Initialize the equality and inequality constraint blocks.

        The blocks are concatenated in a fixed order, which defines the row
        layout every callback and every multiplier vector refers to.
        """
        g_dict, lbg_dict, ubg_dict = {}, {}, {}
        self.add_equality_constraints(g_dict, lbg_dict, ubg_dict)
        self.add_lateral_acceleration_constraints(g_dict, lbg_dict, ubg_dict)

        # define concatenation order (important for solver alignment)
        concat_order = [key for key in ["ic_eq", "dynamics_eq", "lateral_ineq"] if key in g_dict]

        self.constraint_blocks = {}
        row = 0
        for key in concat_order:
            nrows = g_dict[key].shape[0]
            self.constraint_blocks[key] = slice(row, row + nrows)
            row += nrows

        self.g   = ca.vertcat(*[g_dict[key] for key in concat_order])
        self.lbg = np.concatenate([lbg_dict[key] for key in concat_order])
        self.ubg = np.concatenate([ubg_dict[key] for key in concat_order])
        self.m = row

    def add_equality_constraints(self, g, lbg, ubg):
        """
        Add the initial-condition and dynamics-consistency equality rows.

        The state of step 0 must equal the measured state; for each later step
        the state must equal the discretized model applied to the previous state
        and actuation under the current reference coefficients.
        """
        coeffs = self.parameters["coeffs"]
        g["ic_eq"] = self.X_steps[0] - self.parameters["x_init"]
        lbg["ic_eq"] = np.zeros(self.n_states)
        ubg["ic_eq"] = np.zeros(self.n_states)

        dyn_model_constraints = []
        for k in range(self.N - 1):
            x_next = self.F(self.X_steps[k], self.U_steps[k], coeffs)
            dyn_model_constraints.append(self.X_steps[k + 1] - x_next)

        if dyn_model_constraints:
            g["dynamics_eq"] = ca.vertcat(*dyn_model_constraints)
            nrows = g["dynamics_eq"].shape[0]
            lbg["dynamics_eq"] = np.zeros(nrows)
            ubg["dynamics_eq"] = np.zeros(nrows)
        return g, lbg, ubg

    def add_lateral_acceleration_constraints(self, g, lbg, ubg):
        # a_y = v^2 tan(delta) / L per step, skipped without a finite limit
        if not np.isfinite(self.ay_max):
            return g, lbg, ubg
        lateral = []
        for k in range(self.N):
            v, delta = self.X_steps[k][3], self.U_steps[k][0]
            lateral.append(v * v * ca.tan(delta) / self.wheelbase)
        g["lateral_ineq"] = ca.vertcat(*lateral)
        lbg["lateral_ineq"] = -self.ay_max * np.ones(self.N)
        ubg["lateral_ineq"] = self.ay_max * np.ones(self.N)
        return g, lbg, ubg

    def init_derivative_functions(self):
        """
        Compile objective, constraints and their derivatives into casadi functions.

        The Hessian of the Lagrangian  obj_factor * f + lambda^T g  is reduced to
        its lower triangle. Jacobian and Hessian sparsity patterns are read once
        from the symbolic expressions and reused by every structure query.
        """
        x, p = self.opt_variables, self.P
        obj_factor = ca.MX.sym("obj_factor")
        lam = ca.MX.sym("lambda", self.m)

        jac_g = ca.jacobian(self.g, x)
        lagrangian = obj_factor * self.cost + ca.dot(lam, self.g)
        hess_lag, _ = ca.hessian(lagrangian, x)
        hess_lag = ca.tril(hess_lag)

        self._f_fn = ca.Function("f", [x, p], [self.cost])
        self._grad_f_fn = ca.Function("grad_f", [x, p], [ca.gradient(self.cost, x)])
        self._g_fn = ca.Function("g", [x, p], [self.g])
        self._jac_g_fn = ca.Function("jac_g", [x, p], [jac_g])
        self._hess_fn = ca.Function("hess_lag", [x, p, obj_factor, lam], [hess_lag])
        group_names = list(self.cost_groups.keys())
        self._cost_groups_fn = ca.Function(
            "cost_groups", [x, p], [ca.MX(self.cost_groups[key]) for key in group_names], ["x", "p"], group_names)

        self._jac_structure = self._sparsity_pairs(jac_g.sparsity())
        self._hess_structure = self._sparsity_pairs(hess_lag.sparsity())
        if self.verbose:
            logger.info(f"NLP layout: n={self.n}, m={self.m}, nnz_jac_g={self._jac_structure[0].size}, "
                        f"nnz_h_lag={self._hess_structure[0].size}")

    def _sparsity_pairs(self, sparsity):
        rows, cols = sparsity.get_triplet()
        offset = int(self.index_style)
        return np.asarray(rows, dtype=int) + offset, np.asarray(cols, dtype=int) + offset

    ##### Per-cycle state #####

    def reset(self, x0, coeffs, initial_guess=None, multipliers=None, bound_multipliers=None):
        """
        Install the measured state, reference and starting point of a new cycle.

        Parameters
        ----------
        x0 : array_like, shape (6,)
            Measured state [x, y, psi, v, cte, epsi].
        coeffs : array_like, shape (degree + 1,)
            Ascending reference polynomial coefficients.
        initial_guess : array_like, shape (N, stride) or (n,), optional
            Primal starting point. Defaults to the cold start (state held over
            the horizon, zero actuation). Its step-0 state is overwritten by x0.
        multipliers : array_like, shape (m,), optional
            Constraint multipliers offered to solvers that accept a dual start.
        bound_multipliers : tuple of array_like, shape (n,) each, optional
            Lower and upper bound multipliers (z_L, z_U), both non-negative.
            Only used together with `multipliers`.
        """
        x0 = np.asarray(x0, dtype=float).reshape(-1)
        if x0.size != self.n_states:
            raise InputMalformedError(f"state must have {self.n_states} entries, got {x0.size}")
        if not np.all(np.isfinite(x0)):
            raise InputMalformedError(f"state must be finite, got {x0}")
        coeffs = np.asarray(coeffs, dtype=float).reshape(-1)
        if coeffs.size != self.n_coeffs:
            raise CoefficientLengthError(self.n_coeffs, coeffs.size)
        if not np.all(np.isfinite(coeffs)):
            raise InputMalformedError(f"reference coefficients must be finite, got {coeffs}")

        if initial_guess is None:
            initial_guess = self.warmstarter.generate(x0, self.N)
        guess = np.array(initial_guess, dtype=float).reshape(-1)
        if guess.size != self.n:
            raise FormulationError(f"starting point has {guess.size} entries, layout needs {self.n}")
        guess[:self.n_states] = x0

        if multipliers is not None:
            multipliers = np.array(multipliers, dtype=float).reshape(-1)
            if multipliers.size != self.m:
                raise FormulationError(f"multiplier start has {multipliers.size} entries, layout needs {self.m}")

        z_start = None
        if bound_multipliers is not None:
            z_start = tuple(np.array(z, dtype=float).reshape(-1) for z in bound_multipliers)
            if len(z_start) != 2 or any(z.size != self.n for z in z_start):
                raise FormulationError(f"bound multiplier start must be a (z_L, z_U) pair of {self.n} entries each")
            if any(np.any(z < 0) for z in z_start):
                raise FormulationError("bound multipliers must be non-negative")

        self.x0 = x0
        self.coeffs = coeffs
        self._p = np.concatenate((x0, coeffs))
        self._x_start = guess
        self._lambda_start = multipliers
        self._z_start = z_start
        self.solution = None

    def parameter_values(self) -> np.ndarray:
        return self._p.copy()

    def symbolic_nlp(self):
        return {"x": self.opt_variables, "p": self.P, "f": self.cost, "g": self.g}

    ##### Callback contract #####

    def get_nlp_info(self) -> NLPInfo:
        return NLPInfo(
            n=self.n,
            m=self.m,
            nnz_jac_g=int(self._jac_structure[0].size),
            nnz_h_lag=int(self._hess_structure[0].size),
            index_style=self.index_style,
        )

    def get_bounds_info(self) -> NLPBounds:
        return NLPBounds(
            x_l=self.lbx.copy(),
            x_u=self.ubx.copy(),
            g_l=self.lbg.copy(),
            g_u=self.ubg.copy(),
        )

    def get_starting_point(self, init_x=True, init_z=False, init_lambda=False) -> StartingPoint:
        start = StartingPoint()
        if init_x:
            start.x = self._x_start.copy()
        # dual entries stay None without a multiplier start from a previous cycle
        if init_z and self._z_start is not None:
            start.z_L, start.z_U = (z.copy() for z in self._z_start)
        if init_lambda and self._lambda_start is not None:
            start.lambda_ = self._lambda_start.copy()
        return start

    def eval_f(self, x, new_x=True) -> float:
        return float(self._f_fn(self._check_x(x), self._p))

    def eval_grad_f(self, x, new_x=True) -> np.ndarray:
        return self._grad_f_fn(self._check_x(x), self._p).full().reshape(-1)

    def eval_g(self, x, new_x=True) -> np.ndarray:
        return self._g_fn(self._check_x(x), self._p).full().reshape(-1)

    def eval_jac_g(self, x=None, new_x=True):
        if x is None:
            return self._jac_structure[0].copy(), self._jac_structure[1].copy()
        values = self._jac_g_fn(self._check_x(x), self._p)
        return np.asarray(values.nonzeros(), dtype=float)

    def eval_h(self, x=None, new_x=True, obj_factor=1.0, lambda_=None, new_lambda=True):
        if x is None:
            return self._hess_structure[0].copy(), self._hess_structure[1].copy()
        if lambda_ is None:
            lambda_ = np.zeros(self.m)
        lambda_ = np.asarray(lambda_, dtype=float).reshape(-1)
        if lambda_.size != self.m:
            raise FormulationError(f"Hessian evaluated with {lambda_.size} multipliers, layout has {self.m}")
        values = self._hess_fn(self._check_x(x), self._p, float(obj_factor), lambda_)
        return np.asarray(values.nonzeros(), dtype=float)

    def finalize_solution(self, solution: NLPSolution) -> None:
        x = np.asarray(solution.x, dtype=float).reshape(-1)
        if x.size != self.n:
            raise FormulationError(f"solver returned {x.size} primal values, layout has {self.n}")
        solution.x = x
        self.solution = solution
        if self.verbose:
            logger.info(f"{self.__class__.__name__} finalized with status {solution.status.value}, "
                        f"objective {solution.obj_value:.6g} after {solution.iterations} iterations")

    def _check_x(self, x) -> np.ndarray:
        x = np.asarray(x, dtype=float).reshape(-1)
        if x.size != self.n:
            raise FormulationError(f"iterate has {x.size} entries, layout has {self.n}")
        return x

    ##### Layout helpers #####

    def state_index(self, k: int, i: int = 0) -> int:
        return k * self.stride + i

    def control_index(self, k: int, j: int = 0) -> int:
        return k * self.stride + self.n_states + j

    def cost_terms(self, x) -> Dict[str, float]:
        """Value of each cost group at the iterate x."""
        values = self._cost_groups_fn(x=self._check_x(x), p=self._p)
        return {key: float(val) for key, val in values.items()}


def _as_bound(value, default):
    if value is None:
        return default
    return float(value)
