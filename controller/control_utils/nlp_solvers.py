"""
Copyright 2025 AUMOVIO. All rights reserved.
"""
import logging
from dataclasses import dataclass

import casadi as ca
import numpy as np
from scipy import sparse
from scipy.optimize import Bounds, NonlinearConstraint, minimize

from common_utils.time_tracking import Stopwatch
from controller.control_model.BaseNLP import NLPProblem, NLPSolution, SolverReturn
from controller.control_utils.errors import FormulationError

logger = logging.getLogger(__name__)

IPOPT_RETURN_STATUS = {
    "Solve_Succeeded": SolverReturn.SUCCESS,
    "Solved_To_Acceptable_Level": SolverReturn.ACCEPTABLE,
    "Infeasible_Problem_Detected": SolverReturn.INFEASIBLE,
    "Maximum_Iterations_Exceeded": SolverReturn.MAXITER_EXCEEDED,
    "Maximum_CpuTime_Exceeded": SolverReturn.CPUTIME_EXCEEDED,
    "Maximum_WallTime_Exceeded": SolverReturn.CPUTIME_EXCEEDED,
}


@dataclass
class SolverStats:
    status: SolverReturn
    iterations: int
    wall_time: float
    message: str = ""


class IpoptBackend:
    """
    IPOPT through casadi's `nlpsol`.

    Size, bounds and starting point are taken from the callback contract and
    the terminal data is delivered through `finalize_solution`. IPOPT iterates
    on the problem's symbolic graph, compiled once per problem instance. Before
    the first solve the compiled graph is checked against the callbacks: the
    Jacobian and Hessian structures must equal `eval_jac_g()` / `eval_h()`, and
    objective, gradient, constraints, Jacobian and Hessian values must agree at
    the starting point. Any disagreement raises :class:`FormulationError`.
    The reported objective and constraint values come from `eval_f` /
    `eval_g` at the final iterate.

    When the problem offers a multiplier start (`StartingPoint.lambda_` set),
    a second solver compiled with ``ipopt.warm_start_init_point`` is used and
    receives the constraint and bound multipliers.

    Solver options are passed to casadi verbatim (e.g. ``ipopt.max_iter``,
    ``ipopt.print_level``, ``ipopt.hessian_approximation``).
    """
    name = "ipopt"
    warm_start_options = {"ipopt.warm_start_init_point": "yes"}

    def __init__(self, options=None, verbose=False):
        opts = dict(options or {})
        opts.setdefault("error_on_fail", False)
        self.options = opts
        self.verbose = verbose
        self._solvers = {}
        self._problem = None
        self.last_warm_start = False

    def _build(self, problem: NLPProblem, info, warm: bool):
        if self._problem is not problem:
            self._solvers = {}
            check_contract(problem, info)
            self._problem = problem
        options = dict(self.options, **self.warm_start_options) if warm else self.options
        self._solvers[warm] = ca.nlpsol("solver", "ipopt", problem.symbolic_nlp(), options)
        if self.verbose: logger.info(f"Initialize {self.__class__.__name__} optimization solver (warm={warm}) ... DONE!")

    def solve(self, problem: NLPProblem) -> SolverStats:
        info = problem.get_nlp_info()
        bounds = problem.get_bounds_info()
        start = problem.get_starting_point(init_x=True, init_z=True, init_lambda=True)
        warm = start.lambda_ is not None
        if self._problem is not problem or warm not in self._solvers:
            self._build(problem, info, warm)
        self.last_warm_start = warm

        args = dict(x0=start.x, p=problem.parameter_values(),
                    lbx=bounds.x_l, ubx=bounds.x_u, lbg=bounds.g_l, ubg=bounds.g_u)
        if warm:
            args["lam_g0"] = start.lambda_
            if start.z_L is not None and start.z_U is not None:
                args["lam_x0"] = start.z_U - start.z_L

        solver = self._solvers[warm]
        error = None
        with Stopwatch() as watch:
            try:
                res = solver(**args)
            except RuntimeError as err:
                error = err

        if error is not None:
            logger.warning(f"IPOPT raised during solve: {error}")
            problem.finalize_solution(NLPSolution(status=SolverReturn.ERROR, x=start.x, obj_value=float("nan")))
            return SolverStats(SolverReturn.ERROR, 0, watch.elapsed, str(error))

        stats = solver.stats()
        return_status = stats.get("return_status", "")
        status = IPOPT_RETURN_STATUS.get(return_status, SolverReturn.ERROR)
        iterations = int(stats.get("iter_count", 0))
        x = res["x"].full().reshape(-1)
        lam_x = res["lam_x"].full().reshape(-1)
        problem.finalize_solution(NLPSolution(
            status=status,
            x=x,
            obj_value=float(problem.eval_f(x)),
            g=np.asarray(problem.eval_g(x), dtype=float),
            lambda_=res["lam_g"].full().reshape(-1),
            z_L=np.maximum(-lam_x, 0.0),
            z_U=np.maximum(lam_x, 0.0),
            iterations=iterations,
        ))
        return SolverStats(status, iterations, watch.elapsed, return_status)


def check_contract(problem: NLPProblem, info, rtol=1e-6, atol=1e-8):
    """
    Compare the symbolic graph of `problem` with its callbacks.

    Structures are compared as sets of (row, col) pairs after removing the
    index offset; values are compared densely at the starting point with unit
    multipliers.
    """
    nlp = problem.symbolic_nlp()
    x, p, f, g = nlp["x"], nlp["p"], nlp["f"], nlp["g"]
    if x.numel() != info.n or g.numel() != info.m:
        raise FormulationError(
            f"symbolic graph has n={x.numel()}, m={g.numel()}, problem declares n={info.n}, m={info.m}")
    n, m = info.n, info.m
    offset = int(info.index_style)

    obj_factor = ca.MX.sym("obj_factor")
    lam = ca.MX.sym("lambda", m)
    jac_g = ca.jacobian(g, x)
    hess_lag = ca.tril(ca.hessian(obj_factor * f + ca.dot(lam, g), x)[0])

    jac_rows, jac_cols = (np.asarray(idx, dtype=int) - offset for idx in problem.eval_jac_g())
    hess_rows, hess_cols = (np.asarray(idx, dtype=int) - offset for idx in problem.eval_h())
    _check_count("Jacobian structure", jac_rows.size, info.nnz_jac_g)
    _check_count("Hessian structure", hess_rows.size, info.nnz_h_lag)
    _check_pattern("Jacobian", jac_g.sparsity(), jac_rows, jac_cols)
    _check_pattern("Hessian", hess_lag.sparsity(), hess_rows, hess_cols)

    x0 = np.asarray(problem.get_starting_point(init_x=True).x, dtype=float)
    p0 = problem.parameter_values()
    lam0 = np.ones(m)
    reference = ca.Function("contract", [x, p, obj_factor, lam],
                            [f, ca.gradient(f, x), g, jac_g, hess_lag])
    f_ref, grad_ref, g_ref, jac_ref, hess_ref = (out.full() for out in reference(x0, p0, 1.0, lam0))

    jac_values = np.asarray(problem.eval_jac_g(x0), dtype=float)
    hess_values = np.asarray(problem.eval_h(x0, obj_factor=1.0, lambda_=lam0), dtype=float)
    _check_count("Jacobian values", jac_values.size, info.nnz_jac_g)
    _check_count("Hessian values", hess_values.size, info.nnz_h_lag)
    jac = np.zeros((m, n))
    np.add.at(jac, (jac_rows, jac_cols), jac_values)
    hess = np.zeros((n, n))
    np.add.at(hess, (hess_rows, hess_cols), hess_values)
    for what, value, expected in (
            ("objective", np.atleast_1d(problem.eval_f(x0)), f_ref.reshape(-1)),
            ("gradient", problem.eval_grad_f(x0), grad_ref.reshape(-1)),
            ("constraints", problem.eval_g(x0), g_ref.reshape(-1)),
            ("Jacobian", jac, jac_ref),
            ("Hessian", hess, hess_ref)):
        if not np.allclose(value, expected, rtol=rtol, atol=atol):
            raise FormulationError(f"{what} callback disagrees with the symbolic graph at the starting point")


def _check_pattern(what, sparsity, rows, cols):
    ref_rows, ref_cols = sparsity.get_triplet()
    if set(zip(ref_rows, ref_cols)) != set(zip(rows.tolist(), cols.tolist())):
        raise FormulationError(f"{what} structure differs from the symbolic graph")


class TrustConstrBackend:
    """
    scipy's ``trust-constr`` method driven purely through the callback contract.

    Objective, gradient and constraints are the problem callbacks themselves.
    The sparse Jacobian and the Hessian of the Lagrangian are rebuilt from the
    structure reported by the structure-only calls and the values of the value
    calls; a value count that does not match the declared structure raises
    :class:`FormulationError`.
    """
    name = "trust-constr"

    def __init__(self, options=None, verbose=False):
        opts = dict(options or {})
        self.feasibility_tol = float(opts.pop("feasibility_tol", 1e-6))
        opts.setdefault("maxiter", 500)
        opts.setdefault("gtol", 1e-8)
        opts.setdefault("xtol", 1e-10)
        opts.setdefault("verbose", 0)
        self.options = opts
        self.verbose = verbose

    def solve(self, problem: NLPProblem) -> SolverStats:
        info = problem.get_nlp_info()
        bounds = problem.get_bounds_info()
        start = problem.get_starting_point(init_x=True)
        n, m = info.n, info.m
        offset = int(info.index_style)

        jac_rows, jac_cols = (np.asarray(idx, dtype=int) - offset for idx in problem.eval_jac_g())
        hess_rows, hess_cols = (np.asarray(idx, dtype=int) - offset for idx in problem.eval_h())
        _check_count("Jacobian structure", jac_rows.size, info.nnz_jac_g)
        _check_count("Hessian structure", hess_rows.size, info.nnz_h_lag)

        def jacobian(x):
            values = problem.eval_jac_g(x)
            _check_count("Jacobian values", values.size, info.nnz_jac_g)
            return sparse.csr_matrix((values, (jac_rows, jac_cols)), shape=(m, n))

        def lagrangian_hessian(x, obj_factor, lam):
            values = problem.eval_h(x, obj_factor=obj_factor, lambda_=lam)
            _check_count("Hessian values", values.size, info.nnz_h_lag)
            lower = sparse.coo_matrix((values, (hess_rows, hess_cols)), shape=(n, n))
            return (lower + lower.T - sparse.diags(lower.diagonal())).tocsr()

        constraint = NonlinearConstraint(
            problem.eval_g, bounds.g_l, bounds.g_u,
            jac=jacobian,
            hess=lambda x, v: lagrangian_hessian(x, 0.0, v),
        )

        error = None
        with Stopwatch() as watch:
            try:
                res = minimize(
                    problem.eval_f, start.x,
                    method="trust-constr",
                    jac=problem.eval_grad_f,
                    hess=lambda x: lagrangian_hessian(x, 1.0, np.zeros(m)),
                    constraints=[constraint],
                    bounds=Bounds(bounds.x_l, bounds.x_u),
                    options=self.options,
                )
            except np.linalg.LinAlgError as err:
                error = err

        if error is not None:
            logger.warning(f"trust-constr failed: {error}")
            problem.finalize_solution(NLPSolution(status=SolverReturn.ERROR, x=start.x, obj_value=float("nan")))
            return SolverStats(SolverReturn.ERROR, 0, watch.elapsed, str(error))

        status = self._status(res)
        multipliers = np.asarray(res.v[0], dtype=float) if len(res.v) else None
        problem.finalize_solution(NLPSolution(
            status=status,
            x=np.asarray(res.x, dtype=float),
            obj_value=float(res.fun),
            g=np.asarray(problem.eval_g(res.x), dtype=float),
            lambda_=multipliers,
            iterations=int(res.nit),
        ))
        return SolverStats(status, int(res.nit), watch.elapsed, str(res.message))

    def _status(self, res) -> SolverReturn:
        if res.status in (1, 2):
            if res.constr_violation <= self.feasibility_tol:
                return SolverReturn.SUCCESS
            return SolverReturn.INFEASIBLE
        if res.status == 0:
            return SolverReturn.MAXITER_EXCEEDED
        return SolverReturn.ERROR


def _check_count(what, received, declared):
    if received != declared:
        raise FormulationError(f"{what}: {received} entries, problem declares {declared}")


BACKENDS = {
    IpoptBackend.name: IpoptBackend,
    TrustConstrBackend.name: TrustConstrBackend,
}


def build_backend(cfg, verbose=False):
    """Instantiate the backend named by ``cfg['backend']`` with its entry of ``cfg['options']``."""
    name = cfg.get("backend", IpoptBackend.name)
    try:
        backend_cls = BACKENDS[name]
    except KeyError:
        raise ValueError(f"Unknown NLP backend '{name}', expected one of {sorted(BACKENDS)}.") from None
    options = (cfg.get("options") or {}).get(name)
    return backend_cls(options=options, verbose=verbose)
