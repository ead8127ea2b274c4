"""
Copyright 2025 AUMOVIO. All rights reserved.
"""
import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple, Union

import numpy as np


class IndexStyle(enum.IntEnum):
    """Origin of the (row, col) pairs reported by the sparsity structure calls."""
    C = 0
    FORTRAN = 1


class SolverReturn(enum.Enum):
    SUCCESS = "success"
    ACCEPTABLE = "acceptable"
    INFEASIBLE = "infeasible"
    MAXITER_EXCEEDED = "maxiter_exceeded"
    CPUTIME_EXCEEDED = "cputime_exceeded"
    ERROR = "error"

    @property
    def is_success(self) -> bool:
        return self in (SolverReturn.SUCCESS, SolverReturn.ACCEPTABLE)


@dataclass(frozen=True)
class NLPInfo:
    n: int
    m: int
    nnz_jac_g: int
    nnz_h_lag: int
    index_style: IndexStyle = IndexStyle.C


@dataclass
class NLPBounds:
    x_l: np.ndarray
    x_u: np.ndarray
    g_l: np.ndarray
    g_u: np.ndarray


@dataclass
class StartingPoint:
    """Primal and dual start; a dual entry left at None means the problem has no such start."""
    x: Optional[np.ndarray] = None
    z_L: Optional[np.ndarray] = None
    z_U: Optional[np.ndarray] = None
    lambda_: Optional[np.ndarray] = None


@dataclass
class NLPSolution:
    """Terminal data handed over by the solver through `finalize_solution`."""
    status: SolverReturn
    x: np.ndarray
    obj_value: float
    g: Optional[np.ndarray] = None
    lambda_: Optional[np.ndarray] = None
    z_L: Optional[np.ndarray] = None
    z_U: Optional[np.ndarray] = None
    iterations: int = 0


Structure = Tuple[np.ndarray, np.ndarray]


class NLPProblem(ABC):
    """
    Callback contract between a nonlinear program and an external NLP solver.

    A solver queries the problem size once, then the bounds and the starting
    point, and afterwards evaluates objective, gradient, constraints, constraint
    Jacobian and Hessian of the Lagrangian as often as its iteration needs. It
    ends with exactly one call to `finalize_solution`.

    The Jacobian and Hessian callbacks are dual mode: called without an iterate
    (``x is None``) they return the fixed ``(rows, cols)`` sparsity structure,
    called with an iterate they return the non-zero values in the same order.
    Sizes and structures reported by one instance never change during its
    lifetime.
    """

    @abstractmethod
    def get_nlp_info(self) -> NLPInfo:
        """Problem dimensions, non-zero counts and index origin."""

    @abstractmethod
    def get_bounds_info(self) -> NLPBounds:
        """Variable and constraint bounds, equality encoded as lower == upper."""

    @abstractmethod
    def get_starting_point(self, init_x: bool = True, init_z: bool = False,
                           init_lambda: bool = False) -> StartingPoint:
        """Initial primal (and optionally dual) values for the solver."""

    @abstractmethod
    def eval_f(self, x: np.ndarray, new_x: bool = True) -> float:
        pass

    @abstractmethod
    def eval_grad_f(self, x: np.ndarray, new_x: bool = True) -> np.ndarray:
        pass

    @abstractmethod
    def eval_g(self, x: np.ndarray, new_x: bool = True) -> np.ndarray:
        pass

    @abstractmethod
    def eval_jac_g(self, x: Optional[np.ndarray] = None, new_x: bool = True) -> Union[Structure, np.ndarray]:
        pass

    @abstractmethod
    def eval_h(self, x: Optional[np.ndarray] = None, new_x: bool = True, obj_factor: float = 1.0,
               lambda_: Optional[np.ndarray] = None, new_lambda: bool = True) -> Union[Structure, np.ndarray]:
        pass

    @abstractmethod
    def finalize_solution(self, solution: NLPSolution) -> None:
        pass

    ##### Optional capabilities #####

    def symbolic_nlp(self):
        """Symbolic graph {'x', 'p', 'f', 'g'} for backends that compile the problem."""
        raise NotImplementedError()

    def parameter_values(self) -> np.ndarray:
        """Numeric values of the symbolic parameter vector of `symbolic_nlp`."""
        raise NotImplementedError()
