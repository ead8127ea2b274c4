"""
Copyright 2025 AUMOVIO. All rights reserved.
"""

import casadi as ca
from typing import Optional

class KinematicBicycle:
    """
    Kinematic bicycle model with path-relative error states in casadi.

    States (6):   [x, y, psi, v, cte, epsi]
    Controls (2): [delta, a]
    Reference:    ascending polynomial coefficients c, f(x) = sum c_i x^i
    Dynamics:
        x_dot    = v * cos(psi)
        y_dot    = v * sin(psi)
        psi_dot  = v * tan(delta) / L
        v_dot    = a
        cte_dot  = -v * sin(epsi)
        epsi_dot = v * tan(delta) / L

    The discrete step re-anchors the error states on the reference at the
    current position before integrating them:
        cte_next  = (f(x) - y)             - dt * v * sin(epsi)
        epsi_next = (psi - atan(f'(x)))    + dt * v * tan(delta) / L
    """
    n_states = 6
    n_controls = 2

    def __init__(self, wheelbase: float, n_coeffs: int = 4):
        if wheelbase <= 0:
            raise ValueError("wheelbase must be positive.")
        if n_coeffs < 2:
            raise ValueError("reference polynomial needs at least two coefficients.")
        self.wheelbase = wheelbase
        self.n_coeffs = n_coeffs
        self.states = self.init_state_symbols()
        self.controls = self.init_control_symbols()
        self.coeffs = ca.MX.sym('coeffs', n_coeffs)
        self.rhs = self.init_rhs()

    def init_state_symbols(self) -> ca.MX:
        x    = ca.MX.sym('x')
        y    = ca.MX.sym('y')
        psi  = ca.MX.sym('psi')
        v    = ca.MX.sym('v')
        cte  = ca.MX.sym('cte')
        epsi = ca.MX.sym('epsi')
        states = ca.vertcat(x, y, psi, v, cte, epsi)
        return states

    def init_control_symbols(self) -> ca.MX:
        delta = ca.MX.sym('delta')
        a     = ca.MX.sym('a')
        controls = ca.vertcat(delta, a)
        return controls

    def init_rhs(self) -> ca.MX:
        X = self.states
        U = self.controls
        L = self.wheelbase

        x, y, psi, v, cte, epsi = [X[i] for i in range(6)]
        delta, a                = [U[i] for i in range(2)]
        yaw_rate = v * ca.tan(delta) / L

        rhs = ca.vertcat(
            v * ca.cos(psi),     # x_dot
            v * ca.sin(psi),     # y_dot
            yaw_rate,            # psi_dot
            a,                   # v_dot
            -v * ca.sin(epsi),   # cte_dot, heading towards the path shrinks f(x) - y
            yaw_rate             # epsi_dot
        )
        return rhs

    @staticmethod
    def polyval(coeffs, x):
        """Horner evaluation of ascending coefficients, works on casadi and numpy types."""
        result = 0
        for i in reversed(range(coeffs.shape[0])):
            result = result * x + coeffs[i]
        return result

    @staticmethod
    def polyder(coeffs, x):
        result = 0
        for i in reversed(range(1, coeffs.shape[0])):
            result = result * x + i * coeffs[i]
        return result

    def reference_errors(self, states, coeffs):
        """Cross-track and heading error of `states` with respect to the polynomial."""
        x, y, psi = states[0], states[1], states[2]
        cte = self.polyval(coeffs, x) - y
        epsi = psi - ca.atan(self.polyder(coeffs, x))
        return cte, epsi

    def get_f(self, fname: Optional[str]="f", sname: Optional[str]="input_state", cname: Optional[str]="control_input", rhsname: Optional[str]="rhs") -> ca.Function:
        """
        Returns CasADi function f(states, controls) -> rhs with named I/O.
        """
        f = ca.Function(
            fname,
            [self.states, self.controls],
            [self.rhs],
            [sname, cname],
            [rhsname]
        )
        return f

    def get_step(self, dt: float, fname: Optional[str]="F") -> ca.Function:
        """
        Returns CasADi function F(states, controls, coeffs) -> next state (forward Euler).
        """
        if dt <= 0:
            raise ValueError("dt must be positive.")
        X, U, C = self.states, self.controls, self.coeffs
        x_next = X + self.rhs * dt
        cte_ref, epsi_ref = self.reference_errors(X, C)
        x_next = ca.vertcat(
            x_next[0:4],
            cte_ref + dt * self.rhs[4],
            epsi_ref + dt * self.rhs[5],
        )
        return ca.Function(
            fname,
            [X, U, C],
            [x_next],
            ["input_state", "control_input", "coeffs"],
            ["next_state"]
        )
