from typing import Tuple

import numpy as np
from numba import jit

from gbspy.utils import jit_settings


@jit("float64[::1](int64)", **jit_settings)
def error_factors(max_degree: int) -> np.ndarray:
    """Compute the interpolation error factors.

    Parameters
    ----------
    max_degree : int
        Maximal degree of the interpolation polynomial.

    Returns
    -------
    errfac : ndarray, shape (max(max_degree - 4, 0),)
        ``errfac[d - 5]`` scales the norm of the leading coefficient of a
        polynomial of degree `d` into an interpolation error estimate.
    """

    size = max(max_degree - 4, 0)
    errfac = np.empty((size,))
    for i in range(size):
        ip5 = i + 5
        errfac[i] = 1.0/(ip5*ip5)
        e = 0.5*np.sqrt((i + 1)/ip5)
        for j in range(i + 1):
            errfac[i] *= e/(j + 1)

    return errfac


@jit("int64(int64, float64, float64[::1], float64[::1], float64[::1], float64[::1],"
     "float64[:, ::1], float64[:, ::1])", **jit_settings)
def compute_coefficients(mu: int, h: float, y0: np.ndarray, y0_dot: np.ndarray,
                         y1: np.ndarray, y1_dot: np.ndarray, y_mid_dots: np.ndarray,
                         polynomials: np.ndarray) -> int:
    """Compute the dense-output polynomial of an accepted step.

    The polynomial is built around a cubic Hermite interpolant matching
    the states and derivatives at both ends of the step, to which a
    correction ``(theta*(1 - theta))**2 * c(theta - 1/2)`` is added so that
    the derivatives at the middle of the step are reproduced too.

    Parameters
    ----------
    mu : int
        Number of midpoint derivatives to match.
    h : float
        Signed step size.
    y0, y0_dot : ndarray, shape (ndof,)
        State and derivative at the step start.
    y1, y1_dot : ndarray, shape (ndof,)
        State and derivative at the step end.
    y_mid_dots : ndarray, shape (>= mu + 1, ndof)
        State and scaled derivatives at the middle of the step.
    polynomials : ndarray, shape (>= mu + 5, ndof)
        Receives the polynomial coefficients.

    Returns
    -------
    degree : int
        Degree of the interpolation polynomial, ``mu + 4``, or 3 when only
        the Hermite part is available (``mu < 0``).
    """

    ndof = y0.shape[0]

    for i in range(ndof):
        yp0 = h*y0_dot[i]
        yp1 = h*y1_dot[i]
        ydiff = y1[i] - y0[i]
        aspl = ydiff - yp1
        bspl = yp0 - ydiff

        polynomials[0, i] = y0[i]
        polynomials[1, i] = ydiff
        polynomials[2, i] = aspl
        polynomials[3, i] = bspl

        if mu < 0:
            continue

        ph0 = 0.5*(y0[i] + y1[i]) + 0.125*(aspl + bspl)
        polynomials[4, i] = 16*(y_mid_dots[0, i] - ph0)

        if mu > 0:
            ph1 = ydiff + 0.25*(aspl - bspl)
            polynomials[5, i] = 16*(y_mid_dots[1, i] - ph1)

            if mu > 1:
                ph2 = yp1 - yp0
                polynomials[6, i] = 16*(y_mid_dots[2, i] - ph2 + polynomials[4, i])

                if mu > 2:
                    ph3 = 6*(bspl - aspl)
                    polynomials[7, i] = 16*(y_mid_dots[3, i] - ph3 + 3*polynomials[5, i])

                    for j in range(4, mu + 1):
                        fac1 = 0.5*j*(j - 1)
                        fac2 = 2*fac1*(j - 2)*(j - 3)
                        polynomials[j+4, i] = 16*(y_mid_dots[j, i] + fac1*polynomials[j+2, i]
                                                  - fac2*polynomials[j, i])

    if mu < 0:
        return 3
    return mu + 4


@jit("float64(float64[:, ::1], int64, float64[::1], float64[::1])", **jit_settings)
def estimate_error(polynomials: np.ndarray, degree: int, scale: np.ndarray,
                   errfac: np.ndarray) -> float:
    """Estimate the interpolation error from the leading coefficient.

    Returns 0 when the polynomial degree is lower than 5, i.e. when no
    midpoint derivative beyond the first one has been matched.
    """

    if degree < 5:
        return 0.0

    n = scale.shape[0]
    acc = 0.0
    for i in range(n):
        e = polynomials[degree, i]/scale[i]
        acc += e*e

    return np.sqrt(acc/n)*errfac[degree - 5]


@jit("Tuple((float64[::1], float64[::1]))(float64, float64, float64[:, ::1], int64,"
     "float64[::1], float64[::1])", **jit_settings)
def evaluate(theta: float, h: float, polynomials: np.ndarray, degree: int,
             y_end: np.ndarray, mid_dot: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Evaluate the dense-output polynomial and its derivative.

    The Hermite part is recombined around the step start for
    ``theta <= 0.5`` and around the step end otherwise, so that both
    endpoints are reproduced without cancellation. The correction term is
    evaluated with Horner's rule in powers of ``theta - 0.5``.

    Parameters
    ----------
    theta : float
        Normalized time within the step, 0 at the start and 1 at the end.
    h : float
        Signed step size.
    polynomials : ndarray, shape (>= degree + 1, ndof)
        Polynomial coefficients, see `compute_coefficients`.
    degree : int
        Degree of the polynomial.
    y_end : ndarray, shape (ndof,)
        State at the end of the step.
    mid_dot : ndarray, shape (ndof,)
        Scaled derivative at the middle of the step, returned as the
        derivative when the step size is null.

    Returns
    -------
    y : ndarray, shape (ndof,)
        Interpolated state.
    y_dot : ndarray, shape (ndof,)
        Interpolated derivative.
    """

    ndof = y_end.shape[0]
    y = np.empty((ndof,))
    y_dot = np.empty((ndof,))

    one_minus_theta = 1.0 - theta
    theta05 = theta - 0.5
    t_omt = theta*one_minus_theta
    t4 = t_omt*t_omt
    t4_dot = 2*t_omt*(1 - 2*theta)

    if h == 0:
        for i in range(ndof):
            y[i] = polynomials[0, i]
            y_dot[i] = mid_dot[i]
        return y, y_dot

    dot1 = 1.0/h
    dot2 = theta*(2 - 3*theta)/h
    dot3 = ((3*theta - 4)*theta + 1)/h

    for i in range(ndof):
        p0 = polynomials[0, i]
        p1 = polynomials[1, i]
        p2 = polynomials[2, i]
        p3 = polynomials[3, i]

        if theta <= 0.5:
            y[i] = p0 + theta*(p1 + one_minus_theta*(p2*theta + p3*one_minus_theta))
        else:
            y[i] = y_end[i] - one_minus_theta*(p1 - theta*(p2*theta + p3*one_minus_theta))
        y_dot[i] = dot1*p1 + dot2*p2 + dot3*p3

        if degree > 3:
            c_dot = 0.0
            c = polynomials[degree, i]
            for j in range(degree - 1, 3, -1):
                d = 1.0/(j - 3)
                c_dot = d*(theta05*c_dot + c)
                c = polynomials[j, i] + c*d*theta05

            y[i] += t4*c
            y_dot[i] += (t4*c_dot + t4_dot*c)/h

    return y, y_dot


class GBSStepInterpolator:
    """Dense output of the Gragg-Bulirsch-Stoer steps.

    While integrating, the interpolator shares the start state, end state,
    end derivatives and midpoint derivatives arrays of the integrator and
    is mutated in place at each accepted step. Use `copy` to keep an
    independent snapshot of a step.

    The interpolator distinguishes the global step, as computed by the
    integrator, from the soft step restricted by the events handling:
    `previous_time` and `current_time` are the soft bounds, inside which
    step handlers are allowed to query the solution.

    Parameters
    ----------
    y, y0_dot : ndarray, shape (ndof,)
        State and derivative at the step start.
    y1, y1_dot : ndarray, shape (ndof,)
        State and derivative at the step end.
    y_mid_dots : ndarray, shape (2 * size + 1, ndof)
        State and scaled derivatives at the middle of the step.
    forward : bool
        Integration direction.
    """

    def __init__(self, y: np.ndarray, y0_dot: np.ndarray, y1: np.ndarray,
                 y1_dot: np.ndarray, y_mid_dots: np.ndarray, forward: bool):

        self._y = y
        self._y0_dot = y0_dot
        self._y1 = y1
        self._y1_dot = y1_dot
        self._y_mid_dots = y_mid_dots

        ndof = y.shape[0]
        max_degree = y_mid_dots.shape[0] + 4

        self._polynomials = np.zeros((max_degree + 1, ndof))
        self._errfac = error_factors(max_degree)
        self._degree = 3

        self._y_end = np.zeros((ndof,))
        self._mid_dot = np.zeros((ndof,))

        self._forward = forward

        self._global_previous_time = np.nan
        self._global_current_time = np.nan
        self._soft_previous_time = np.nan
        self._soft_current_time = np.nan
        self._h = np.nan

        self._interpolated_time = np.nan
        self._interpolated_state = None
        self._interpolated_derivatives = None

    def copy(self) -> "GBSStepInterpolator":
        """Return an independent snapshot of the current step."""

        snapshot = GBSStepInterpolator.__new__(GBSStepInterpolator)

        # Work arrays of the integrator are not needed anymore
        snapshot._y = None
        snapshot._y0_dot = None
        snapshot._y1 = None
        snapshot._y1_dot = None
        snapshot._y_mid_dots = None

        snapshot._polynomials = self._polynomials[:self._degree + 1].copy()
        snapshot._errfac = self._errfac
        snapshot._degree = self._degree
        snapshot._y_end = self._y_end.copy()
        snapshot._mid_dot = self._mid_dot.copy()
        snapshot._forward = self._forward

        snapshot._global_previous_time = self._global_previous_time
        snapshot._global_current_time = self._global_current_time
        snapshot._soft_previous_time = self._soft_previous_time
        snapshot._soft_current_time = self._soft_current_time
        snapshot._h = self._h

        snapshot._interpolated_time = self._interpolated_time
        snapshot._interpolated_state = None
        snapshot._interpolated_derivatives = None

        return snapshot

    def compute_coefficients(self, mu: int, h: float) -> None:
        """Fit the dense-output polynomial of the current step.

        Parameters
        ----------
        mu : int
            Number of midpoint derivatives to match.
        h : float
            Signed step size.
        """

        self._degree = compute_coefficients(mu, h, self._y, self._y0_dot, self._y1,
                                            self._y1_dot, self._y_mid_dots,
                                            self._polynomials)
        self._y_end[:] = self._y1
        self._mid_dot[:] = self._y_mid_dots[1]
        self._interpolated_state = None

    def estimate_error(self, scale: np.ndarray) -> float:
        """Estimate the interpolation error of the current step."""
        return estimate_error(self._polynomials, self._degree, scale, self._errfac)

    @property
    def degree(self) -> int:
        return self._degree

    def shift(self) -> None:
        """Start a new step at the end of the current one."""
        self._global_previous_time = self._global_current_time
        self._soft_previous_time = self._global_previous_time
        self._soft_current_time = self._global_current_time

    def store_time(self, t: float) -> None:
        """Store the end time of the current step."""
        self._global_current_time = t
        self._soft_current_time = t
        self._h = self._global_current_time - self._global_previous_time
        self.interpolated_time = t

    @property
    def is_forward(self) -> bool:
        return self._forward

    @property
    def global_previous_time(self) -> float:
        return self._global_previous_time

    @property
    def global_current_time(self) -> float:
        return self._global_current_time

    @property
    def previous_time(self) -> float:
        return self._soft_previous_time

    @previous_time.setter
    def previous_time(self, t: float):
        self._soft_previous_time = t

    @property
    def current_time(self) -> float:
        return self._soft_current_time

    @current_time.setter
    def current_time(self, t: float):
        self._soft_current_time = t

    @property
    def interpolated_time(self) -> float:
        return self._interpolated_time

    @interpolated_time.setter
    def interpolated_time(self, t: float):
        self._interpolated_time = t
        self._interpolated_state = None

    def _evaluate(self):
        # lazy evaluation of the state
        if self._interpolated_state is None:
            one_minus_theta_h = self._global_current_time - self._interpolated_time
            theta = 0.0 if self._h == 0 else (self._h - one_minus_theta_h)/self._h
            self._interpolated_state, self._interpolated_derivatives = evaluate(
                theta, self._h, self._polynomials, self._degree, self._y_end, self._mid_dot)

    @property
    def interpolated_state(self) -> np.ndarray:
        """State at `interpolated_time`."""
        self._evaluate()
        return self._interpolated_state.copy()

    @property
    def interpolated_derivatives(self) -> np.ndarray:
        """Derivatives at `interpolated_time`."""
        self._evaluate()
        return self._interpolated_derivatives.copy()

    def interpolate(self, t: float) -> Tuple[np.ndarray, np.ndarray]:
        """Return the state and derivatives at time `t`.

        The accuracy is only guaranteed for `t` within the global step.
        """

        self.interpolated_time = t
        return self.interpolated_state, self.interpolated_derivatives
