from typing import Callable

import numpy as np
from numba import jit

from gbspy.config import GBSConfig
from gbspy.exceptions import StepSizeTooSmallError
from gbspy.utils import jit_settings


@jit("void(float64[::1], float64[::1], float64[::1], float64[::1], float64[::1])",
     **jit_settings)
def rescale(y1: np.ndarray, y2: np.ndarray, atol: np.ndarray, rtol: np.ndarray,
            scale: np.ndarray) -> None:
    """Update the error scaling vector in-place.

    ``scale[i] = atol[i] + rtol[i] * max(|y1[i]|, |y2[i]|)``
    """

    for i in range(scale.shape[0]):
        yi = max(abs(y1[i]), abs(y2[i]))
        scale[i] = atol[i] + rtol[i]*yi


@jit("float64(float64[::1], float64[::1])", **jit_settings)
def squared_scaled_norm(v: np.ndarray, scale: np.ndarray) -> float:
    """Return ``sum((v/scale)**2)``."""

    acc = 0.0
    for i in range(scale.shape[0]):
        ratio = v[i]/scale[i]
        acc += ratio*ratio

    return acc


@jit("float64(float64[::1], float64[::1], float64[::1])", **jit_settings)
def squared_scaled_distance(a: np.ndarray, b: np.ndarray, scale: np.ndarray) -> float:
    """Return ``sum(((a - b)/scale)**2)``."""

    acc = 0.0
    for i in range(scale.shape[0]):
        ratio = (a[i] - b[i])/scale[i]
        acc += ratio*ratio

    return acc


@jit("float64(float64[::1], float64[::1], float64[::1])", **jit_settings)
def rms_error(y1: np.ndarray, y_prev: np.ndarray, scale: np.ndarray) -> float:
    """Compute the scaled RMS difference between two successive extrapolations.

    A result smaller than one means the difference satisfies the
    tolerances.
    """

    n = scale.shape[0]
    acc = 0.0
    for i in range(n):
        e = abs(y1[i] - y_prev[i])/scale[i]
        acc += e*e

    return np.sqrt(acc/n)


def filter_step(h: float, forward: bool, accept_small: bool, min_step: float,
                max_step: float) -> float:
    """Bound a signed integration step.

    Parameters
    ----------
    h : float
        Signed step.
    forward : bool
        Forward integration indicator.
    accept_small : bool
        If True, steps smaller than `min_step` are silently increased up
        to this value, otherwise they raise an error.
    min_step, max_step : float
        Absolute step bounds.

    Returns
    -------
    h : float
        Bounded step.

    Raises
    ------
    StepSizeTooSmallError
        If ``|h| < min_step`` and `accept_small` is False.
    """

    if abs(h) < min_step:
        if not accept_small:
            raise StepSizeTooSmallError(abs(h), min_step)
        h = min_step if forward else -min_step

    if h > max_step:
        h = max_step
    elif h < -max_step:
        h = -max_step

    return h


def compute_initial_step(compute: Callable[[float, np.ndarray, np.ndarray], None],
                         forward: bool, order: int, scale: np.ndarray, t0: float,
                         y0: np.ndarray, f0: np.ndarray, y1: np.ndarray, f1: np.ndarray,
                         min_step: float, max_step: float) -> float:
    """Compute the initial integration step size.

    A very rough first guess ``h = 0.01 * ||y/scale|| / ||y'/scale||`` is
    used to perform an explicit Euler step, from which the second
    derivative of the solution is estimated. The step is then chosen such
    that ``h**order * max(||y'/scale||, ||y''/scale||) = 0.01``.

    Parameters
    ----------
    compute : callable (float, ndarray, ndarray)
        Counted derivative evaluation, ``compute(t, y, out)``.
    forward : bool
        Forward integration indicator.
    order : int
        Order of the method.
    scale : ndarray, shape (ndof,)
        Error scaling vector.
    t0 : float
        Start time.
    y0, f0 : ndarray, shape (ndof,)
        State and derivative at `t0`.
    y1, f1 : ndarray, shape (ndof,)
        Work arrays, overwritten.
    min_step, max_step : float
        Absolute step bounds.

    Returns
    -------
    h : float
        Signed initial step.
    """

    y_on_scale2 = squared_scaled_norm(y0, scale)
    f_on_scale2 = squared_scaled_norm(f0, scale)

    if y_on_scale2 < 1.0e-10 or f_on_scale2 < 1.0e-10:
        h = 1.0e-6
    else:
        h = 0.01*np.sqrt(y_on_scale2/f_on_scale2)

    if not forward:
        h = -h

    # Euler step with the rough guess
    y1[:] = y0 + h*f0
    compute(t0 + h, y1, f1)

    ddy_on_scale = np.sqrt(squared_scaled_distance(f1, f0, scale))/abs(h)

    max_inv2 = max(np.sqrt(f_on_scale2), ddy_on_scale)
    if max_inv2 < 1.0e-15:
        h1 = max(1.0e-6, 0.001*abs(h))
    else:
        h1 = (0.01/max_inv2)**(1.0/order)

    h = min(100.0*abs(h), h1)
    h = max(h, 1.0e-12*abs(t0))  # avoids cancellation when computing t1 - t0
    h = min(max(h, min_step), max_step)

    return h if forward else -h


def try_step(compute: Callable[[float, np.ndarray, np.ndarray], None], t0: float,
             y0: np.ndarray, step: float, k: int, sequence: np.ndarray,
             scale: np.ndarray, f: np.ndarray, y_middle: np.ndarray, y_end: np.ndarray,
             y_tmp: np.ndarray, config: GBSConfig) -> bool:
    """Advance the state over one macro-step with the modified midpoint method.

    Parameters
    ----------
    compute : callable (float, ndarray, ndarray)
        Counted derivative evaluation, ``compute(t, y, out)``.
    t0 : float
        Step start time.
    y0 : ndarray, shape (ndof,)
        State at `t0`.
    step : float
        Signed macro-step size.
    k : int
        Extrapolation level, the step is split in ``sequence[k]`` substeps.
    sequence : ndarray, shape (size,)
        Substep counts of each level.
    scale : ndarray, shape (ndof,)
        Error scaling vector used by the stability check.
    f : ndarray, shape (sequence[k] + 1, ndof)
        Derivatives at the substep nodes. Row 0 must hold the derivative
        at `t0` on entry, the other rows are filled by this function.
    y_middle : ndarray, shape (ndof,)
        Receives the state at the middle of the step.
    y_end : ndarray, shape (ndof,)
        Receives the state at the end of the step.
    y_tmp : ndarray, shape (ndof,)
        Work array.
    config : GBSConfig
        Stability check settings.

    Returns
    -------
    stable : bool
        False if the stability check failed, in which case `y_end` is
        meaningless and the step must be retried with a smaller size.
    """

    n = sequence[k]
    sub_step = step/n
    sub_step2 = 2*sub_step

    # First substep: explicit Euler
    t = t0 + sub_step
    y_tmp[:] = y0
    y_end[:] = y0 + sub_step*f[0]
    compute(t, y_end, f[1])

    # the two latest substep states, swapped by reference
    previous, current = y_tmp, y_end

    check = config.perform_test and k < config.max_iter
    initial_norm = squared_scaled_norm(f[0], scale) if check else 0.0

    for j in range(1, n):

        if 2*j == n:
            y_middle[:] = current

        t += sub_step
        previous += sub_step2*f[j]
        previous, current = current, previous

        compute(t, current, f[j+1])

        if check and j <= config.max_checks:
            delta_norm = squared_scaled_distance(f[j+1], f[0], scale)
            if delta_norm > 4*max(1.0e-15, initial_norm):
                return False

    # Correction of the last substep
    y_end[:] = 0.5*(previous + current + sub_step*f[n])
    return True
