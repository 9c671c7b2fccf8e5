from enum import Enum
from typing import NamedTuple

import numpy as np

from gbspy.config import GBSConfig
from gbspy.step import filter_step

# Errors above this threshold are considered divergent
DIVERGENCE_THRESHOLD = 1.0e15

# Interpolation errors above this threshold reject the step
MAX_INTERPOLATION_ERROR = 10.0


class Verdict(Enum):
    CONTINUE = 0
    ACCEPT = 1
    REJECT = 2


class Decision(NamedTuple):
    """Outcome of the assessment of one extrapolation level.

    `step` is the unsigned size of the next attempt when the verdict is
    REJECT, and is meaningless otherwise.
    """

    verdict: Verdict
    step: float = np.nan
    reason: str = ""


CONTINUE = Decision(Verdict.CONTINUE)
ACCEPT = Decision(Verdict.ACCEPT)


class OrderStepController:
    """Order and step size selection of the extrapolation scheme.

    The controller decides, after each extrapolation level, whether the
    current step can be accepted, must be rejected or needs one more
    level. Once a step is accepted it selects the target level and the size
    of the next step so as to minimize the work per unit step.

    Parameters
    ----------
    config : GBSConfig
        Tuning parameters.
    sequence : ndarray, shape (size,)
        Substep counts of each level.
    cost_per_step : ndarray, shape (size,)
        Cumulative number of function calls of each level.
    min_step, max_step : float
        Absolute step bounds.
    """

    def __init__(self, config: GBSConfig, sequence: np.ndarray,
                 cost_per_step: np.ndarray, min_step: float, max_step: float):

        self.config = config
        self.sequence = sequence
        self.cost_per_step = cost_per_step
        self.min_step = min_step
        self.max_step = max_step

        size = sequence.shape[0]
        self.optimal_step = np.zeros((size,))
        self.cost_per_time_unit = np.zeros((size,))

        self.target_iter = 1
        self.max_error = np.inf
        self.previous_rejected = False
        self.first_time = True

    @property
    def size(self) -> int:
        return self.sequence.shape[0]

    def start(self, rel_tol: float):
        """Reset the controller state for a new integration.

        The initial target level grows with the requested accuracy.
        """

        log10r = np.log10(max(1.0e-10, rel_tol))
        self.target_iter = max(1, min(self.size - 2, int(np.floor(0.5 - 0.6*log10r))))

        self.optimal_step[:] = 0.0
        self.cost_per_time_unit[:] = 0.0
        self.max_error = np.inf
        self.previous_rejected = False
        self.first_time = True

    def _filter(self, h: float, forward: bool, accept_small: bool) -> float:
        return filter_step(h, forward, accept_small, self.min_step, self.max_step)

    def _reduced_step(self, step: float, forward: bool) -> float:
        return abs(self._filter(step*self.config.stability_reduction, forward, False))

    def _lower_target(self):
        # decrease the order if the previous level is cheaper
        t = self.target_iter
        if t > 1 and self.cost_per_time_unit[t-1] < self.config.order_control1*self.cost_per_time_unit[t]:
            self.target_iter = t - 1

    def stability_rejection(self, step: float, forward: bool) -> Decision:
        """Reject the step after a failed stability check."""
        return Decision(Verdict.REJECT, self._reduced_step(step, forward), "unstable")

    def assess(self, k: int, error: float, step: float, forward: bool,
               is_last_step: bool) -> Decision:
        """Assess the error of extrapolation level `k`.

        Parameters
        ----------
        k : int
            Extrapolation level, at least 1.
        error : float
            Scaled RMS error of the level.
        step : float
            Signed size of the current step.
        forward : bool
            Integration direction.
        is_last_step : bool
            True if the step reaches the integration end.

        Returns
        -------
        decision : Decision
            ACCEPT, REJECT with the size of the next attempt, or CONTINUE
            with the next level.
        """

        if not error <= DIVERGENCE_THRESHOLD or (k > 1 and error > self.max_error):
            return Decision(Verdict.REJECT, self._reduced_step(step, forward), "diverging")

        self.max_error = max(4*error, 1.0)

        # optimal step size for this order
        c = self.config
        exp = 1.0/(2*k + 1)
        pow_ = c.step_control3**exp
        if error == 0:
            fac = 1/pow_
        else:
            fac = c.step_control2/(error/c.step_control1)**exp
            fac = max(pow_/c.step_control4, min(1/pow_, fac))

        self.optimal_step[k] = abs(self._filter(step*fac, forward, True))
        self.cost_per_time_unit[k] = self.cost_per_step[k]/self.optimal_step[k]

        seq = self.sequence
        delta = k - self.target_iter

        if delta == -1:
            if self.target_iter > 1 and not self.previous_rejected:
                if error <= 1.0:
                    return ACCEPT

                # asymptotic evolution of the error
                t = self.target_iter
                ratio = seq[t]*seq[t+1]/(seq[0]*seq[0])
                if error > ratio*ratio:
                    self.target_iter = k
                    self._lower_target()
                    return Decision(Verdict.REJECT, self.optimal_step[self.target_iter],
                                    "no convergence expected")

        elif delta == 0:
            if error <= 1.0:
                return ACCEPT

            ratio = seq[k+1]/seq[0]
            if error > ratio*ratio:
                self._lower_target()
                return Decision(Verdict.REJECT, self.optimal_step[self.target_iter],
                                "no convergence expected")

        elif delta == 1:
            if error > 1.0:
                self._lower_target()
                return Decision(Verdict.REJECT, self.optimal_step[self.target_iter],
                                "error too large")
            return ACCEPT

        elif (self.first_time or is_last_step) and error <= 1.0:
            return ACCEPT

        return CONTINUE

    def interpolation_bound(self, step: float, interp_error: float,
                            mu: int) -> Decision:
        """Bound the next step with the dense-output error.

        Returns
        -------
        decision : Decision
            REJECT when the interpolation error is too large, ACCEPT
            otherwise. In both cases `step` holds the unsigned bound.
        """

        h_int = abs(step/max(interp_error**(1.0/(mu + 4)), 0.01))
        if interp_error > MAX_INTERPOLATION_ERROR:
            return Decision(Verdict.REJECT, h_int, "interpolation error")
        return Decision(Verdict.ACCEPT, h_int)

    def select_next(self, k: int, step: float, forward: bool) -> float:
        """Select the order and the unsigned size of the step following an accepted one.

        Parameters
        ----------
        k : int
            Level at which the step was accepted.
        step : float
            Signed size of the accepted step.
        forward : bool
            Integration direction.

        Returns
        -------
        h_new : float
            Unsigned size of the next step.
        """

        c = self.config
        cptu = self.cost_per_time_unit
        last = self.size - 2

        if k == 1:
            optimal_iter = 1 if self.previous_rejected else 2
        elif k <= self.target_iter:
            optimal_iter = k
            if cptu[k-1] < c.order_control1*cptu[k]:
                optimal_iter = k - 1
            elif cptu[k] < c.order_control2*cptu[k-1]:
                optimal_iter = min(k + 1, last)
        else:
            optimal_iter = k - 1
            if k > 2 and cptu[k-2] < c.order_control1*cptu[k-1]:
                optimal_iter = k - 2
            if cptu[k] < c.order_control2*cptu[optimal_iter]:
                optimal_iter = min(k, last)

        if self.previous_rejected:
            # neither order nor step size may increase after a rejection
            self.target_iter = min(optimal_iter, k)
            return min(abs(step), self.optimal_step[self.target_iter])

        if optimal_iter <= k:
            h_new = self.optimal_step[optimal_iter]
        else:
            if k < self.target_iter and cptu[k] < c.order_control2*cptu[k-1]:
                work = self.cost_per_step[optimal_iter + 1]
            else:
                work = self.cost_per_step[optimal_iter]
            h_new = abs(self._filter(self.optimal_step[k]*work/self.cost_per_step[k],
                                     forward, False))

        self.target_iter = optimal_iter
        return h_new

    def finish_attempt(self, rejected: bool):
        """Record the outcome of a step attempt."""
        self.first_time = False
        self.previous_rejected = rejected
