from enum import Enum
from typing import Callable, List, Protocol, Tuple

import numpy as np

from gbspy.exceptions import MaxCountExceededError, NoBracketingError
from gbspy.utils import EPS

DEFAULT_MAX_CHECK_INTERVAL = np.inf
DEFAULT_CONVERGENCE = 1.0e-10
DEFAULT_MAX_ITERATION_COUNT = 100

# relative accuracy of the event times, used to leave a root lying at the
# very start of the integration
RELATIVE_ACCURACY = 1.0e-14


class Action(Enum):
    """What the integrator shall do once an event has occurred."""

    STOP = 0
    RESET_STATE = 1
    RESET_DERIVATIVES = 2
    CONTINUE = 3


class EventHandler(Protocol):
    """Switching function whose sign changes mark the events.

    ``reset_state`` is only called when ``event_occurred`` returned
    ``Action.RESET_STATE`` and must return the new state vector.
    """

    def init(self, t0: float, y0: np.ndarray, t: float) -> None:
        ...

    def g(self, t: float, y: np.ndarray) -> float:
        ...

    def event_occurred(self, t: float, y: np.ndarray, increasing: bool) -> Action:
        ...

    def reset_state(self, t: float, y: np.ndarray) -> np.ndarray:
        ...


def locate_root(fun: Callable[[float], float], t_start: float, t_end: float,
                convergence: float, max_iter: int) -> float:
    """Locate the root of a scalar function with Ridder's method.

    The root is searched between `t_start` and `t_end`, where the
    function shall have opposite signs. The bracket is shrunk until its
    width falls below `convergence`, and the bracket end lying on the side
    of `t_end` is returned. When the search runs from the past to the
    future, the returned time is therefore never before the exact root.

    Parameters
    ----------
    fun : Callable
        Scalar function of time.
    t_start, t_end : float
        Search interval bounds, in integration order.
    convergence : float
        Absolute accuracy on the root.
    max_iter : int
        Maximal number of iterations.

    Returns
    -------
    t : float
        Root location, lying at most `convergence` past the exact root.

    Raises
    ------
    NoBracketingError
        If `fun` has the same sign at both ends of the interval.
    MaxCountExceededError
        If convergence is not reached within `max_iter` iterations.
    """

    forward = t_end >= t_start
    if forward:
        a, b = t_start, t_end
    else:
        a, b = t_end, t_start

    fa = fun(a)
    if fa == 0.0:
        return a

    fb = fun(b)
    if fb == 0.0:
        return b

    if fa*fb > 0:
        raise NoBracketingError(a, b, fa, fb)

    for _ in range(max_iter):

        if b - a <= max(convergence, 4*EPS*max(abs(a), abs(b))):
            return b if forward else a

        # Midpoint bisection, that alone halves the bracket
        c = 0.5*(a + b)
        fc = fun(c)
        if fc == 0.0:
            return c

        s = np.sqrt(fc*fc - fa*fb)
        dt = (c - a)*fc/s
        if fa < fb:
            dt = -dt
        t = c + dt

        if fa*fc < 0:
            b, fb = c, fc
        else:
            a, fa = c, fc

        # Ridder's update, whenever it lies within the new bracket
        if a < t < b:
            ft = fun(t)
            if ft == 0.0:
                return t

            if fa*ft < 0:
                b, fb = t, ft
            else:
                a, fa = t, ft

    raise MaxCountExceededError(max_iter, "iterations")


class EventState:
    """Bookkeeping of one event handler along the integration.

    The switching function is sampled at least every `max_check_interval`
    within each step to detect its sign changes, the corresponding roots
    are located with `locate_root` on the dense output of the step.

    Parameters
    ----------
    handler : EventHandler
        Event handler.
    max_check_interval : float
        Maximal time interval between switching function checks.
    convergence : float
        Convergence threshold on the event times.
    max_iteration_count : int
        Maximal number of iterations of the root finder.
    """

    def __init__(self, handler: EventHandler, max_check_interval: float = DEFAULT_MAX_CHECK_INTERVAL,
                 convergence: float = DEFAULT_CONVERGENCE,
                 max_iteration_count: int = DEFAULT_MAX_ITERATION_COUNT):

        self.handler = handler
        self.max_check_interval = max_check_interval
        self.convergence = abs(convergence)
        self.max_iteration_count = max_iteration_count

        self._t0 = np.nan
        self._g0 = np.nan
        self._g0_positive = True
        self._pending_event = False
        self._pending_event_time = np.nan
        self._previous_event_time = np.nan
        self._forward = True
        self._increasing = True
        self._next_action = Action.CONTINUE

    def _g(self, interpolator, t: float) -> float:
        interpolator.interpolated_time = t
        return self.handler.g(t, interpolator.interpolated_state)

    def reinitialize_begin(self, interpolator):
        """Evaluate the switching function at the beginning of the step.

        A null value is replaced by the value slightly after the start, so
        that the sign of the function is known.
        """

        self._forward = interpolator.is_forward
        self._t0 = interpolator.previous_time
        self._g0 = self._g(interpolator, self._t0)

        if self._g0 == 0:
            epsilon = max(self.convergence, abs(RELATIVE_ACCURACY*self._t0))
            t_start = self._t0 + (0.5*epsilon if self._forward else -0.5*epsilon)
            self._g0 = self._g(interpolator, t_start)

        self._g0_positive = self._g0 >= 0

    def evaluate_step(self, interpolator) -> bool:
        """Check whether an event occurs within the soft bounds of the step.

        Returns
        -------
        occurs : bool
            True if an event occurs, its time is then given by `event_time`.
        """

        self._forward = forward = interpolator.is_forward
        t1 = interpolator.current_time
        dt = t1 - self._t0
        if abs(dt) < self.convergence:
            # only a very small step remains
            return False

        n = max(1, int(np.ceil(abs(dt)/self.max_check_interval)))
        h = dt/n

        def g(t):
            return self._g(interpolator, t)

        ta, ga = self._t0, self._g0
        i = 0
        while i < n:

            tb = t1 if i == n - 1 else self._t0 + (i + 1)*h
            gb = g(tb)

            if self._g0_positive ^ (gb >= 0):
                # there is a sign change, an event is expected during this step
                self._increasing = gb >= ga
                root = locate_root(g, ta, tb, self.convergence, self.max_iteration_count)

                if (not np.isnan(self._previous_event_time) and abs(root - ta) <= self.convergence
                        and abs(root - self._previous_event_time) <= self.convergence):
                    # we have either found nothing or found (again) the previous event,
                    # so we simply skip past it and look for the next one
                    while True:
                        ta = ta + self.convergence if forward else ta - self.convergence
                        ga = g(ta)
                        if not ((self._g0_positive ^ (ga >= 0)) and (forward ^ (ta >= tb))):
                            break

                    if forward ^ (ta >= tb):
                        # search again within the remaining part of the interval
                        continue
                    ta, ga = tb, gb

                elif np.isnan(self._previous_event_time) or \
                        abs(self._previous_event_time - root) > self.convergence:
                    self._pending_event_time = root
                    self._pending_event = True
                    return True

                else:
                    # no sign change, the event function is just touching zero
                    ta, ga = tb, gb

            else:
                ta, ga = tb, gb

            i += 1

        # no event during this step
        self._pending_event = False
        self._pending_event_time = np.nan
        return False

    @property
    def event_time(self) -> float:
        """Time of the pending event, infinite in the integration direction if none."""
        if self._pending_event:
            return self._pending_event_time
        return np.inf if self._forward else -np.inf

    def step_accepted(self, t: float, y: np.ndarray):
        """Acknowledge the end of the step, or of the part of it up to an event."""

        self._t0 = t
        self._g0 = self.handler.g(t, y)

        if self._pending_event and abs(self._pending_event_time - t) <= self.convergence:
            # force the sign to its value just after the event
            self._previous_event_time = t
            self._g0_positive = self._increasing
            self._next_action = self.handler.event_occurred(t, y, self._increasing == self._forward)
        else:
            self._g0_positive = self._g0 >= 0
            self._next_action = Action.CONTINUE

    def stop(self) -> bool:
        return self._next_action == Action.STOP

    def reset(self, t: float, y: np.ndarray) -> bool:
        """Let the event handler reset the state vector in-place.

        Returns
        -------
        reset : bool
            True if the state or the derivatives must be recomputed.
        """

        if not (self._pending_event and abs(self._pending_event_time - t) <= self.convergence):
            return False

        if self._next_action == Action.RESET_STATE:
            y[:] = self.handler.reset_state(t, y.copy())

        self._pending_event = False
        self._pending_event_time = np.nan

        return self._next_action in (Action.RESET_STATE, Action.RESET_DERIVATIVES)


class FunctionEvent:
    """Event handler built from a plain event function.

    The function has the signature ``event(t, y, args)`` and returns a
    tuple of three values:

        value : float
            The result of an expression which describes the event.
            The event happens when value is equal to zero.
        isterminal : int
            Specifies whether the integration shall be stopped if
            this specific event occurs. A value of 1 will terminate
            the integration on occurance.
        direction : int
            Direction of a zero crossing. If direction = 0 all zeros
            will be located. A positive `direction` will trigger the
            event only when the event `value` goes from negative to
            positive and viceversa if `direction` is negative.

    The times and states of the triggered events are recorded in `t_events`
    and `y_events`.
    """

    def __init__(self, event: Callable[[float, np.ndarray, tuple], Tuple[float, int, int]],
                 args: tuple = ()):

        self.event = event
        self.args = args

        self.t_events: List[float] = []
        self.y_events: List[np.ndarray] = []

    def init(self, t0: float, y0: np.ndarray, t: float):
        self.t_events = []
        self.y_events = []

    def g(self, t: float, y: np.ndarray) -> float:
        return self.event(t, y, self.args)[0]

    def event_occurred(self, t: float, y: np.ndarray, increasing: bool) -> Action:
        _, isterminal, direction = self.event(t, y, self.args)

        if (direction > 0 and not increasing) or (direction < 0 and increasing):
            return Action.CONTINUE

        self.t_events.append(t)
        self.y_events.append(np.array(y, copy=True))

        return Action.STOP if isterminal else Action.CONTINUE

    def reset_state(self, t: float, y: np.ndarray) -> np.ndarray:
        return y
