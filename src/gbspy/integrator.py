import logging
from typing import Callable, List, Optional, Tuple, Union

import numpy as np

from gbspy.config import GBSConfig
from gbspy.controllers import OrderStepController, Verdict
from gbspy.dense import GBSStepInterpolator
from gbspy.events import (DEFAULT_CONVERGENCE, DEFAULT_MAX_CHECK_INTERVAL,
                          DEFAULT_MAX_ITERATION_COUNT, EventHandler, EventState,
                          FunctionEvent)
from gbspy.exceptions import (ConfigurationError, DimensionMismatchError,
                              MaxCountExceededError)
from gbspy.extrapolation import ExtrapolationTable
from gbspy.handlers import StepHandler, TimeSampler
from gbspy.step import compute_initial_step, rescale, try_step
from gbspy.tables import extrapolation_tables
from gbspy.utils import as_state, as_tolerance, equals_ulp, wrap_derivatives

logger = logging.getLogger(__name__)

Tolerance = Union[float, np.ndarray]


class GraggBulirschStoerIntegrator:
    """Gragg-Bulirsch-Stoer extrapolation integrator with dense output.

    This integrator solves the system of ordinary differential equations::

        dy / dt = f(t, y, *args)
        y(t0) = y0

    Each macro-step is computed several times with the modified midpoint
    method, using an increasing number of substeps, and the results are
    extrapolated towards a null substep with the Aitken-Neville scheme.
    Both the step size and the extrapolation order, i.e. the number of
    extrapolation levels, are adapted along the integration so as to
    minimize the number of function calls per unit step.

    The dense output is a polynomial that matches the states and the
    derivatives at both ends of the step plus a set of derivatives at its
    middle, estimated by extrapolating centered differences of the
    substeps derivatives.

    Parameters
    ----------
    min_step : float
        Minimal step size, the last step can be smaller than this.
    max_step : float
        Maximal step size.
    abs_tol, rel_tol : float or ndarray, shape (ndof,)
        Absolute and relative tolerances. The solver keeps the local error
        estimates smaller than ``abs_tol + rel_tol * abs(y)``.
    config : GBSConfig, optional
        Tuning parameters, by default a fresh `GBSConfig`.

    Raises
    ------
    ConfigurationError
        If the step bounds are not ``0 <= min_step <= max_step`` with a
        positive `max_step`, or if a tolerance is negative.

    References
    ----------
    .. [1] E. Hairer, S. P. Norsett G. Wanner, "Solving Ordinary Differential
           Equations I: Nonstiff Problems", Section II.9
    .. [2] E. Hairer, A. Ostermann, "Dense output for extrapolation methods",
           Numerische Mathematik 58 (1990), pp. 419-439
    """

    NAME = "Gragg-Bulirsch-Stoer"

    def __init__(self, min_step: float, max_step: float, abs_tol: Tolerance,
                 rel_tol: Tolerance, config: Optional[GBSConfig] = None):

        if not max_step > 0:
            raise ConfigurationError("maximal step {value} must be positive", max_step)
        if not min_step >= 0:
            raise ConfigurationError("minimal step {value} must not be negative", min_step)
        if min_step > max_step:
            raise ConfigurationError("minimal step {value} larger than maximal step {bound}",
                                     min_step, max_step)

        for tol in (abs_tol, rel_tol):
            if np.any(np.asarray(tol) < 0):
                raise ConfigurationError("tolerance {value} must not be negative", tol)

        self.min_step = abs(min_step)
        self.max_step = abs(max_step)
        self.abs_tol = abs_tol
        self.rel_tol = rel_tol

        self.config = GBSConfig() if config is None else config

        self._initial_step = -1.0
        self._max_evaluations = -1
        self._evaluations = 0

        self._step_handlers: List[StepHandler] = []
        self._event_states: List[EventState] = []

        self._step_start = np.nan
        self._step_size = np.nan
        self._is_last_step = False
        self._states_initialized = False

        self._tables = None
        self._fun = None
        self._ndof = 0

    def set_stability_check(self, perform_test: bool, max_iter: int = -1,
                            max_checks: int = -1, stability_reduction: float = -1.0):
        """Set the stability check controls, see `GBSConfig.set_stability_check`."""
        self.config.set_stability_check(perform_test, max_iter, max_checks, stability_reduction)

    def set_control_factors(self, control1: float = -1.0, control2: float = -1.0,
                            control3: float = -1.0, control4: float = -1.0):
        """Set the step size control factors, see `GBSConfig.set_control_factors`."""
        self.config.set_control_factors(control1, control2, control3, control4)

    def set_order_control(self, max_order: int = -1, control1: float = -1.0,
                          control2: float = -1.0):
        """Set the order control parameters, see `GBSConfig.set_order_control`."""
        self.config.set_order_control(max_order, control1, control2)

    def set_interpolation_control(self, use_interpolation_error: bool, mudif: int = -1):
        """Set the interpolation control parameters, see `GBSConfig.set_interpolation_control`."""
        self.config.set_interpolation_control(use_interpolation_error, mudif)

    @property
    def initial_step(self) -> float:
        """User-supplied initial step size, negative if it shall be computed."""
        return self._initial_step

    @initial_step.setter
    def initial_step(self, h: float):
        if h < self.min_step or h > self.max_step:
            # ignored, the initial step will be estimated
            self._initial_step = -1.0
        else:
            self._initial_step = h

    @property
    def max_evaluations(self) -> int:
        """Maximal number of derivative evaluations, negative for no limit."""
        return self._max_evaluations

    @max_evaluations.setter
    def max_evaluations(self, n: int):
        self._max_evaluations = -1 if n < 0 else int(n)

    @property
    def evaluations(self) -> int:
        """Number of derivative evaluations of the last integration."""
        return self._evaluations

    @property
    def current_step_start(self) -> float:
        return self._step_start

    @property
    def current_signed_step(self) -> float:
        return self._step_size

    def add_step_handler(self, handler: StepHandler):
        self._step_handlers.append(handler)

    @property
    def step_handlers(self) -> List[StepHandler]:
        return list(self._step_handlers)

    def clear_step_handlers(self):
        self._step_handlers = []

    def add_event_handler(self, handler: EventHandler,
                          max_check_interval: float = DEFAULT_MAX_CHECK_INTERVAL,
                          convergence: float = DEFAULT_CONVERGENCE,
                          max_iteration_count: int = DEFAULT_MAX_ITERATION_COUNT):
        """Add an event handler.

        Parameters
        ----------
        handler : EventHandler
            Event handler.
        max_check_interval : float, optional
            Maximal time interval between switching function checks.
        convergence : float, optional
            Convergence threshold on the event times.
        max_iteration_count : int, optional
            Maximal number of iterations of the root finder.
        """

        self._event_states.append(
            EventState(handler, max_check_interval, convergence, max_iteration_count))

    @property
    def event_handlers(self) -> List[EventHandler]:
        return [state.handler for state in self._event_states]

    def clear_event_handlers(self):
        self._event_states = []

    def _extrapolation_tables(self):
        max_order = self.config.max_order
        if self._tables is None or self._tables[0] != max_order:
            self._tables = (max_order, *extrapolation_tables(max_order))
        return self._tables[1:]

    def compute_derivatives(self, t: float, y: np.ndarray, out: np.ndarray):
        """Evaluate the derivatives into `out`, counting the evaluations.

        Raises
        ------
        MaxCountExceededError
            If the number of evaluations exceeds `max_evaluations`.
        DimensionMismatchError
            If the derivatives do not have the dimension of the state.
        """

        self._evaluations += 1
        if 0 <= self._max_evaluations < self._evaluations:
            raise MaxCountExceededError(self._max_evaluations)

        y_dot = np.asarray(self._fun(t, y), dtype=np.float64)
        if y_dot.size != self._ndof:
            raise DimensionMismatchError(y_dot.size, self._ndof)

        out[:] = y_dot.reshape(-1)

    def integrate(self, fun: Callable[..., np.ndarray], t0: float, y0: np.ndarray,
                  t: float, args: tuple = ()) -> Tuple[float, np.ndarray]:
        """Integrate the equations from `t0` to `t`.

        Parameters
        ----------
        fun : callable
            Right-hand side of the system, ``fun(t, y, *args)`` returns
            the derivatives as an array of the same dimension as `y`. It
            shall not modify `y`.
        t0 : float
            Initial time.
        y0 : ndarray, shape (ndof,)
            Initial state, left untouched.
        t : float
            Target time, integration goes backward if ``t < t0``.
        args : tuple, optional
            Additional arguments of `fun`.

        Returns
        -------
        t : float
            Time reached, which differs from the target when a terminal
            event stopped the integration.
        y : ndarray, shape (ndof,)
            State reached.

        Raises
        ------
        DimensionMismatchError
            If a tolerance vector or the derivatives do not match the state
            dimension.
        MaxCountExceededError
            If the evaluation budget or a root finder budget is exhausted.
        StepSizeTooSmallError
            If a step smaller than `min_step` would be needed.
        NoBracketingError
            If an event root cannot be bracketed.
        """

        t0, t = float(t0), float(t)

        y = as_state(y0)
        ndof = y.shape[0]

        abs_tol = as_tolerance(self.abs_tol, ndof)
        rel_tol = as_tolerance(self.rel_tol, ndof)
        for tol in (abs_tol, rel_tol):
            if tol.shape[0] != ndof:
                raise DimensionMismatchError(tol.shape[0], ndof)

        self._fun = wrap_derivatives(fun, args)
        self._ndof = ndof
        self._evaluations = 0
        self._step_start = t0
        self._step_size = 0.0

        y_dot0 = np.zeros((ndof,))

        if t == t0:
            # evaluation only checks the derivatives dimension
            self.compute_derivatives(t0, y, y_dot0)
            return t0, y

        logger.info("%s integration from %s to %s, %d equations",
                    self.NAME, t0, t, ndof)

        forward = t > t0
        sequence, cost_per_step, coeff = self._extrapolation_tables()

        table = ExtrapolationTable(sequence, coeff, ndof)
        y1 = table.y1
        y_dot1 = np.zeros((ndof,))
        y_tmp = np.zeros((ndof,))
        y_tmp_dot = np.zeros((ndof,))

        scale = np.zeros((ndof,))
        rescale(y, y, abs_tol, rel_tol, scale)

        controller = OrderStepController(self.config, sequence, cost_per_step,
                                         self.min_step, self.max_step)
        controller.start(rel_tol[0])

        # the interpolator shares the integrator arrays
        interpolator = GBSStepInterpolator(y, y_dot0, y1, y_dot1, table.y_mid_dots, forward)
        interpolator.store_time(t0)

        for handler in self._step_handlers:
            handler.init(t0, y.copy(), t)
        for state in self._event_states:
            state.handler.init(t0, y.copy(), t)
        self._states_initialized = False

        h_new = 0.0
        new_step = True
        first_step_already_computed = False
        self._is_last_step = False
        n_accepted = n_rejected = 0

        while True:

            if new_step:
                interpolator.shift()

                # first evaluation, at the beginning of the step
                if not first_step_already_computed:
                    self.compute_derivatives(self._step_start, y, y_dot0)

                if controller.first_time:
                    h_new = self._initial_step_size(forward, 2*controller.target_iter + 1,
                                                    scale, y, y_dot0, y_tmp, y_tmp_dot)
                new_step = False

            self._step_size = h_new

            # step adjustment near bounds
            if (forward and self._step_start + self._step_size > t) or \
                    (not forward and self._step_start + self._step_size < t):
                self._step_size = t - self._step_start

            next_t = self._step_start + self._step_size
            self._is_last_step = next_t >= t if forward else next_t <= t
            if self._is_last_step:
                # the final time is reached exactly
                next_t = t

            # iterate over several substep sizes
            decision = None
            k = -1
            while decision is None or decision.verdict == Verdict.CONTINUE:
                k += 1

                f = table.fk[k]
                f[0] = y_dot0
                y_middle, y_end = table.substep_targets(k)

                if not try_step(self.compute_derivatives, self._step_start, y, self._step_size,
                                k, sequence, scale, f, y_middle, y_end, y_tmp, self.config):
                    # the stability check failed, we reduce the global step
                    decision = controller.stability_rejection(self._step_size, forward)

                elif k > 0:
                    # extrapolate the state at the end of the step using last iteration data
                    table.extrapolate_end(k)
                    error = table.error(y, scale, abs_tol, rel_tol)
                    decision = controller.assess(k, error, self._step_size, forward,
                                                 self._is_last_step)

            reject = decision.verdict == Verdict.REJECT
            if reject:
                h_new = decision.step
            else:
                # derivatives at end of step
                self.compute_derivatives(next_t, y1, y_dot1)

            # dense output handling
            h_int = self.max_step
            if not reject:
                # extrapolate state at middle point of the step
                table.extrapolate_middle(k)

                mu = 2*k - self.config.mudif + 3
                table.midpoint_derivatives(k, mu, self._step_size)
                interpolator.compute_coefficients(mu, self._step_size)

                if mu >= 0 and self.config.use_interpolation_error:
                    # use the interpolation error to limit stepsize
                    bound = controller.interpolation_bound(self._step_size,
                                                           interpolator.estimate_error(scale), mu)
                    h_int = bound.step
                    if bound.verdict == Verdict.REJECT:
                        h_new = h_int
                        reject = True
                        decision = bound

            if reject:
                n_rejected += 1
                logger.debug("step rejected at t=%s, order %d, size %s: %s",
                             self._step_start, 2*(k + 1), self._step_size, decision.reason)
            else:
                n_accepted += 1
                logger.debug("step accepted at t=%s, order %d, size %s",
                             self._step_start, 2*(k + 1), self._step_size)

                # discrete events handling
                interpolator.store_time(next_t)
                self._step_start = self.accept_step(interpolator, y1, y_dot1, t)

                # prepare next step
                interpolator.store_time(self._step_start)
                y[:] = y1
                y_dot0[:] = y_dot1
                first_step_already_computed = True

                h_new = controller.select_next(k, self._step_size, forward)
                new_step = True

            h_new = min(h_new, h_int)
            if not forward:
                h_new = -h_new

            controller.finish_attempt(reject)
            if reject:
                self._is_last_step = False
            elif self._is_last_step:
                break

        logger.info("%s integration stopped at %s after %d steps (%d rejected), "
                    "%d evaluations", self.NAME, self._step_start, n_accepted,
                    n_rejected, self._evaluations)

        return self._step_start, y.copy()

    def _initial_step_size(self, forward: bool, order: int, scale: np.ndarray,
                           y: np.ndarray, y_dot: np.ndarray, y_tmp: np.ndarray,
                           y_tmp_dot: np.ndarray) -> float:

        if self._initial_step > 0:
            return self._initial_step if forward else -self._initial_step

        return compute_initial_step(self.compute_derivatives, forward, order, scale,
                                    self._step_start, y, y_dot, y_tmp, y_tmp_dot,
                                    self.min_step, self.max_step)

    def accept_step(self, interpolator: GBSStepInterpolator, y: np.ndarray,
                    y_dot: np.ndarray, t_end: float) -> float:
        """Dispatch an accepted step to the event and step handlers.

        The events occurring during the step are handled chronologically.
        The step handlers receive the part of the step before each event,
        and the integration is either stopped at an event or restarted
        from it when the state or its derivatives have been reset.

        Parameters
        ----------
        interpolator : GBSStepInterpolator
            Dense output of the step.
        y, y_dot : ndarray, shape (ndof,)
            State and derivatives at the end of the step, updated in-place
            when the step is truncated by an event.
        t_end : float
            Final integration time.

        Returns
        -------
        t : float
            Time at which the next step starts.
        """

        previous_t = interpolator.global_previous_time
        current_t = interpolator.global_current_time
        forward = interpolator.is_forward

        # initialize the events states if needed
        if not self._states_initialized:
            for state in self._event_states:
                state.reinitialize_begin(interpolator)
            self._states_initialized = True

        # search for next events that may occur during the step
        occurring = [state for state in self._event_states if state.evaluate_step(interpolator)]

        while occurring:

            # handle the chronologically first event
            occurring.sort(key=lambda s: s.event_time if forward else -s.event_time)
            current_event = occurring.pop(0)

            # restrict the interpolator to the first part of the step, up to the event
            event_t = current_event.event_time
            interpolator.previous_time = previous_t
            interpolator.current_time = event_t

            # get state at event time
            event_y, _ = interpolator.interpolate(event_t)

            # advance all event states to current time
            for state in self._event_states:
                state.step_accepted(event_t, event_y)
            stop = any(state.stop() for state in self._event_states)

            # handle the first part of the step, up to the event
            for handler in self._step_handlers:
                handler.handle_step(interpolator, stop)

            if stop:
                # the event asked to stop integration
                self._is_last_step = True
                logger.info("integration stopped by an event at %s", event_t)
                y[:] = event_y
                return event_t

            need_reset = False
            for state in self._event_states:
                need_reset = state.reset(event_t, event_y) or need_reset

            if need_reset:
                # some event handler has triggered changes that
                # invalidate the derivatives, we need to recompute them
                logger.debug("state reset by an event at %s", event_t)
                interpolator.interpolated_time = event_t
                y[:] = event_y
                self.compute_derivatives(event_t, y, y_dot)

                # the switching functions shall be evaluated on the new state
                self._states_initialized = False
                self._is_last_step = equals_ulp(event_t, t_end)
                return event_t

            # prepare handling of the remaining part of the step
            previous_t = event_t
            interpolator.previous_time = event_t
            interpolator.current_time = current_t

            # check if the same event occurs again in the remaining part of the step
            if current_event.evaluate_step(interpolator):
                occurring.append(current_event)

        # last part of the step, after the last event
        current_y, _ = interpolator.interpolate(current_t)
        for state in self._event_states:
            state.step_accepted(current_t, current_y)
        stop = any(state.stop() for state in self._event_states)
        self._is_last_step = stop or equals_ulp(current_t, t_end)

        # handle the remaining part of the step, after all events if any
        for handler in self._step_handlers:
            handler.handle_step(interpolator, self._is_last_step)

        return current_t


def solve(fun: Callable[..., np.ndarray], tspan: np.ndarray, y0: np.ndarray,
          args: tuple = None, atol: Tolerance = 1e-5, rtol: Tolerance = 1e-4,
          events: List[Callable] = None, events_tol: float = 1e-10,
          min_step: float = 0.0, max_step: float = None, max_order: int = -1,
          max_evaluations: int = -1, initial_step: float = -1.0):
    """Integrates a system of Ordinary Differential Equations (ODE).

    This function integrates a system of ordinary differential
    equations in the form of::

        dy / dt = f(t, y, *args)
        y(t0) = y0

    with the Gragg-Bulirsch-Stoer integrator.

    Parameters
    ----------
    fun : callable
        Function representing the system of ODEs to integrate, with
        the calling signature ``fun(t, y, *args)``. It returns the
        derivatives as an array of the same dimension as `y`.
    tspan : ndarray, shape (npnts, )
        Desired solution points. The initial and final values
        are considered the extrems of the integration interval.
        If only (t0, tf) are specified, the solver will only return
        the solution at the final integration time (tf). Otherwise,
        it will return the dense-output solution at the specified
        times. This array must either be sorted in ascending
        (forward-integration) or descending (backwards-integration)
        order.
    y0 : ndarray, shape (ndof, )
        Initial state.
    args : tuple, optional
        Additional ODE parameters.
    atol, rtol : float or ndarray, optional
        Absolute and relative integration tolerances. The solver
        keeps the local error estimates smaller than
        ``atol + rtol * abs(y)``.
    events : list, optional
        A list of event functions. Each of these functions shall have
        the signature: ``event(t, y, args)`` and return three values:

            value : float
                The result of an expression which describes the event.
                The event happens when value is equal to zero.
            isterminal : int
                Specifies whether the integration shall be stopped if
                this specific event occurs. A value of 1 will
                terminate the integration on occurance.
            direction : int
                Direction of a zero crossing. If direction = 0 all
                zeros will be located. A positive `direction` will
                trigger the event only when the event `value` goes
                from negative to positive and viceversa if
                `direction` is negative.

    events_tol : float, optional
        Absolute tolerance for the event root-finding algorithm.
    min_step, max_step : float, optional
        Step bounds, by default 0 and the length of `tspan`.
    max_order : int, optional
        Maximal extrapolation order, by default 18.
    max_evaluations : int, optional
        Maximal number of derivative evaluations, unlimited by default.
    initial_step : float, optional
        Initial step size, estimated by default.

    Returns
    -------
    th : ndarray, shape (n, )
        Time points at which the solution has been computed.
    yh : ndarray, shape (n, ndof)
        Values of the solution at `t`. If `tspan` contains
        only 2 values, only the final integration state
        is returned.
    t_events : list of list of float
        Only returned when `events` are given. It contains for each
        event a list of values at which the event was detected.
    y_events : list of list of ndarray
        Only returned when `events` are given. It contains the solution
        associated to each value of `t_events`.
    """

    tspan = np.asarray(tspan, dtype=np.float64)
    y0 = as_state(y0)

    if args is None:
        args = ()
    elif not isinstance(args, tuple):
        args = (args,)

    if max_step is None:
        max_step = abs(tspan[-1] - tspan[0])
        if max_step == 0:
            max_step = np.inf

    config = GBSConfig()
    config.set_order_control(max_order)

    integrator = GraggBulirschStoerIntegrator(min_step, max_step, atol, rtol, config)
    integrator.max_evaluations = max_evaluations
    integrator.initial_step = initial_step

    dense = tspan.shape[0] > 2
    if dense:
        sampler = TimeSampler(tspan)
        integrator.add_step_handler(sampler)

    handlers = [FunctionEvent(e, args) for e in (events or [])]
    for handler in handlers:
        integrator.add_event_handler(handler, convergence=events_tol)

    tf, yf = integrator.integrate(fun, tspan[0], y0, tspan[-1], args)

    if dense and sampler.states:
        th, yh = sampler.t, sampler.y
    elif dense:
        # nothing to integrate
        th, yh = tspan[:1], np.atleast_2d(yf)
    else:
        th, yh = np.asarray([tf]), np.atleast_2d(yf)

    if events is None:
        return th, yh

    return th, yh, [h.t_events for h in handlers], [h.y_events for h in handlers]
