from bisect import bisect_left
from enum import Enum
from typing import List, Protocol, Tuple

import numpy as np

from gbspy.dense import GBSStepInterpolator
from gbspy.utils import equals_ulp


class StepHandler(Protocol):
    """Receives the dense output of every accepted step."""

    def init(self, t0: float, y0: np.ndarray, t: float) -> None:
        ...

    def handle_step(self, interpolator: GBSStepInterpolator, is_last: bool) -> None:
        ...


class FixedStepHandler(Protocol):
    """Receives the solution sampled at fixed time intervals, see `StepNormalizer`."""

    def init(self, t0: float, y0: np.ndarray, t: float) -> None:
        ...

    def handle_step(self, t: float, y: np.ndarray, y_dot: np.ndarray, is_last: bool) -> None:
        ...


class NormalizerMode(Enum):
    """Placement of the normalized samples.

    INCREMENT samples at ``t0 + i*h`` while MULTIPLES samples at the
    integer multiples of `h`.
    """

    INCREMENT = 0
    MULTIPLES = 1


class NormalizerBounds(Enum):
    """Inclusion of the integration bounds in the normalized samples."""

    NEITHER = (False, False)
    FIRST = (True, False)
    LAST = (False, True)
    BOTH = (True, True)

    @property
    def first_included(self) -> bool:
        return self.value[0]

    @property
    def last_included(self) -> bool:
        return self.value[1]


class StepNormalizer:
    """Turn the variable integration steps into fixed size samples.

    Parameters
    ----------
    h : float
        Sampling step, its sign is ignored.
    handler : FixedStepHandler
        Handler receiving the samples.
    mode : NormalizerMode, optional
        Placement of the samples, by default INCREMENT.
    bounds : NormalizerBounds, optional
        Inclusion of the integration bounds, by default FIRST.
    """

    def __init__(self, h: float, handler: FixedStepHandler,
                 mode: NormalizerMode = NormalizerMode.INCREMENT,
                 bounds: NormalizerBounds = NormalizerBounds.FIRST):

        self.h = abs(h)
        self.handler = handler
        self.mode = mode
        self.bounds = bounds

        self._reset()

    def _reset(self):
        self._first_time = np.nan
        self._last_time = np.nan
        self._last_state = None
        self._last_derivatives = None
        self._forward = True

    def init(self, t0: float, y0: np.ndarray, t: float):
        self.h = abs(self.h)
        self._reset()
        self.handler.init(t0, y0, t)

    def handle_step(self, interpolator: GBSStepInterpolator, is_last: bool):

        if self._last_state is None:
            self._first_time = interpolator.previous_time
            self._store(interpolator, interpolator.previous_time)
            self._forward = interpolator.current_time >= self._last_time
            if not self._forward:
                self.h = -self.h

        if self.mode == NormalizerMode.INCREMENT:
            next_time = self._last_time + self.h
        else:
            next_time = (np.floor(self._last_time/self.h) + 1)*self.h
            if equals_ulp(next_time, self._last_time):
                next_time += self.h

        while self._in_step(next_time, interpolator):
            self._emit(False)
            self._store(interpolator, next_time)
            next_time += self.h

        if is_last:
            add_last = self.bounds.last_included and self._last_time != interpolator.current_time
            self._emit(not add_last)
            if add_last:
                self._store(interpolator, interpolator.current_time)
                self._emit(True)

    def _in_step(self, t: float, interpolator: GBSStepInterpolator) -> bool:
        if self._forward:
            return t <= interpolator.current_time
        return t >= interpolator.current_time

    def _emit(self, is_last: bool):
        if not self.bounds.first_included and self._first_time == self._last_time:
            return
        self.handler.handle_step(self._last_time, self._last_state,
                                 self._last_derivatives, is_last)

    def _store(self, interpolator: GBSStepInterpolator, t: float):
        self._last_time = t
        self._last_state, self._last_derivatives = interpolator.interpolate(t)


class ContinuousOutputModel:
    """Store the dense output of a whole integration.

    Every accepted step is kept as an independent interpolator snapshot,
    the solution can then be evaluated anywhere within the integration
    range once the integration is over.
    """

    def __init__(self):
        self.steps: List[GBSStepInterpolator] = []
        self._ends: List[float] = []
        self._forward = True
        self._initial_time = np.nan
        self._final_time = np.nan

    def init(self, t0: float, y0: np.ndarray, t: float):
        self.steps = []
        self._ends = []
        self._forward = True
        self._initial_time = np.nan
        self._final_time = np.nan

    def handle_step(self, interpolator: GBSStepInterpolator, is_last: bool):

        if not self.steps:
            self._initial_time = interpolator.previous_time
            self._forward = interpolator.is_forward

        self.steps.append(interpolator.copy())
        self._final_time = interpolator.current_time

        # search key increasing with time in both directions
        self._ends.append(self._final_time if self._forward else -self._final_time)

    @property
    def initial_time(self) -> float:
        return self._initial_time

    @property
    def final_time(self) -> float:
        return self._final_time

    def interpolate(self, t: float) -> Tuple[np.ndarray, np.ndarray]:
        """Return the state and derivatives at time `t`.

        Times outside of the integration range are evaluated with the
        polynomial of the closest step.
        """

        if not self.steps:
            raise ValueError("no step has been stored")

        key = t if self._forward else -t
        index = min(bisect_left(self._ends, key), len(self.steps) - 1)
        return self.steps[index].interpolate(t)


class TimeSampler:
    """Sample the dense output at prescribed times.

    Parameters
    ----------
    times : ndarray, shape (n,)
        Sampling times, sorted in the integration direction.
    """

    def __init__(self, times: np.ndarray):
        self.times = np.asarray(times, dtype=np.float64)
        self.states: List[np.ndarray] = []
        self._index = 0

    @property
    def t(self) -> np.ndarray:
        return self.times[:len(self.states)]

    @property
    def y(self) -> np.ndarray:
        return np.array(self.states)

    def init(self, t0: float, y0: np.ndarray, t: float):
        self.states = []
        self._index = 0

    def handle_step(self, interpolator: GBSStepInterpolator, is_last: bool):

        t1 = interpolator.current_time
        forward = interpolator.is_forward

        while self._index < self.times.shape[0]:
            ti = self.times[self._index]
            past = ti > t1 if forward else ti < t1
            if past and not equals_ulp(ti, t1):
                break

            self.states.append(interpolator.interpolate(ti)[0])
            self._index += 1
