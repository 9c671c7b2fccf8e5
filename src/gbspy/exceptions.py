"""Errors raised by the integrator.

Step rejections are internal control flow and never surface as exceptions;
only the problems listed here cross the integrator boundary.
"""


class IntegrationError(Exception):
    """Base class of every error raised by gbspy."""


class ConfigurationError(IntegrationError, ValueError):
    """An integrator setting is invalid."""

    def __init__(self, message: str, value, bound=None):
        super().__init__(message.format(value=value, bound=bound))
        self.value = value
        self.bound = bound


class DimensionMismatchError(IntegrationError, ValueError):
    """An array does not have the dimension of the state vector."""

    def __init__(self, wrong: int, expected: int):
        super().__init__("dimension mismatch: {} != {}".format(wrong, expected))
        self.wrong = wrong
        self.expected = expected


class StepSizeTooSmallError(IntegrationError, ArithmeticError):
    """The step size controller asked for a step below the minimal step."""

    def __init__(self, value: float, bound: float):
        super().__init__("minimal step size ({:.2e}) reached, integration "
                         "needs {:.2e}".format(bound, value))
        self.value = value
        self.bound = bound


class MaxCountExceededError(IntegrationError, RuntimeError):
    """An evaluation or iteration budget has been exhausted."""

    def __init__(self, max_count: int, what: str = "evaluations"):
        super().__init__("maximal count ({}) of {} exceeded".format(max_count, what))
        self.max_count = max_count


class NoBracketingError(IntegrationError, ArithmeticError):
    """The event function does not change sign over the search interval."""

    def __init__(self, lo: float, hi: float, f_lo: float, f_hi: float):
        super().__init__("function values at endpoints do not have different signs, "
                         "endpoints: [{}, {}], values: [{}, {}]".format(lo, hi, f_lo, f_hi))
        self.lo = lo
        self.hi = hi
        self.f_lo = f_lo
        self.f_hi = f_hi
