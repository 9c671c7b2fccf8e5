"""
gbspy

Gragg-Bulirsch-Stoer extrapolation integrator with dense output, in Python
"""

__title__ = "gbspy"
__copyright__ = "© 2022 Michele Ceresoli, Andrea Pasquale"

from .version import __version__

from .integrator import GraggBulirschStoerIntegrator, solve
from .config import GBSConfig
from .events import Action, EventHandler, EventState, FunctionEvent, locate_root
from .handlers import (StepHandler, FixedStepHandler, StepNormalizer, NormalizerMode,
                       NormalizerBounds, ContinuousOutputModel, TimeSampler)
from .dense import GBSStepInterpolator
from .exceptions import (IntegrationError, ConfigurationError, DimensionMismatchError,
                         StepSizeTooSmallError, MaxCountExceededError, NoBracketingError)
