# errors.py
"""
Exceptions raised by the simulation core.

Configuration problems are reported before any state is touched, so the
caller can keep running with the previous configuration. Index failures
mean an invariant was broken mid-tick and the tick cannot be trusted.
"""


class ConfigInvalid(ValueError):
    """A SimulationConfig (or particle buffer) failed validation."""


class IndexBuildFailure(RuntimeError):
    """The neighbor index could not be built from the current buffer."""
