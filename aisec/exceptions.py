# aisec/exceptions.py

class OrchestrationError(Exception):
    """Base class for scan orchestration errors"""


class AdapterResolutionError(OrchestrationError):
    """No adapter is registered for the requested tool kind."""


class AdapterConfigurationError(OrchestrationError):
    """An adapter descriptor is unusable (bad or clashing completion pattern)."""


class InvalidTransitionError(OrchestrationError):
    """A session was asked to move to a phase its current phase cannot reach."""


class StartFailure(OrchestrationError):
    """The start call did not yield a task handle."""


class PollFailure(OrchestrationError):
    """A single log poll failed. Transient: the loop keeps going."""


class StreamEndFailure(OrchestrationError):
    """The remote log stream reported an error. Terminal for the session."""


class ResultFetchFailure(OrchestrationError):
    """The result payload for a detected marker could not be retrieved."""
