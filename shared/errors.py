"""Exception types shared across the pipeline."""


class LinewatchError(Exception):
    """Base class for linewatch errors."""


class UnknownVersionError(LinewatchError):
    """A core-logic version id is not registered."""


class VersionConflictError(LinewatchError):
    """Attempt to re-register (and so mutate) a shipped core-logic version."""


class InvalidTransitionError(LinewatchError):
    """A signal state change that the state machine does not allow."""

    def __init__(self, from_state: str, to_state: str):
        super().__init__(f"Invalid signal transition {from_state} -> {to_state}")
        self.from_state = from_state
        self.to_state = to_state


class ConcurrentUpdateError(LinewatchError):
    """A conditional update found the row in a different state than expected."""
