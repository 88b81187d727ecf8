"""
Domain action error taxonomy.

Business-rule violations, expected lease conflicts, configuration defects,
executor failures and storage failures are distinct types so that callers
can react to each differently.
"""


class DomainActionError(Exception):
    """Base class for every error raised by the action subsystem."""
    pass


class ActionValidationError(DomainActionError):
    """Unknown action type or a payload that fails the type's schema."""
    pass


class ActionNotFoundError(DomainActionError):
    pass


class InvalidStateTransitionError(DomainActionError):
    """The requested transition is not allowed from the action's current status."""
    pass


class ConcurrencyError(DomainActionError):
    """Another worker holds a live lease on the action."""
    pass


class ExecutorNotFoundError(DomainActionError):
    """No executor is registered for an action type. A deployment defect."""

    def __init__(self, action_types):
        self.action_types = list(action_types)
        super().__init__(
            "Could not find executor for action type(s): "
            + ", ".join(str(t) for t in self.action_types)
        )


class ExecutionError(DomainActionError):
    """Raised by an executor to report a permanent failure of this attempt."""
    pass


class StorageError(DomainActionError):
    """A failure in the relational store (connectivity, query, constraint)."""
    pass
