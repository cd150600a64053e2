"""Typed errors raised by routine authoring, transforms and session recording."""


class RoutineError(Exception):
    """Base class for all routine and session errors."""


class NotFoundError(RoutineError):
    """A routine or completed session id does not exist (or is not visible)."""


class ValidationError(RoutineError):
    """A block tree or row set breaks the routine invariants.

    Raised for missing or placeholder exercise ids reaching a flatten,
    and for sets/rest values outside their bounds.
    """


class PersistenceError(RoutineError):
    """The persistence collaborator failed during load, save or record."""


class OperationInProgressError(PersistenceError):
    """A save or record is already running for the same builder/recorder."""


class AuthRequiredError(RoutineError):
    """Recording a session needs an authenticated user."""
