"""
Exceptions raised by the modules API, regardless of which backend served the call.

`ConfigurationError` marks a broken process setup and is not meant to be caught.  Everything else
derives from `ModulesError`, and may be handled by callers.
"""

from typing import Optional


class ConfigurationError(RuntimeError):
    """
    The process isn't set up to use the modules API (no project, no context, no credentials).
    """


class ModulesError(Exception):
    """
    Base class of all recoverable errors reported by the modules API.
    """


class InvalidModuleError(ModulesError):
    """
    The requested module doesn't exist.
    """


class InvalidVersionError(ModulesError):
    """
    The requested version doesn't exist, or can't be determined.
    """


class InvalidInstancesError(ModulesError):
    """
    The requested instance or instance count isn't valid for the target version.
    """


class TransientError(ModulesError):
    """
    The backend failed temporarily; the same call may succeed later.
    """


class InstanceUnavailableError(ModulesError):
    """
    No instance id is assigned to the current execution context.
    """


class UnexpectedStateError(ModulesError):
    """
    The backend refused the call because of the target's current state.
    """


class AlreadyInDesiredStateError(UnexpectedStateError):
    """
    A start or stop was requested for a version already serving or stopped.
    """


class RemoteError(ModulesError):
    """
    Uncategorised failure reported by the administrative API.
    """


class ArgumentError(ModulesError, ValueError):
    """
    A malformed argument was passed, and no call was attempted.
    """


class UnexpectedFailure(ModulesError):
    """
    Catch-all for failures with no better category, e.g. undecodable responses.

    The original exception is always available as `cause`, as well as `__cause__` when raised.
    """

    def __init__(self, message: str = "Unexpected failure", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
