"""
Query and control the modules (services) of a hosted application.

Calls are served either by the runtime's legacy RPC channel, or by the App Engine Admin API when the
`MODULES_USE_ADMIN_API` environment variable is set to `true`.  Failures from either backend are
reported using the same exceptions, found in `appmodules.errors`.
"""

from .environment import bind, ExecutionContext
from .errors import (AlreadyInDesiredStateError, ArgumentError, ConfigurationError,
                     InstanceUnavailableError, InvalidInstancesError, InvalidModuleError,
                     InvalidVersionError, ModulesError, RemoteError, TransientError,
                     UnexpectedFailure, UnexpectedStateError)
from .tasks.modules import get_service, ModulesService, set_service


__all__ = [
    "bind", "ExecutionContext",
    "get_service", "ModulesService", "set_service",
    "AlreadyInDesiredStateError", "ArgumentError", "ConfigurationError",
    "InstanceUnavailableError", "InvalidInstancesError", "InvalidModuleError",
    "InvalidVersionError", "ModulesError", "RemoteError", "TransientError",
    "UnexpectedFailure", "UnexpectedStateError",
]
