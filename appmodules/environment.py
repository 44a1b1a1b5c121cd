"""
Execution context of the running request, supplying the current module, version and instance.

A context is bound with `bind`, which uses a `contextvars.ContextVar`:

- each thread starts with no context, so worker threads see nothing unless they bind their own
- bindings nest, and leaving a `bind` block restores the previous (outer) context
- there is no cancellation; an exception leaving the block still restores the outer context

Work submitted to the shared worker pool does not inherit the caller's context, so any implicit
defaults must be resolved on the calling thread before the work is submitted.
"""

from contextlib import contextmanager
from contextvars import ContextVar
import logging
import os
from types import MappingProxyType
from typing import Any, Iterator, Mapping, NamedTuple, Optional

from .errors import ConfigurationError, InstanceUnavailableError


LOG = logging.getLogger(__name__)

INSTANCE_ID_ATTRIBUTE = "com.google.appengine.instance.id"
"""
Key of the context attribute holding the current instance id, when one is assigned.
"""

_CURRENT: ContextVar[Optional["ExecutionContext"]] = ContextVar("appmodules_context", default=None)


class ExecutionContext(NamedTuple):
    """
    Identity of the code currently handling a request.

    The `version_id` is qualified with a deployment suffix, i.e. `<version>.<suffix>`.
    """

    module_id: str
    version_id: str
    attributes: Mapping[str, Any] = MappingProxyType({})

    @classmethod
    def from_environ(cls, environ: Optional[Mapping[str, str]] = None) -> "ExecutionContext":
        """
        Build a context from the environment variables set by the hosting runtime.
        """
        if environ is None:
            environ = os.environ
        module = environ.get("GAE_SERVICE") or environ.get("CURRENT_MODULE_ID")
        version = environ.get("CURRENT_VERSION_ID") or environ.get("GAE_VERSION")
        if not module or not version:
            raise ConfigurationError("Runtime environment doesn't declare a module and version")
        attributes = {}
        instance = environ.get("GAE_INSTANCE") or environ.get("INSTANCE_ID")
        if instance:
            attributes[INSTANCE_ID_ATTRIBUTE] = instance
        return cls(module, version, attributes)

    @property
    def version(self) -> str:
        """
        Version id without its deployment suffix.
        """
        return self.version_id.split(".", 1)[0]


@contextmanager
def bind(context: ExecutionContext) -> Iterator[ExecutionContext]:
    """
    Make a context current for the duration of a block:

        with bind(ExecutionContext("default", "v1.123")):
            service.get_versions()
    """
    token = _CURRENT.set(context)
    LOG.debug("Bound context %r", context)
    try:
        yield context
    finally:
        _CURRENT.reset(token)


def current() -> ExecutionContext:
    """
    Fetch the context bound to the caller, failing if there isn't one.
    """
    context = _CURRENT.get()
    if context is None:
        raise ConfigurationError("Operation not allowed outside of a bound execution context")
    return context


def current_module() -> str:
    """
    Name of the module handling the current request.
    """
    return current().module_id


def current_version() -> str:
    """
    Name of the version handling the current request, e.g. `v1` for a context version `v1.123`.
    """
    return current().version


def current_instance_id() -> str:
    """
    Id of the instance handling the current request, if one has been assigned.
    """
    instance = current().attributes.get(INSTANCE_ID_ATTRIBUTE)
    if instance is None:
        raise InstanceUnavailableError("Instance id unavailable")
    return str(instance)
