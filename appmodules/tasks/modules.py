"""
Query and control the modules of the running application, whichever backend serves the calls.

Every call checks the opt-in flag afresh: when set, the call is served by the Admin API on a worker
thread, after filling in the current module and version for any omitted arguments.  Otherwise it is
sent over the legacy channel as-is, leaving the service to apply its own defaults.

Each operation has a blocking form, and an `_async` form returning a `concurrent.futures.Future`:

    service = ModulesService(channel=channel)
    with bind(ExecutionContext("default", "v1.123")):
        versions = service.get_versions()
        pending = service.start_version_async("worker", "v2")
    pending.result()
"""

from concurrent.futures import Future
import logging
import threading
from typing import Any, Callable, Optional, Set, Union

from .. import config, environment
from ..errors import ConfigurationError
from ..plumbing import admin, legacy
from ..plumbing.admin import AdminClient, ServingStatus
from ..plumbing.common import parse_instance, Result, submit, suppress_unchanged, wait
from ..plumbing.legacy import Channel


LOG = logging.getLogger(__name__)

STARTING_STARTED_MESSAGE = "Attempted to start an already started module version, continuing"
STOPPING_STOPPED_MESSAGE = "Attempted to stop an already stopped module version, continuing"

ClientFactory = Callable[[str], AdminClient]
"""
Builder of an Admin API client, given the name of the calling method (used for labelling).
"""

Instance = Union[int, str]

_SERVICE: Optional["ModulesService"] = None
_SERVICE_LOCK = threading.Lock()


class ModulesService:
    """
    Facade over the legacy channel and the Admin API.

    The project id is resolved from the environment if not given, and a `ConfigurationError` is
    raised straight away if that fails.  A `channel` is only needed if any calls take the legacy
    path, and `use_admin_api` replaces the environment flag lookup (it's called on every request).
    """

    def __init__(self, project_id: Optional[str] = None, channel: Optional[Channel] = None,
                 use_admin_api: Optional[Callable[[], bool]] = None,
                 client_factory: Optional[ClientFactory] = None):
        self.project_id = project_id or config.get_project_id()
        self._channel = channel
        self._use_admin_api = use_admin_api or config.use_admin_api
        self._client_factory = client_factory or AdminClient.build

    def __repr__(self) -> str:
        return "<{}: {!r}>".format(self.__class__.__name__, self.project_id)

    @property
    def channel(self) -> Channel:
        if self._channel is None:
            raise ConfigurationError("No legacy channel available, and Admin API not enabled")
        return self._channel

    def _admin_path(self, method: str) -> bool:
        opted_in = self._use_admin_api()
        LOG.debug("Routing %s via %s", method, "Admin API" if opted_in else "legacy channel")
        return opted_in

    def _submit(self, method: str, fn: Callable[..., Any], *args: Any) -> "Future[Any]":
        # Clients are rebuilt per call, so credentials are refreshed as needed by google-auth.
        def run():
            client = self._client_factory(method)
            return fn(client, self.project_id, *args)
        return submit(run)

    @staticmethod
    def _module(module: Optional[str]) -> str:
        return module if module is not None else environment.current_module()

    @staticmethod
    def _version(version: Optional[str]) -> str:
        return version if version is not None else environment.current_version()

    # Execution context

    def get_current_module_name(self) -> str:
        return environment.current_module()

    def get_current_version_name(self) -> str:
        return environment.current_version()

    def get_current_instance_id(self) -> str:
        return environment.current_instance_id()

    # Listing

    def get_modules_async(self) -> "Future[Set[str]]":
        """
        List the names of all modules of the application.
        """
        if self._admin_path("get_modules"):
            return self._submit("get_modules", admin.list_services)
        return legacy.get_modules(self.channel)

    def get_modules(self, timeout: Optional[float] = None) -> Set[str]:
        return wait(self.get_modules_async(), timeout)

    def get_versions_async(self, module: Optional[str] = None) -> "Future[Set[str]]":
        """
        List the names of all versions of a module, defaulting to the current module.
        """
        if self._admin_path("get_versions"):
            return self._submit("get_versions", admin.list_versions, self._module(module))
        return legacy.get_versions(self.channel, module)

    def get_versions(self, module: Optional[str] = None,
                     timeout: Optional[float] = None) -> Set[str]:
        return wait(self.get_versions_async(module), timeout)

    def get_default_version_async(self, module: Optional[str] = None) -> "Future[str]":
        """
        Find the version of a module receiving the most traffic.
        """
        if self._admin_path("get_default_version"):
            return self._submit("get_default_version", admin.get_default_version,
                                self._module(module))
        return legacy.get_default_version(self.channel, module)

    def get_default_version(self, module: Optional[str] = None,
                            timeout: Optional[float] = None) -> str:
        return wait(self.get_default_version_async(module), timeout)

    # Scaling

    def get_num_instances_async(self, module: Optional[str] = None,
                                version: Optional[str] = None) -> "Future[int]":
        """
        Fetch the instance count of a manually scaled version (zero for other scaling types).
        """
        if self._admin_path("get_num_instances"):
            return self._submit("get_num_instances", admin.get_num_instances,
                                self._module(module), self._version(version))
        return legacy.get_num_instances(self.channel, module, version)

    def get_num_instances(self, module: Optional[str] = None, version: Optional[str] = None,
                          timeout: Optional[float] = None) -> int:
        return wait(self.get_num_instances_async(module, version), timeout)

    def set_num_instances_async(self, instances: int, module: Optional[str] = None,
                                version: Optional[str] = None) -> "Future[Result[None]]":
        """
        Change the instance count of a manually scaled version.
        """
        if isinstance(instances, bool) or not isinstance(instances, int):
            raise TypeError("Instances must be an int, not {!r}".format(instances))
        if self._admin_path("set_num_instances"):
            return self._submit("set_num_instances", admin.set_num_instances,
                                self._module(module), self._version(version), instances)
        return legacy.set_num_instances(self.channel, instances, module, version)

    def set_num_instances(self, instances: int, module: Optional[str] = None,
                          version: Optional[str] = None,
                          timeout: Optional[float] = None) -> Result[None]:
        return wait(self.set_num_instances_async(instances, module, version), timeout)

    # Serving status

    def start_version_async(self, module: Optional[str] = None,
                            version: Optional[str] = None) -> "Future[Result[None]]":
        """
        Start serving a version.  Starting a version that is already serving is not an error,
        though the result state will be `unchanged`.
        """
        if self._admin_path("start_version"):
            future = self._submit("start_version", admin.set_serving_status, self._module(module),
                                  self._version(version), ServingStatus.SERVING)
        else:
            future = legacy.start_module(self.channel, module, version)
        return suppress_unchanged(future, STARTING_STARTED_MESSAGE)

    def start_version(self, module: Optional[str] = None, version: Optional[str] = None,
                      timeout: Optional[float] = None) -> Result[None]:
        return wait(self.start_version_async(module, version), timeout)

    def stop_version_async(self, module: Optional[str] = None,
                           version: Optional[str] = None) -> "Future[Result[None]]":
        """
        Stop serving a version.  Stopping a version that is already stopped is not an error,
        though the result state will be `unchanged`.
        """
        if self._admin_path("stop_version"):
            future = self._submit("stop_version", admin.set_serving_status, self._module(module),
                                  self._version(version), ServingStatus.STOPPED)
        else:
            future = legacy.stop_module(self.channel, module, version)
        return suppress_unchanged(future, STOPPING_STOPPED_MESSAGE)

    def stop_version(self, module: Optional[str] = None, version: Optional[str] = None,
                     timeout: Optional[float] = None) -> Result[None]:
        return wait(self.stop_version_async(module, version), timeout)

    # Hostnames

    def get_version_hostname_async(self, module: Optional[str] = None,
                                   version: Optional[str] = None) -> "Future[str]":
        """
        Build the hostname addressing a version of a module.
        """
        if self._admin_path("get_version_hostname"):
            return self._submit("get_version_hostname", admin.get_version_hostname,
                                self._module(module), self._version(version))
        return legacy.get_hostname(self.channel, module, version)

    def get_version_hostname(self, module: Optional[str] = None, version: Optional[str] = None,
                             timeout: Optional[float] = None) -> str:
        return wait(self.get_version_hostname_async(module, version), timeout)

    def get_instance_hostname_async(self, instance: Instance, module: Optional[str] = None,
                                    version: Optional[str] = None) -> "Future[str]":
        """
        Build the hostname addressing one instance of a manually scaled version.

        The instance is checked before anything is sent, raising `ArgumentError` if it isn't a
        non-negative integer.
        """
        number = parse_instance(instance)
        if self._admin_path("get_instance_hostname"):
            return self._submit("get_instance_hostname", admin.get_instance_hostname,
                                self._module(module), self._version(version), number)
        return legacy.get_hostname(self.channel, module, version, str(number))

    def get_instance_hostname(self, instance: Instance, module: Optional[str] = None,
                              version: Optional[str] = None,
                              timeout: Optional[float] = None) -> str:
        return wait(self.get_instance_hostname_async(instance, module, version), timeout)

    def get_hostname_async(self, module: Optional[str] = None, version: Optional[str] = None,
                           instance: Optional[Instance] = None) -> "Future[str]":
        """
        Build the hostname of a version, or of one of its instances if `instance` is given.
        """
        if instance is None:
            return self.get_version_hostname_async(module, version)
        return self.get_instance_hostname_async(instance, module, version)

    def get_hostname(self, module: Optional[str] = None, version: Optional[str] = None,
                     instance: Optional[Instance] = None, timeout: Optional[float] = None) -> str:
        return wait(self.get_hostname_async(module, version, instance), timeout)


def get_service() -> ModulesService:
    """
    Return the process-wide `ModulesService`, creating it from the environment on first use.
    """
    global _SERVICE
    with _SERVICE_LOCK:
        if _SERVICE is None:
            _SERVICE = ModulesService()
        return _SERVICE


def set_service(service: Optional[ModulesService]) -> None:
    """
    Replace the process-wide `ModulesService`, e.g. to supply a legacy channel.  Pass `None` to
    have the next `get_service` call build a fresh one.
    """
    global _SERVICE
    with _SERVICE_LOCK:
        _SERVICE = service
