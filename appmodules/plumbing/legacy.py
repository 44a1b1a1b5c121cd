"""
Calls to the legacy modules service, over the runtime's binary RPC channel.

Requests and responses are `Struct` protocol buffer messages.  Optional arguments the caller didn't
give are left out of the request entirely -- the service then falls back to the calling module or
version itself.

Each call returns a future; application errors reported by the channel are converted to the
matching `ModulesError` subclass when the future resolves.
"""

from concurrent.futures import Future
from enum import IntEnum
import logging
from typing import Any, Callable, Dict, Optional, Protocol, Set, TypeVar

from google.protobuf.json_format import MessageToDict
from google.protobuf.message import DecodeError
from google.protobuf.struct_pb2 import Struct

from ..errors import (AlreadyInDesiredStateError, InvalidInstancesError, InvalidModuleError,
                      InvalidVersionError, ModulesError, TransientError, UnexpectedFailure,
                      UnexpectedStateError)
from .common import Result, State, transform


LOG = logging.getLogger(__name__)

T = TypeVar("T")

PACKAGE = "modules"
"""
Service name used by the channel to route all calls made here.
"""

MAX_INSTANCES = 2 ** 31 - 1


class ErrorCode(IntEnum):
    """
    Application error codes reported by the modules service.
    """

    OK = 0
    INVALID_MODULE = 1
    INVALID_VERSION = 2
    INVALID_INSTANCES = 3
    TRANSIENT_ERROR = 4
    UNEXPECTED_STATE = 5


class ApplicationError(Exception):
    """
    Failure reported by the remote service itself, as opposed to the channel.
    """

    def __init__(self, application_error: int, error_detail: str = ""):
        super().__init__("ApplicationError: {} {}".format(application_error, error_detail).strip())
        self.application_error = application_error
        self.error_detail = error_detail


class Channel(Protocol):
    """
    Binary RPC channel provided by the runtime.
    """

    def make_async_call(self, package: str, method: str, request: bytes) -> "Future[bytes]":
        """
        Send a serialised request, and return a future of the serialised response.

        The future fails with `ApplicationError` if the service rejects the call.
        """


def encode_request(**fields: Any) -> bytes:
    """
    Serialise request fields, omitting any that are `None`.
    """
    message = Struct()
    message.update({key: value for key, value in fields.items() if value is not None})
    return message.SerializeToString(deterministic=True)


def decode_response(data: bytes) -> Dict[str, Any]:
    """
    Parse a serialised response into its fields.
    """
    message = Struct()
    try:
        message.ParseFromString(data)
    except DecodeError as ex:
        raise UnexpectedFailure("Unexpected failure: malformed response", ex) from ex
    return MessageToDict(message)


def _convert_error(method: str, ex: ApplicationError) -> ModulesError:
    try:
        code = ErrorCode(ex.application_error)
    except ValueError:
        return ModulesError("Unknown error: '{}'".format(ex.application_error))
    if code == ErrorCode.INVALID_MODULE:
        return InvalidModuleError("Unknown module")
    elif code == ErrorCode.INVALID_VERSION:
        return InvalidVersionError("Unknown module version")
    elif code == ErrorCode.INVALID_INSTANCES:
        return InvalidInstancesError("Invalid instance")
    elif code == ErrorCode.TRANSIENT_ERROR:
        return TransientError("Transient error with method {!r}".format(method))
    elif code == ErrorCode.UNEXPECTED_STATE:
        if method in ("StartModule", "StopModule"):
            return AlreadyInDesiredStateError("Unexpected state for method {}".format(method))
        return UnexpectedStateError("Unexpected state with method {!r}".format(method))
    else:
        return ModulesError("Unknown error: '{}'".format(ex.application_error))


def call(channel: Channel, method: str, convert: Callable[[Dict[str, Any]], T],
         **fields: Any) -> "Future[T]":
    """
    Make a call to the modules service, decoding the response with `convert`.
    """
    LOG.debug("Legacy call: %s.%s %r", PACKAGE, method, fields)
    raw = channel.make_async_call(PACKAGE, method, encode_request(**fields))

    def recover(ex: Exception) -> T:
        if isinstance(ex, ApplicationError):
            raise _convert_error(method, ex) from ex
        raise ex

    return transform(raw, lambda data: convert(decode_response(data)), recover)


def _instances(response: Dict[str, Any]) -> int:
    value = response.get("instances", 0)
    if value < 0 or value > MAX_INSTANCES or value != int(value):
        raise UnexpectedFailure("Invalid instances value: {!r}".format(value))
    return int(value)


def get_modules(channel: Channel) -> "Future[Set[str]]":
    """
    List all modules of the application.
    """
    return call(channel, "GetModules", lambda resp: set(resp.get("module", [])))


def get_versions(channel: Channel, module: Optional[str] = None) -> "Future[Set[str]]":
    """
    List all versions of a module.
    """
    return call(channel, "GetVersions", lambda resp: set(resp.get("version", [])), module=module)


def get_default_version(channel: Channel, module: Optional[str] = None) -> "Future[str]":
    """
    Look up the version receiving the most traffic for a module.
    """
    return call(channel, "GetDefaultVersion", lambda resp: resp.get("version", ""),
                module=module)


def get_num_instances(channel: Channel, module: Optional[str] = None,
                      version: Optional[str] = None) -> "Future[int]":
    """
    Look up the instance count of a manually scaled version.
    """
    return call(channel, "GetNumInstances", _instances, module=module, version=version)


def set_num_instances(channel: Channel, instances: int, module: Optional[str] = None,
                      version: Optional[str] = None) -> "Future[Result[None]]":
    """
    Change the instance count of a manually scaled version.
    """
    return call(channel, "SetNumInstances",
                lambda resp: Result(State.success, caller=set_num_instances),
                module=module, version=version, instances=instances)


def start_module(channel: Channel, module: Optional[str] = None,
                 version: Optional[str] = None) -> "Future[Result[None]]":
    """
    Start serving a version.  Fails with `AlreadyInDesiredStateError` if it's already serving.
    """
    return call(channel, "StartModule", lambda resp: Result(State.success, caller=start_module),
                module=module, version=version)


def stop_module(channel: Channel, module: Optional[str] = None,
                version: Optional[str] = None) -> "Future[Result[None]]":
    """
    Stop serving a version.  Fails with `AlreadyInDesiredStateError` if it's already stopped.
    """
    return call(channel, "StopModule", lambda resp: Result(State.success, caller=stop_module),
                module=module, version=version)


def get_hostname(channel: Channel, module: Optional[str] = None, version: Optional[str] = None,
                 instance: Optional[str] = None) -> "Future[str]":
    """
    Look up the hostname of a version, or of a specific instance of that version.
    """
    return call(channel, "GetHostname", lambda resp: resp.get("hostname", ""), module=module,
                version=version, instance=instance)
