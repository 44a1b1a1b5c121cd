"""
Shared helpers: action results, and the worker pool that runs calls in the background.

Every backend call produces a `concurrent.futures.Future`, which resolves exactly once.  Blocking
callers go through `wait`, which turns any failure into a `ModulesError` (or lets a fatal error
through untouched).
"""

from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from enum import Enum
import inspect
import logging
import re
import threading
from typing import Any, Callable, Generic, Optional, TypeVar, Union

from ..errors import (AlreadyInDesiredStateError, ArgumentError, ConfigurationError, ModulesError,
                      UnexpectedFailure)


LOG = logging.getLogger(__name__)

T = TypeVar("T")

_EXECUTOR: Optional[ThreadPoolExecutor] = None
_EXECUTOR_LOCK = threading.Lock()

_INSTANCE = re.compile(r"[+-]?[0-9]+")


class Unset:
    """
    Constructor of generic default values for optional but nullable parameters.
    """

    def __repr__(self):
        return "UNSET"


UNSET = Unset()
"""
Global generic default value.
"""


class State(Enum):
    """
    Enumeration used by `Result` to declare whether the action happened.
    """

    unchanged = 0
    """
    No action required, the request and current state are consistent.
    """
    success = 1
    """
    The action was completed without issues.
    """

    def __bool__(self):
        return bool(self.value)


class Result(Generic[T]):
    """
    State and optional accompanying value from an action, e.g. starting a version.

    A result can be checked for truthiness, which is `False` if no changes were made -- a start
    request for a version that was already serving still succeeds, but as `State.unchanged`.

    A result can also be converted to a string, which names the action that produced it:

        appmodules.plumbing.admin:set_num_instances: success
    """

    def __init__(self, state: State = State.success, value: Union[T, Unset] = UNSET,
                 caller: Optional[Callable[..., Any]] = None):
        self.state = state
        self._value = value
        self.caller = "<unknown>"
        # Inspection magic to log the calling method, e.g. `module.sub:function`.
        name = None
        if not caller:
            frame = inspect.currentframe()
            try:
                name = frame.f_back.f_code.co_name
                caller = frame.f_back.f_globals[name]
            except (AttributeError, KeyError):
                pass
        if caller:
            self.caller = "{}:{}".format(caller.__module__, caller.__qualname__)
        elif name:
            self.caller = name

    @property
    def value(self) -> T:
        """
        Return value produced by the action.

        Accessing this attribute will raise `ValueError` if no value has been set.
        """
        if isinstance(self._value, Unset):
            raise ValueError("No value set")
        return self._value

    def __bool__(self) -> bool:
        return bool(self.state)

    def __repr__(self) -> str:
        params = [str(self.state)]
        if not isinstance(self._value, Unset):
            params.append(repr(self._value))
        return "{}({})".format(self.__class__.__name__, ", ".join(params))

    def __str__(self) -> str:
        text = "{}: {}".format(self.caller, self.state.name)
        if not isinstance(self._value, Unset):
            text = "{} {!r}".format(text, self._value)
        return text


def executor() -> ThreadPoolExecutor:
    """
    Return the process-wide worker pool, creating it on first use.
    """
    global _EXECUTOR
    with _EXECUTOR_LOCK:
        if _EXECUTOR is None:
            _EXECUTOR = ThreadPoolExecutor(thread_name_prefix="appmodules")
        return _EXECUTOR


def submit(fn: Callable[..., T], *args: Any, **kwargs: Any) -> "Future[T]":
    """
    Schedule a call on the shared worker pool, without waiting for it.
    """
    return executor().submit(fn, *args, **kwargs)


def transform(source: "Future[Any]", convert: Optional[Callable[[Any], T]] = None,
              recover: Optional[Callable[[Exception], T]] = None) -> "Future[T]":
    """
    Derive a new future from `source`, which resolves once the source does.

    On success, the value is passed through `convert`.  If either the source or the conversion
    fails, the exception is passed to `recover`, which may return a substitute value or raise a
    replacement exception.  Without a `recover` function, failures pass through unchanged.
    """
    target: Future[T] = Future()
    target.set_running_or_notify_cancel()

    def resolve(done: "Future[Any]") -> None:
        try:
            value = done.result()
            if convert:
                value = convert(value)
        except BaseException as ex:
            # Fatal errors (e.g. `SystemExit`) are passed on untouched, never recovered.
            if not recover or not isinstance(ex, Exception):
                target.set_exception(ex)
                return
            try:
                value = recover(ex)
            except BaseException as final:
                target.set_exception(final)
                return
        target.set_result(value)

    source.add_done_callback(resolve)
    return target


def suppress_unchanged(future: "Future[Result[Any]]", message: str) -> "Future[Result[Any]]":
    """
    Treat a start or stop of a version already in that state as a success.

    The diagnostic `message` is logged once the suppression happens; other failures pass through.
    """
    def recover(ex: Exception) -> Result[Any]:
        if isinstance(ex, AlreadyInDesiredStateError):
            LOG.info(message)
            return Result(State.unchanged, caller=suppress_unchanged)
        raise ex

    return transform(future, recover=recover)


def wait(future: "Future[T]", timeout: Optional[float] = None) -> T:
    """
    Block until a future resolves, and return its value.

    Domain and configuration errors are raised as-is; any other failure is wrapped in an
    `UnexpectedFailure`.  If `timeout` (in seconds) expires, `concurrent.futures.TimeoutError` is
    raised, but the underlying call is left to complete in the background.

    Python threads can't be interrupted by another thread, so the only interruption a waiting
    caller sees is a cancelled future, reported as `UnexpectedFailure`.  Signals delivered to the
    main thread (`KeyboardInterrupt`), and any other `BaseException` that isn't an `Exception`,
    propagate unwrapped so the process can still shut down.
    """
    try:
        return future.result(timeout)
    except FutureTimeoutError:
        raise
    except CancelledError as ex:
        raise UnexpectedFailure("Unexpected failure: call was cancelled", ex) from ex
    except (ModulesError, ConfigurationError):
        raise
    except Exception as ex:
        raise UnexpectedFailure("Unexpected failure: {}".format(ex), ex) from ex


def join_hostname(*parts: Optional[str]) -> str:
    """
    Build a dotted hostname, skipping any empty parts:

        >>> join_hostname("1", "v1", None, "project.appspot.com")
        '1.v1.project.appspot.com'
    """
    return ".".join(part for part in parts if part)


def parse_instance(instance: Union[int, str, None]) -> int:
    """
    Validate an instance id, which must be a non-negative integer (or its string form).
    """
    if isinstance(instance, bool) or not isinstance(instance, (int, str, type(None))):
        raise TypeError("Instance must be an int or str, not {!r}".format(instance))
    if instance is None or instance == "":
        raise ArgumentError("Instance cannot be empty")
    if isinstance(instance, str) and not _INSTANCE.fullmatch(instance):
        raise ArgumentError("The specified instance ID must be an integer: {!r}".format(instance))
    number = int(instance)
    if number < 0:
        raise ArgumentError("The specified instance must be an integer greater than or equal to 0")
    return number
