"""
Calls to the App Engine Admin API (REST), authenticated with the application's default credentials.

Functions here are synchronous, and expect to be run on a worker thread.  Each takes a ready-made
`AdminClient` and the project id, and translates HTTP failures into `ModulesError` subclasses.
Module and version arguments must already be resolved; nothing here reads the execution context.
"""

from contextlib import contextmanager
from enum import Enum
import logging
from typing import Any, Dict, Iterator, List, Optional, Set
from urllib.parse import quote

import google.auth
from google.auth.exceptions import DefaultCredentialsError, RefreshError
from google.auth.transport.requests import AuthorizedSession
from requests import Session as RequestsSession
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import HTTPError, RequestException, Timeout

from ..errors import (ConfigurationError, InvalidInstancesError, InvalidModuleError,
                      InvalidVersionError, ModulesError, RemoteError, TransientError)
from .common import join_hostname, Result, State
from .traffic import select_default_version


LOG = logging.getLogger(__name__)

BASE_URL = "https://appengine.googleapis.com/v1/"

SCOPES = ("https://www.googleapis.com/auth/cloud-platform",)

USER_AGENT = "appmodules-python-client/{}"

DEFAULT_SERVICE = "default"
"""
Reserved name of the service every application starts with.
"""


class ServingStatus(Enum):
    """
    Target state of a version, as set by starting or stopping it.
    """

    SERVING = "SERVING"
    STOPPED = "STOPPED"


class AdminClient:
    """
    Minimal client for the resources of the Admin API used here.

    Responses are returned as plain dictionaries, following the API's JSON field names (e.g.
    `defaultHostname`, `manualScaling`).  Failed requests raise `requests.HTTPError`.
    """

    def __init__(self, session: RequestsSession, base_url: str = BASE_URL):
        self.session = session
        self.base_url = base_url

    @classmethod
    def build(cls, method: str) -> "AdminClient":
        """
        Create a client using the application default credentials, labelled with the calling
        method in its user agent.
        """
        try:
            credentials, _ = google.auth.default(scopes=SCOPES)
        except DefaultCredentialsError as ex:
            raise ConfigurationError("Failed to build Admin API client: {}".format(ex)) from ex
        session = AuthorizedSession(credentials)
        session.headers["User-Agent"] = USER_AGENT.format(method)
        return cls(session)

    def _request(self, verb: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        LOG.debug("Admin API: %s %s %r", verb, path, kwargs.get("params"))
        resp = self.session.request(verb, self.base_url + path, **kwargs)
        resp.raise_for_status()
        return resp.json() if resp.content else {}

    def _list(self, path: str, key: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        params: Dict[str, str] = {}
        while True:
            page = self._request("GET", path, params=params)
            items.extend(page.get(key) or [])
            token = page.get("nextPageToken")
            if not token:
                return items
            params = {"pageToken": token}

    def get_application(self, project: str) -> Dict[str, Any]:
        return self._request("GET", _path(project))

    def list_services(self, project: str) -> List[Dict[str, Any]]:
        return self._list(_path(project, "services"), "services")

    def get_service(self, project: str, service: str) -> Dict[str, Any]:
        return self._request("GET", _path(project, "services", service))

    def list_versions(self, project: str, service: str) -> List[Dict[str, Any]]:
        return self._list(_path(project, "services", service, "versions"), "versions")

    def get_version(self, project: str, service: str, version: str,
                    view: Optional[str] = None) -> Dict[str, Any]:
        params = {"view": view} if view else {}
        return self._request("GET", _path(project, "services", service, "versions", version),
                             params=params)

    def patch_version(self, project: str, service: str, version: str, body: Dict[str, Any],
                      update_mask: str) -> Dict[str, Any]:
        """
        Update only the fields of a version named in `update_mask`; others are left untouched.
        """
        return self._request("PATCH", _path(project, "services", service, "versions", version),
                             params={"updateMask": update_mask}, json=body)


def _path(project: str, *parts: str) -> str:
    return "apps/{}".format("/".join(quote(part, safe="") for part in (project,) + parts))


@contextmanager
def _translate(not_found: ModulesError, bad_request: Optional[ModulesError] = None
               ) -> Iterator[None]:
    """
    Convert failed requests inside the block into the given domain errors.
    """
    try:
        yield
    except HTTPError as ex:
        status = ex.response.status_code if ex.response is not None else None
        if status == 404:
            raise not_found from ex
        elif status == 400 and bad_request:
            raise bad_request from ex
        elif status and status >= 500:
            raise TransientError("Admin API unavailable: {}".format(ex)) from ex
        else:
            raise RemoteError("Admin API request failed: {}".format(ex)) from ex
    except (RequestsConnectionError, Timeout) as ex:
        raise TransientError("Admin API unreachable: {}".format(ex)) from ex
    except RequestException as ex:
        raise RemoteError("Admin API request failed: {}".format(ex)) from ex
    except RefreshError as ex:
        raise ConfigurationError("Admin API credentials rejected: {}".format(ex)) from ex


def list_services(client: AdminClient, project: str) -> Set[str]:
    """
    Fetch the names of all services of the application.
    """
    with _translate(ModulesError("Project {!r} not found.".format(project))):
        services = client.list_services(project)
    return {service["id"] for service in services}


def list_versions(client: AdminClient, project: str, service: str) -> Set[str]:
    """
    Fetch the names of all versions of a service.
    """
    with _translate(InvalidModuleError("Module {!r} not found.".format(service))):
        versions = client.list_versions(project, service)
    return {version["id"] for version in versions}


def get_default_version(client: AdminClient, project: str, service: str) -> str:
    """
    Determine which version of a service receives the most traffic.
    """
    with _translate(InvalidModuleError("Module {!r} not found.".format(service))):
        record = client.get_service(project, service)
    allocations = (record.get("split") or {}).get("allocations")
    version = select_default_version(allocations)
    if version is None:
        raise InvalidVersionError("Could not determine default version for module {!r}."
                                  .format(service))
    return version


def _version_not_found(service: str, version: str) -> InvalidVersionError:
    return InvalidVersionError("Version {!r} of module {!r} not found.".format(version, service))


def get_num_instances(client: AdminClient, project: str, service: str, version: str) -> int:
    """
    Fetch the instance count of a version, which is zero unless it's manually scaled.
    """
    with _translate(_version_not_found(service, version)):
        record = client.get_version(project, service, version)
    return (record.get("manualScaling") or {}).get("instances") or 0


def set_num_instances(client: AdminClient, project: str, service: str, version: str,
                      instances: int) -> Result[None]:
    """
    Change the instance count of a manually scaled version.
    """
    body = {"manualScaling": {"instances": instances}}
    with _translate(_version_not_found(service, version),
                    InvalidInstancesError("Invalid instance count {!r}.".format(instances))):
        client.patch_version(project, service, version, body, "manualScaling.instances")
    return Result(State.success)


def set_serving_status(client: AdminClient, project: str, service: str, version: str,
                       status: ServingStatus) -> Result[None]:
    """
    Start or stop serving a version.
    """
    body = {"servingStatus": status.value}
    with _translate(_version_not_found(service, version)):
        client.patch_version(project, service, version, body, "servingStatus")
    return Result(State.success)


def _default_hostname(client: AdminClient, project: str) -> str:
    with _translate(ModulesError("Project {!r} not found.".format(project))):
        app = client.get_application(project)
    return app.get("defaultHostname") or ""


def _only_default_service(client: AdminClient, project: str, service: str) -> bool:
    # Applications with just the default service don't include service names in hostnames.
    if list_services(client, project) != {DEFAULT_SERVICE}:
        return False
    if service != DEFAULT_SERVICE:
        raise InvalidModuleError("Module {!r} not found.".format(service))
    return True


def get_version_hostname(client: AdminClient, project: str, service: str, version: str) -> str:
    """
    Build the hostname addressing a specific version of a service.
    """
    hostname = _default_hostname(client, project)
    if _only_default_service(client, project, service):
        return join_hostname(version, hostname)
    return join_hostname(version, service, hostname)


def get_instance_hostname(client: AdminClient, project: str, service: str, version: str,
                          instance: int) -> str:
    """
    Build the hostname addressing a single instance of a manually scaled version.

    The instance must already have been checked with `common.parse_instance`.
    """
    hostname = _default_hostname(client, project)
    if _only_default_service(client, project, service):
        return join_hostname(str(instance), version, hostname)
    with _translate(_version_not_found(service, version)):
        # The basic view may omit scaling settings, so ask for everything.
        record = client.get_version(project, service, version, view="FULL")
    count = (record.get("manualScaling") or {}).get("instances")
    if count is None:
        raise InvalidInstancesError("Instance-specific hostnames are only available for manually "
                                    "scaled services.")
    if instance >= count:
        raise InvalidInstancesError("The specified instance does not exist for this "
                                    "module/version.")
    return join_hostname(str(instance), version, service, hostname)
