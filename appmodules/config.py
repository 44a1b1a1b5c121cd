"""
Process configuration, read from environment variables.

Nothing here is cached: callers re-read the environment whenever they need a value, so a flag may be
flipped between calls.
"""

import os
from typing import Mapping, Optional

from .errors import ConfigurationError


PROJECT_ENV = "GOOGLE_CLOUD_PROJECT"
"""
Project id of the hosted application.
"""

APPLICATION_ENV = "GAE_APPLICATION"
"""
Fully-qualified application id, used as a fallback source of the project id.
"""

OPT_IN_ENV = "MODULES_USE_ADMIN_API"
"""
Set to `true` to serve calls from the administrative REST API instead of the legacy channel.
"""

_APPLICATION_PREFIX = "s~"


def get_project_id(environ: Optional[Mapping[str, str]] = None) -> str:
    """
    Determine the project id, from `GOOGLE_CLOUD_PROJECT` or else a `s~`-prefixed application id.
    """
    if environ is None:
        environ = os.environ
    project = environ.get(PROJECT_ENV)
    if not project:
        application = environ.get(APPLICATION_ENV) or ""
        if application.startswith(_APPLICATION_PREFIX):
            project = application[len(_APPLICATION_PREFIX):]
    if not project:
        raise ConfigurationError("Could not determine project ID")
    return project


def use_admin_api(environ: Optional[Mapping[str, str]] = None) -> bool:
    """
    Check whether the process has opted into the administrative REST API.
    """
    if environ is None:
        environ = os.environ
    return (environ.get(OPT_IN_ENV) or "").lower() == "true"
