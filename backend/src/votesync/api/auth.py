"""Shared-secret authorization for the sync trigger endpoints.

Schedulers call the trigger endpoints with ``Authorization: Bearer
<CRON_SECRET>`` (or an ``X-Cron-Secret`` header). When no secret is
configured the check is disabled, which is only meant for development.
"""

import secrets
from typing import Annotated

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..config import get_settings
from . import AuthenticationError

security = HTTPBearer(auto_error=False)


async def require_cron_secret(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    x_cron_secret: str | None = Header(default=None),
) -> None:
    """Reject requests that do not carry the configured secret.

    Raises:
        AuthenticationError: Secret missing or wrong
    """
    expected = get_settings().cron_secret
    if not expected:
        return

    supplied = credentials.credentials if credentials else x_cron_secret
    if not supplied:
        raise AuthenticationError("Missing sync secret")
    if not secrets.compare_digest(supplied.encode(), expected.encode()):
        raise AuthenticationError("Invalid sync secret")


CronAuthorized = Annotated[None, Depends(require_cron_secret)]
