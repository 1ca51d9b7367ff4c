"""HTTP Basic authentication for the write endpoints."""

import hmac
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from shortener.app.core.config import Settings
from shortener.app.core.dependencies import get_settings

security = HTTPBasic(auto_error=False)


def credentials_match(
    credentials: Optional[HTTPBasicCredentials],
    app_settings: Settings,
) -> bool:
    """Check credentials against the configured user.

    Always False when no user or password is configured.
    """
    expected_user = app_settings.http_auth_user
    expected_password = app_settings.http_auth_password

    user = credentials.username if credentials else ""
    password = credentials.password if credentials else ""

    # Always compare both fields to keep timing independent of which one is wrong
    user_ok = hmac.compare_digest(user.encode(), expected_user.encode())
    password_ok = hmac.compare_digest(password.encode(), expected_password.encode())

    return bool(expected_user and expected_password and user_ok and password_ok)


async def is_authenticated(request: Request) -> bool:
    """Return True if the request carries valid Basic credentials.

    Used by the admission middleware, which runs before route
    dependencies. A malformed Authorization header counts as not
    authenticated.
    """
    try:
        credentials = await security(request)
    except HTTPException:
        return False
    return credentials_match(credentials, get_settings(request))


def require_basic_auth(
    request: Request,
    credentials: Annotated[HTTPBasicCredentials | None, Depends(security)],
) -> str:
    """Validate HTTP Basic credentials against the configured user.

    Returns:
        The authenticated user name

    Raises:
        HTTPException: 401 if credentials are missing or invalid, or if no
            credentials are configured at all
    """
    if not credentials_match(credentials, get_settings(request)):
        raise HTTPException(
            status_code=401,
            detail="Invalid or missing credentials",
            headers={"WWW-Authenticate": "Basic"},
        )
    return credentials.username
