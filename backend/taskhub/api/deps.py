"""Shared API dependencies."""

from typing import Annotated

import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from taskhub.exceptions import AuthenticationError
from taskhub.security import Caller, decode_access_token

security = HTTPBearer(auto_error=False)


async def get_current_caller(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> Caller:
    """Resolve the caller from the bearer token issued by the auth service."""
    if not credentials:
        raise AuthenticationError("Not authenticated")

    caller = decode_access_token(credentials.credentials)
    structlog.contextvars.bind_contextvars(
        caller_id=str(caller.id),
        organization_id=str(caller.organization_id),
    )
    return caller


CurrentCaller = Annotated[Caller, Depends(get_current_caller)]
