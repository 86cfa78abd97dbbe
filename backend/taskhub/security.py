"""Caller identity supplied by the auth service.

Tokens are issued elsewhere; this module only verifies them and turns the
claims into a :class:`Caller` that the task engines scope every query by.
"""

from dataclasses import dataclass
from uuid import UUID

from jose import JWTError, jwt

from taskhub.config import get_settings
from taskhub.exceptions import AuthenticationError

ROLE_ADMIN = "ADMIN"
ROLE_USER = "USER"
ROLES = (ROLE_ADMIN, ROLE_USER)


@dataclass(frozen=True)
class Caller:
    """Authenticated employee making the request."""

    id: UUID
    role: str
    organization_id: UUID

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def decode_access_token(token: str) -> Caller:
    """Verify a bearer token and extract the caller claims."""
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key.get_secret_value(),
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as exc:
        raise AuthenticationError("Invalid or expired token") from exc

    try:
        caller_id = UUID(str(payload["sub"]))
        organization_id = UUID(str(payload["organization_id"]))
    except (KeyError, ValueError) as exc:
        raise AuthenticationError("Token is missing caller claims") from exc

    role = str(payload.get("role", ROLE_USER)).upper()
    if role not in ROLES:
        raise AuthenticationError(f"Unknown role '{role}'")

    return Caller(id=caller_id, role=role, organization_id=organization_id)
