"""
Resolved caller identity and role checks
"""
from dataclasses import dataclass
from typing import Optional

from exceptions import AuthError, ForbiddenError

ADMIN_ROLE = 'admin'
USER_ROLE = 'user'


@dataclass(frozen=True)
class Identity:
    """Authenticated caller as produced by the identity resolver"""
    id: str
    email: Optional[str]
    role: str = USER_ROLE

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def require_admin(user: Optional[Identity]) -> Identity:
    """
    Ensure the caller is an admin

    Raises:
        AuthError: no identity (401)
        ForbiddenError: identity without the admin role (403)
    """
    if user is None:
        raise AuthError("No autorizado")
    if not user.is_admin:
        raise ForbiddenError("Acceso denegado")
    return user
