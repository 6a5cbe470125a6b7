"""
Caller identity and role gating

Authentication happens upstream: the gateway in front of this service
verifies the user and forwards ``X-User-Id``, ``X-User-Role`` and, for
imams, ``X-Mosque-Id``. Internal tools may instead present the admin API
key in ``X-API-Key``.
"""
import hmac
from dataclasses import dataclass
from typing import Mapping, Optional

from ..common.errors import AuthenticationError, AuthorizationError
from ..common.models import Role

ROLES = ("guest", "imam", "admin")


@dataclass(frozen=True)
class Principal:
    user_id: Optional[str]
    role: Role = "guest"
    mosque_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


GUEST = Principal(user_id=None)


class HeaderIdentityProvider:
    """Resolve a Principal from gateway headers"""

    def __init__(self, admin_api_key: Optional[str] = None):
        self.admin_api_key = admin_api_key

    def resolve(self, headers: Mapping[str, str]) -> Principal:
        api_key = headers.get("x-api-key")
        if api_key and self.admin_api_key and hmac.compare_digest(api_key, self.admin_api_key):
            return Principal(user_id="api-key", role="admin")

        user_id = (headers.get("x-user-id") or "").strip()
        if not user_id:
            return GUEST

        role = (headers.get("x-user-role") or "guest").strip().lower()
        if role not in ROLES:
            role = "guest"
        mosque_id = (headers.get("x-mosque-id") or "").strip() or None
        return Principal(user_id=user_id, role=role, mosque_id=mosque_id)


def require_authenticated(principal: Principal) -> Principal:
    if not principal.is_authenticated:
        raise AuthenticationError("Sign in required")
    return principal


def require_admin(principal: Principal) -> Principal:
    require_authenticated(principal)
    if not principal.is_admin:
        raise AuthorizationError("Only admins can do this")
    return principal


def ensure_can_create(principal: Principal) -> None:
    """Admins always; imams only while they have no mosque of their own"""
    require_authenticated(principal)
    if principal.is_admin:
        return
    if principal.role != "imam":
        raise AuthorizationError("Only admins and imams can create mosques")
    if principal.mosque_id:
        raise AuthorizationError("Imam already has an associated mosque")


def ensure_can_update(principal: Principal, mosque_id: str, owner: Optional[str] = None) -> None:
    """Admins update any mosque; an imam only the mosque linked to them or created by them"""
    require_authenticated(principal)
    if principal.is_admin:
        return
    if principal.role == "imam" and (principal.mosque_id == mosque_id or
                                     (owner is not None and principal.user_id == owner)):
        return
    raise AuthorizationError("You can only update your assigned mosque")
