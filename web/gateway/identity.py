"""Caller identity forwarded by the upstream identity gateway.

Authentication and session issuance happen outside this service. The
identity gateway verifies the caller and forwards ``X-User-Id``,
``X-User-Role`` and ``X-User-Email``; this module turns those headers into
a DRF principal and provides role-based permission classes.
"""

from dataclasses import dataclass
from enum import Enum

from rest_framework import authentication, permissions


class Role(str, Enum):
    MEMBER = "MEMBER"
    WORKER = "WORKER"
    PASTOR = "PASTOR"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as seen by the views."""

    id: str
    role: Role = Role.MEMBER
    email: str = ""

    @property
    def pk(self) -> str:
        return self.id

    @property
    def is_authenticated(self) -> bool:
        return True

    def has_role(self, *roles: Role) -> bool:
        return self.role in roles


class GatewayHeaderAuthentication(authentication.BaseAuthentication):
    """Authenticate from the identity headers; anonymous when absent."""

    def authenticate(self, request):
        user_id = request.META.get("HTTP_X_USER_ID")
        if not user_id:
            return None
        raw_role = (request.META.get("HTTP_X_USER_ROLE") or Role.MEMBER.value).upper()
        try:
            role = Role(raw_role)
        except ValueError:
            role = Role.MEMBER
        email = request.META.get("HTTP_X_USER_EMAIL") or ""
        return Principal(id=user_id, role=role, email=email), None

    def authenticate_header(self, request):
        return "Gateway"


class IsAuthenticatedPrincipal(permissions.BasePermission):
    def has_permission(self, request, view):
        return isinstance(request.user, Principal)


class HasRole(permissions.BasePermission):
    """Allow callers whose role is in the view's ``allowed_roles``.

    Views declare ``allowed_roles`` as a dict from HTTP method to a tuple of
    roles; methods not listed only require authentication.
    """

    def has_permission(self, request, view):
        user = request.user
        if not isinstance(user, Principal):
            return False
        roles = getattr(view, "allowed_roles", {}).get(request.method)
        return roles is None or user.has_role(*roles)


STAFF_ROLES = (Role.ADMIN, Role.SUPER_ADMIN)
