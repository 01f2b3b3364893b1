"""
Role Hierarchy Evaluator
========================

Roles are totally ordered by rank (lower = more privileged):

    ADMIN(0) < MODERATOR(1) < USER(2) < GUEST(3)

has_permission(required, actual) is True when:
- actual is ADMIN (explicit bypass, independent of rank), or
- rank(actual) <= rank(required)

Unauthenticated callers are GUEST. Mutations additionally require an
ACTIVE account status (ensure_active).
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .exceptions import Forbidden
from .models import Role, UserStatus, Profile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """Verified identity of the caller, as supplied by the auth layer."""
    user_id: Optional[int]
    username: str
    role: Role
    status: UserStatus

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_moderator(self) -> bool:
        return self.role in (Role.ADMIN, Role.MODERATOR)


GUEST = Principal(
    user_id=None,
    username='guest',
    role=Role.GUEST,
    status=UserStatus.ACTIVE,
)


def principal_for(user) -> Principal:
    """
    Build a Principal from a Django user (or AnonymousUser / None).

    Role and status are read from the forum Profile. A user without a
    profile is treated as a pending USER.
    """
    if user is None or not getattr(user, 'is_authenticated', False):
        return GUEST

    try:
        profile = user.forum_profile
    except Profile.DoesNotExist:
        return Principal(user.id, user.username, Role.USER, UserStatus.PENDING_VERIFICATION)

    return Principal(
        user_id=user.id,
        username=user.username,
        role=Role(profile.role),
        status=UserStatus(profile.status),
    )


def resolve(principal: Optional[Principal]) -> Principal:
    return principal if principal is not None else GUEST


def has_permission(required_role, actual_role) -> bool:
    required_role = Role(required_role)
    actual_role = Role(actual_role)
    if actual_role == Role.ADMIN:
        return True
    return actual_role.rank <= required_role.rank


def require_role(required_role, principal: Optional[Principal], action: str) -> None:
    """Raise Forbidden naming the required role when the check fails."""
    principal = resolve(principal)
    if has_permission(required_role, principal.role):
        return
    required_role = Role(required_role)
    logger.warning(
        f"Permission denied for {principal.username} (role {principal.role}) "
        f"to {action} (requires {required_role})"
    )
    raise Forbidden(
        f"You do not have permission to {action}. Required role: {required_role}",
        required_role=required_role,
    )


def ensure_active(principal: Optional[Principal]) -> Principal:
    """Mutations need an authenticated principal whose status is ACTIVE."""
    principal = resolve(principal)
    if not principal.is_authenticated:
        raise Forbidden('Authentication required.', required_role=Role.USER)
    if principal.status != UserStatus.ACTIVE:
        logger.warning(f"Inactive principal {principal.username} ({principal.status}) attempted a mutation")
        raise Forbidden(f"Account is not active (status: {principal.status}).")
    return principal


def is_owner_or_moderator(principal: Optional[Principal], owner_id: Optional[int]) -> bool:
    principal = resolve(principal)
    if principal.is_moderator:
        return True
    return owner_id is not None and principal.user_id == owner_id


def require_owner_or_moderator(principal: Optional[Principal], owner_id: Optional[int], action: str) -> None:
    if is_owner_or_moderator(principal, owner_id):
        return
    principal = resolve(principal)
    logger.warning(f"User {principal.username} forbidden to {action}")
    raise Forbidden(f"You do not have permission to {action}.")


def check_category_view(category, principal: Optional[Principal]) -> None:
    require_role(category.min_view_role, principal, 'view this category')
