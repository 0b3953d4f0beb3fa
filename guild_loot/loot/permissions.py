"""
Role capabilities and the DRF permission classes built on them.

Every role check in the project goes through ``has_capability``.
"""

import logging

from django.contrib.auth import get_user_model
from rest_framework.permissions import SAFE_METHODS, BasePermission

from .exceptions import Forbidden, Unauthenticated

logger = logging.getLogger(__name__)

User = get_user_model()

MANAGE_KILLS = 'manage_kills'
RESOLVE_APPLICATIONS = 'resolve_applications'
MANAGE_AUCTIONS = 'manage_auctions'
MANAGE_VOTES = 'manage_votes'
MANAGE_WALLETS = 'manage_wallets'
VIEW_ADMIN_COUNTS = 'view_admin_counts'
MANAGE_GUILDS = 'manage_guilds'

ROLE_CAPABILITIES = {
    User.ROLE_ADMIN: frozenset({
        MANAGE_KILLS,
        RESOLVE_APPLICATIONS,
        MANAGE_AUCTIONS,
        MANAGE_VOTES,
        MANAGE_WALLETS,
        VIEW_ADMIN_COUNTS,
        MANAGE_GUILDS,
    }),
    User.ROLE_MODERATOR: frozenset({
        MANAGE_KILLS,
        RESOLVE_APPLICATIONS,
        VIEW_ADMIN_COUNTS,
    }),
    User.ROLE_GUILD: frozenset(),
    User.ROLE_USER: frozenset(),
}


def has_capability(user, capability: str) -> bool:
    """Check whether ``user`` may perform ``capability``."""
    if user is None or not user.is_authenticated:
        return False
    if user.is_superuser:
        return True
    return capability in ROLE_CAPABILITIES.get(getattr(user, 'role_group', None), frozenset())


def require_capability(user, capability: str) -> None:
    """
    Raise unless ``user`` holds ``capability``.

    Raises:
        Unauthenticated: If there is no signed-in user
        Forbidden: If the user's role lacks the capability
    """
    if user is None or not user.is_authenticated:
        raise Unauthenticated("Authentication required")
    if not has_capability(user, capability):
        logger.warning(f"User {user.pk} denied {capability}")
        raise Forbidden(f"Your role does not allow {capability.replace('_', ' ')}")


class CapabilityPermission(BasePermission):
    """
    Allows access to users holding ``capability``.
    """
    capability = None

    def has_permission(self, request, view):
        return has_capability(request.user, self.capability)


class CanManageKills(CapabilityPermission):
    capability = MANAGE_KILLS


class CanResolveApplications(CapabilityPermission):
    capability = RESOLVE_APPLICATIONS


class CanManageAuctions(CapabilityPermission):
    capability = MANAGE_AUCTIONS


class CanManageVotes(CapabilityPermission):
    capability = MANAGE_VOTES


class CanManageWallets(CapabilityPermission):
    capability = MANAGE_WALLETS


class CanViewAdminCounts(CapabilityPermission):
    capability = VIEW_ADMIN_COUNTS


class CanManageGuilds(CapabilityPermission):
    capability = MANAGE_GUILDS


class IsReadOnlyOrCanManageKills(BasePermission):
    """
    Signed-in users can read; writes need the kill management capability.
    """

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        if request.method in SAFE_METHODS:
            return True
        return has_capability(request.user, MANAGE_KILLS)
