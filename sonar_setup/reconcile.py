"""
Reconciliation engine.

Compares desired state with what the server reports and issues the create/update
calls needed to converge, one entity at a time. Every operation is safe to re-run.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sonar_setup.api.base import Credentials
from sonar_setup.config import ConfigurationError
from sonar_setup.logging_setup import security_logger
from sonar_setup.models import (
    AdminDesired, DesiredState, GroupDesired, PrecheckViolation, PropertyDesired,
    RemoteGroup, UserDesired
)

logger = logging.getLogger(__name__)

ADMIN_LOGIN = 'admin'
DEFAULT_GROUP = 'sonar-users'
DEFAULT_TEMPLATE_ID = 'default_template'
DEFAULT_USER_PASSWORD = 'password'


class UnsupportedPaginationError(ConfigurationError):
    """Raised when a listing response is only a partial view of the results."""
    pass


class MembershipPolicy(enum.Enum):
    """How a user's current group memberships are compared with the desired ones."""

    # Remove held groups that are not desired, add desired groups not held
    CONVERGE = 'converge'
    # Remove held groups that ARE desired, add desired groups not held
    LEGACY = 'legacy'


@dataclass
class ReconcilerSettings:
    admin_login: str = ADMIN_LOGIN
    default_group: str = DEFAULT_GROUP
    template_id: str = DEFAULT_TEMPLATE_ID
    default_user_password: str = DEFAULT_USER_PASSWORD
    membership_policy: MembershipPolicy = MembershipPolicy.CONVERGE


class Reconciler:
    """
    Drives the server toward a DesiredState.

    Calls are strictly sequential. The only shared mutable state is the API
    client's session credentials, replaced once after an admin password change.
    """

    def __init__(self, api, settings: Optional[ReconcilerSettings] = None):
        """
        Initialize reconciler.

        Args:
            api: SonarApi instance, already authenticated as the administrator
            settings: Reserved names and policies
        """
        self.api = api
        self.settings = settings or ReconcilerSettings()
        self.stats = {
            'properties_set': 0,
            'groups_created': 0,
            'groups_updated': 0,
            'permissions_granted': 0,
            'permissions_revoked': 0,
            'users_created': 0,
            'users_updated': 0,
            'passwords_changed': 0,
            'memberships_added': 0,
            'memberships_removed': 0,
        }

    def apply(self, desired: DesiredState) -> Dict[str, Any]:
        """
        Reconcile properties, groups, users, then the admin password, in that order.

        Returns:
            Effect counters
        """
        for prop in desired.properties:
            self.set_property(prop)

        for group in desired.groups:
            self.reconcile_group(group)

        for user in desired.users:
            self.reconcile_user(user)

        if desired.admin is not None:
            self.reconcile_admin(desired.admin)

        return self.stats

    def set_property(self, prop: PropertyDesired):
        """Set a server setting; the endpoint is idempotent so no lookup is made."""
        logger.info(f"Setting property [{prop.name}]")
        self.api.set_setting(prop.name, prop.value)
        self.stats['properties_set'] += 1

    def reconcile_group(self, group: GroupDesired):
        """
        Create or update a group, then make its template permissions exactly
        ``group.permissions``.
        """
        logger.info(f"Reconciling group [{group.name}]")

        remote = self.find_group(group.name)
        if remote is None:
            self.api.create_group(group.name, group.description)
            self.stats['groups_created'] += 1
            logger.info(f"Created group [{group.name}]")
        else:
            self.api.update_group(remote.id, group.description)
            self.stats['groups_updated'] += 1
            logger.debug(f"Updated group [{group.name}] (id {remote.id})")

        templates = self.api.search_templates()
        template = templates.find(self.settings.template_id)
        if template is None:
            raise ConfigurationError(f"Permission template [{self.settings.template_id}] does not exist.")

        desired = set(group.permissions)
        catalog = templates.catalog_for(template)

        unknown = [p for p in group.permissions if p not in catalog]
        if unknown:
            logger.warning(f"Group [{group.name}] requests unknown permissions: {', '.join(unknown)}")

        for permission in catalog:
            if permission in desired:
                self.api.add_group_to_template(group.name, permission, template.id)
                self.stats['permissions_granted'] += 1
            else:
                self.api.remove_group_from_template(group.name, permission, template.id)
                self.stats['permissions_revoked'] += 1

    def reconcile_user(self, user: UserDesired):
        """Create or update a user, then reconcile its group memberships."""
        if user.login == self.settings.admin_login:
            raise PrecheckViolation(
                f"Cannot update user [{user.login}]; the admin account is managed through the admin section."
            )

        logger.info(f"Reconciling user [{user.login}]")

        if not self.user_exists(user.login):
            password = user.password if user.password is not None else self.settings.default_user_password
            self.api.create_user(user.login, user.name, password)
            self.stats['users_created'] += 1
            logger.info(f"Created user [{user.login}]")
        else:
            self.api.update_user(user.login, user.name)
            self.stats['users_updated'] += 1

            if user.password is not None:
                self.api.change_password(user.login, user.password)
                self.stats['passwords_changed'] += 1
                security_logger.log_password_change(user.login)

        current = self.user_groups(user.login)
        to_remove, to_add = self.membership_changes(current, user.groups)

        for group in to_remove:
            self.api.remove_user_from_group(user.login, group)
            self.stats['memberships_removed'] += 1

        for group in to_add:
            self.api.add_user_to_group(user.login, group)
            self.stats['memberships_added'] += 1

    def membership_changes(self, current: List[str], desired: List[str]):
        """
        Compute memberships to remove and to add.

        The default group is never removed.

        Returns:
            Tuple of (groups_to_remove, groups_to_add)
        """
        wanted = set(desired)
        removable = [g for g in current if g != self.settings.default_group]

        if self.settings.membership_policy is MembershipPolicy.LEGACY:
            to_remove = [g for g in removable if g in wanted]
        else:
            to_remove = [g for g in removable if g not in wanted]

        to_add = [g for g in desired if g not in current]
        return to_remove, to_add

    def reconcile_admin(self, admin: AdminDesired):
        """
        Change the administrator's own password if it differs from the session one,
        then switch the session to it.
        """
        if admin.password is None:
            return

        credentials = self.api.credentials
        if credentials is None:
            raise ConfigurationError("No authenticated session to change the admin password from.")

        if admin.password == credentials.password:
            logger.debug("Admin password already up to date")
            return

        logger.info(f"Changing password of user [{credentials.username}]")
        self.api.change_password(credentials.username, admin.password, previous_password=credentials.password)
        self.api.use_credentials(Credentials(credentials.username, admin.password))
        self.stats['passwords_changed'] += 1
        security_logger.log_password_change(credentials.username)

    # Lookups

    def find_group(self, name: str) -> Optional[RemoteGroup]:
        """Exact-name lookup over the server's fuzzy group search."""
        result = self.api.search_groups(name)
        self._check_complete(result, f"group search [{name}]")
        for group in result.items:
            if group.name == name:
                return group
        return None

    def user_exists(self, login: str) -> bool:
        """Exact-login lookup over the server's fuzzy user search."""
        result = self.api.search_users(login)
        self._check_complete(result, f"user search [{login}]")
        return any(user.login == login for user in result.items)

    def user_groups(self, login: str) -> List[str]:
        memberships = self.api.user_groups(login)
        self._check_complete(memberships, f"groups of user [{login}]")
        return memberships.groups

    @staticmethod
    def _check_complete(result, what: str):
        if result.paging.is_truncated:
            raise UnsupportedPaginationError(
                f"Pagination is not supported: {what} returned {result.paging.total} results "
                f"with a page size of {result.paging.page_size}."
            )
