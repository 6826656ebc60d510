"""
Desired-state and observed-state models.

Desired entities are built from the configuration document through an injected
variable resolver; observed entities are parsed from API responses.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from sonar_setup.config import ConfigurationError
from sonar_setup.api.base import DeserializationError

logger = logging.getLogger(__name__)

Resolver = Callable[[str], str]


class PrecheckViolation(ConfigurationError):
    """Raised when desired state breaks a rule checked before any API call."""
    pass


def _render(value: Any) -> str:
    """Render a YAML scalar the way the server expects it."""
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def _unique(items: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


# Desired state

@dataclass
class PropertyDesired:
    name: str
    value: str

    @classmethod
    def from_config(cls, entry: Dict[str, Any], resolve: Resolver) -> 'PropertyDesired':
        return cls(name=resolve(_render(entry['name'])), value=resolve(_render(entry['value'])))


@dataclass
class GroupDesired:
    name: str
    description: str = ''
    permissions: List[str] = field(default_factory=list)

    @classmethod
    def from_config(cls, entry: Dict[str, Any], resolve: Resolver) -> 'GroupDesired':
        return cls(
            name=resolve(_render(entry['name'])),
            description=resolve(_render(entry.get('description') or '')),
            permissions=_unique(resolve(_render(p)) for p in entry.get('permissions') or []),
        )


@dataclass
class UserDesired:
    login: str
    name: str
    password: Optional[str] = None
    groups: List[str] = field(default_factory=list)

    @classmethod
    def from_config(cls, entry: Dict[str, Any], resolve: Resolver) -> 'UserDesired':
        password = entry.get('password')
        return cls(
            login=resolve(_render(entry['login'])),
            name=resolve(_render(entry['name'])),
            password=resolve(_render(password)) if password is not None else None,
            groups=_unique(resolve(_render(g)) for g in entry.get('groups') or []),
        )


@dataclass
class AdminDesired:
    password: Optional[str] = None

    @classmethod
    def from_config(cls, entry: Dict[str, Any], resolve: Resolver) -> 'AdminDesired':
        password = entry.get('password')
        return cls(password=resolve(_render(password)) if password is not None else None)


@dataclass
class DesiredState:
    """Everything a setup run should converge the server to."""

    admin: Optional[AdminDesired] = None
    properties: List[PropertyDesired] = field(default_factory=list)
    groups: List[GroupDesired] = field(default_factory=list)
    users: List[UserDesired] = field(default_factory=list)

    @classmethod
    def from_config(cls, config: Dict[str, Any], resolve: Resolver) -> 'DesiredState':
        """
        Build the desired state from a loaded configuration document.

        Args:
            config: Document returned by ConfigLoader.load()
            resolve: Applied to every string value before it reaches a model

        Returns:
            Populated DesiredState
        """
        admin = config.get('admin')
        return cls(
            admin=AdminDesired.from_config(admin, resolve) if admin is not None else None,
            properties=[PropertyDesired.from_config(p, resolve) for p in config.get('properties') or []],
            groups=[GroupDesired.from_config(g, resolve) for g in config.get('groups') or []],
            users=[UserDesired.from_config(u, resolve) for u in config.get('users') or []],
        )


def precheck(desired: DesiredState, admin_login: str) -> None:
    """
    Reject desired state that must never reach the server.

    Raises:
        PrecheckViolation: Listing every violation found
    """
    errors = []

    logins = set()
    for user in desired.users:
        if user.login == admin_login:
            errors.append(f"User [{admin_login}] is reserved; manage it through the admin section")
        if user.login in logins:
            errors.append(f"User [{user.login}] is defined more than once")
        logins.add(user.login)

    names = set()
    for group in desired.groups:
        if group.name in names:
            errors.append(f"Group [{group.name}] is defined more than once")
        names.add(group.name)

    if errors:
        raise PrecheckViolation("Precheck failed:\n" + "\n".join(f"  - {error}" for error in errors))


# Observed state

def _field(data: Dict[str, Any], key: str, context: str) -> Any:
    try:
        return data[key]
    except (KeyError, TypeError):
        raise DeserializationError(f"{context}: missing field '{key}'")


def _list(data: Dict[str, Any], key: str, context: str) -> List[Any]:
    value = _field(data, key, context)
    if not isinstance(value, list):
        raise DeserializationError(f"{context}: field '{key}' is not a list")
    return value


@dataclass
class Paging:
    page_index: int
    page_size: int
    total: int

    @property
    def is_truncated(self) -> bool:
        return self.total > self.page_size

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'Paging':
        # Older endpoints report p/ps/total at the top level
        if isinstance(data, dict) and 'paging' not in data and 'ps' in data:
            keys, paging = ('p', 'ps', 'total'), data
        else:
            keys, paging = ('pageIndex', 'pageSize', 'total'), _field(data, 'paging', 'Paging')
        try:
            return cls(*(int(_field(paging, key, 'Paging')) for key in keys))
        except (TypeError, ValueError) as e:
            raise DeserializationError(f"Paging: {e}")


@dataclass
class RemoteUser:
    login: str
    name: str

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'RemoteUser':
        return cls(login=_field(data, 'login', 'User'), name=data.get('name') or '')


@dataclass
class RemoteGroup:
    id: str
    name: str
    description: str = ''

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'RemoteGroup':
        return cls(
            id=str(_field(data, 'id', 'Group')),
            name=_field(data, 'name', 'Group'),
            description=data.get('description') or '',
        )


@dataclass
class SearchResult:
    """One page of a listing endpoint."""

    paging: Paging
    items: List[Any]


@dataclass
class RemoteUserGroups:
    paging: Paging
    groups: List[str]

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'RemoteUserGroups':
        groups = [_field(g, 'name', 'User group') for g in _list(data, 'groups', 'User groups')]
        return cls(paging=Paging.from_api(data), groups=groups)


@dataclass
class PermissionTemplate:
    id: str
    name: str
    permissions: List[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'PermissionTemplate':
        return cls(
            id=str(_field(data, 'id', 'Permission template')),
            name=data.get('name') or '',
            permissions=[_field(p, 'key', 'Template permission') for p in data.get('permissions') or []],
        )


@dataclass
class PermissionTemplates:
    """Response of the template search: templates plus the permission catalog."""

    templates: List[PermissionTemplate]
    catalog: List[str]

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'PermissionTemplates':
        templates = [PermissionTemplate.from_api(t) for t in _list(data, 'permissionTemplates', 'Permission templates')]
        catalog = [_field(p, 'key', 'Permission') for p in data.get('permissions') or []]
        return cls(templates=templates, catalog=catalog)

    def find(self, template_id: str) -> Optional[PermissionTemplate]:
        """Locate a template by id, falling back to an exact name match."""
        for template in self.templates:
            if template.id == template_id:
                return template
        for template in self.templates:
            if template.name == template_id:
                return template
        return None

    def catalog_for(self, template: PermissionTemplate) -> List[str]:
        """Every permission key known to the server for this template."""
        return _unique(list(self.catalog) + list(template.permissions))
