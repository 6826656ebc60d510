"""
SonarQube administrative web API.

This module implements the typed calls the reconciliation engine, credential
resolver, readiness prober and token issuer need on top of ApiClient.
See [URL]/web_api/ on a running server for the endpoint reference.
"""

import logging
from typing import Dict, Any, Optional

from .base import ApiClient, Credentials, DeserializationError
from sonar_setup.models import (
    Paging, PermissionTemplates, RemoteGroup, RemoteUser, RemoteUserGroups, SearchResult
)

logger = logging.getLogger(__name__)

# Largest page size accepted by listing endpoints
MAX_PAGE_SIZE = 500


class SonarApi(ApiClient):
    """SonarQube API client implementation."""

    def server_version(self) -> str:
        """Lightweight diagnostic call used to probe readiness (no authentication)."""
        return self.get('/api/server/version', context="Cannot read server version",
                        anonymous=True, expect_json=False).strip()

    def validate_credentials(self, credentials: Credentials) -> bool:
        """
        Check whether the server accepts these credentials.

        Raises:
            ApiAuthenticationError: If the server answers 401
        """
        data = self.get('/api/authentication/validate', context="Cannot validate authentication",
                        credentials=credentials)
        valid = self._expect(data, 'valid', "Cannot deserialize authentication check result")
        return bool(valid)

    # Settings

    def set_setting(self, key: str, value: str):
        logger.debug(f"Setting property [{key}] = [{value}]")
        self.post('/api/settings/set', [('key', key), ('value', value)],
                  context=f"Error while setting property [{key}]")

    # Groups

    def search_groups(self, query: str) -> SearchResult:
        data = self.get('/api/user_groups/search', [('q', query), ('ps', str(MAX_PAGE_SIZE))],
                        context=f"Error while searching group [{query}]")
        return SearchResult(
            paging=self._parse(Paging, data, f"Cannot deserialize groups matching [{query}]"),
            items=[self._parse(RemoteGroup, g, f"Cannot deserialize groups matching [{query}]")
                   for g in self._expect(data, 'groups', f"Cannot deserialize groups matching [{query}]")]
        )

    def create_group(self, name: str, description: str):
        logger.debug(f"Creating group [{name}]")
        self.post('/api/user_groups/create', [('name', name), ('description', description)],
                  context=f"Error while creating group [{name}]")

    def update_group(self, group_id: str, description: str):
        logger.debug(f"Updating group id [{group_id}]")
        self.post('/api/user_groups/update', [('id', group_id), ('description', description)],
                  context=f"Error while updating group [{group_id}]")

    # Permission templates

    def search_templates(self) -> PermissionTemplates:
        data = self.get('/api/permissions/search_templates', context="Cannot read permission templates")
        return self._parse(PermissionTemplates, data, "Cannot deserialize permission templates")

    def add_group_to_template(self, group: str, permission: str, template_id: str):
        logger.debug(f"Assign permission [{permission}] to group [{group}]")
        self.post('/api/permissions/add_group_to_template',
                  [('groupName', group), ('permission', permission), ('templateId', template_id)],
                  context=f"Error while adding permission [{permission}] to group [{group}]")

    def remove_group_from_template(self, group: str, permission: str, template_id: str):
        logger.debug(f"Remove permission [{permission}] from group [{group}]")
        self.post('/api/permissions/remove_group_from_template',
                  [('groupName', group), ('permission', permission), ('templateId', template_id)],
                  context=f"Error while removing permission [{permission}] from group [{group}]")

    # Users

    def search_users(self, query: str) -> SearchResult:
        data = self.get('/api/users/search', [('q', query), ('ps', str(MAX_PAGE_SIZE))],
                        context=f"Error while searching user [{query}]")
        return SearchResult(
            paging=self._parse(Paging, data, f"Cannot deserialize users matching [{query}]"),
            items=[self._parse(RemoteUser, u, f"Cannot deserialize users matching [{query}]")
                   for u in self._expect(data, 'users', f"Cannot deserialize users matching [{query}]")]
        )

    def create_user(self, login: str, name: str, password: str):
        logger.debug(f"Creating user [{login}]")
        self.post('/api/users/create', [('login', login), ('name', name), ('password', password)],
                  context=f"Error while creating user [{login}]")

    def update_user(self, login: str, name: str):
        logger.debug(f"Updating user [{login}]")
        self.post('/api/users/update', [('login', login), ('name', name)],
                  context=f"Error while updating user [{login}]")

    def change_password(self, login: str, password: str, previous_password: Optional[str] = None):
        params = [('login', login), ('password', password)]
        if previous_password is not None:
            params.append(('previousPassword', previous_password))
        self.post('/api/users/change_password', params,
                  context=f"Error while changing user's password [{login}]")

    def user_groups(self, login: str) -> RemoteUserGroups:
        data = self.get('/api/users/groups', [('login', login), ('ps', str(MAX_PAGE_SIZE))],
                        context=f"Error while retrieving groups of user [{login}]")
        return self._parse(RemoteUserGroups, data, f"Cannot deserialize groups of user [{login}]")

    def add_user_to_group(self, login: str, group: str):
        logger.debug(f"Add user [{login}] to group [{group}]")
        self.post('/api/user_groups/add_user', [('login', login), ('name', group)],
                  context=f"Error while adding user [{login}] to group [{group}]")

    def remove_user_from_group(self, login: str, group: str):
        logger.debug(f"Remove user [{login}] from group [{group}]")
        self.post('/api/user_groups/remove_user', [('login', login), ('name', group)],
                  context=f"Error while removing user [{login}] from group [{group}]")

    # Tokens

    def generate_token(self, login: str, name: str) -> str:
        data = self.post('/api/user_tokens/generate', [('login', login), ('name', name)],
                         context=f"Error while generating user token [{name}]")
        token = self._expect(data, 'token', f"Cannot deserialize generated token [{name}]")
        if not isinstance(token, str) or not token:
            raise DeserializationError(f"Cannot deserialize generated token [{name}]: empty token")
        return token

    # Helpers

    @staticmethod
    def _expect(data: Any, key: str, context: str) -> Any:
        if not isinstance(data, dict) or key not in data:
            raise DeserializationError(f"{context}: missing field '{key}'")
        return data[key]

    @staticmethod
    def _parse(model, data: Dict[str, Any], context: str):
        try:
            return model.from_api(data)
        except DeserializationError as e:
            raise DeserializationError(f"{context}: {e}")
        except (TypeError, AttributeError, ValueError) as e:
            raise DeserializationError(f"{context}: {e}")
