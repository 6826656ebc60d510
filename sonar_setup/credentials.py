"""
Credential resolution.

Finds which of several candidate passwords currently authenticates a user, so the
same configuration works against a fresh install and an already-configured server.
"""

import os
import logging
from typing import Iterable, List, Mapping, Optional

from sonar_setup.api.base import ApiAuthenticationError, Credentials
from sonar_setup.logging_setup import security_logger

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_PASSWORD = 'admin'
ENV_ADMIN_PASSWORD = 'ADMIN_PASSWORD'


class AuthenticationFailed(Exception):
    """Raised when no candidate password authenticates the user."""

    def __init__(self, username: str):
        self.username = username
        super().__init__(f"Cannot authenticate user [{username}]. Please check its credentials.")


class PasswordProvider:
    """Ordered candidate passwords; absent (None) candidates are kept but skipped."""

    def __init__(self, candidates: Iterable[Optional[str]]):
        self.candidates = list(candidates)

    @classmethod
    def specific_password(cls, password: str) -> 'PasswordProvider':
        return cls([password])

    @classmethod
    def for_admin(cls, target_password: Optional[str] = None, explicit_password: Optional[str] = None,
                  environ: Optional[Mapping[str, str]] = None) -> 'PasswordProvider':
        """
        Candidates for the administrator, most specific first.

        The configured target password comes first: a previous run may already
        have applied it.
        """
        if environ is None:
            environ = os.environ
        return cls([target_password, explicit_password, environ.get(ENV_ADMIN_PASSWORD), DEFAULT_ADMIN_PASSWORD])

    def present(self) -> List[str]:
        """Present candidates, in order, without duplicates."""
        seen = []
        for candidate in self.candidates:
            if candidate is not None and candidate not in seen:
                seen.append(candidate)
        return seen


def resolve_password(api, username: str, provider: PasswordProvider) -> str:
    """
    Return the first candidate password the server reports as valid.

    Rejected (401 or ``valid: false``) and absent candidates are skipped; any other
    failure propagates.

    Raises:
        AuthenticationFailed: If no candidate validates
    """
    for index, password in enumerate(provider.present(), start=1):
        logger.debug(f"Trying password candidate #{index} for user [{username}]")
        try:
            valid = api.validate_credentials(Credentials(username, password))
        except ApiAuthenticationError:
            valid = False

        security_logger.log_authentication_attempt(api.base_url, username, valid)
        if valid:
            logger.info(f"Authenticated user [{username}] with password candidate #{index}")
            return password

    raise AuthenticationFailed(username)
