"""Token issuer: mints an API token for a user."""

import logging

from sonar_setup.logging_setup import security_logger

logger = logging.getLogger(__name__)


def issue_token(api, login: str, name: str) -> str:
    """
    Generate a user token named ``name`` for ``login``.

    Failures (unknown user, duplicate token name, ...) surface as API errors.
    """
    logger.info(f"Generating token [{name}] for user [{login}]")
    token = api.generate_token(login, name)
    security_logger.log_token_issued(login, name)
    return token
