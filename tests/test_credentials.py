#!/usr/bin/env python3
"""
Tests for credential resolution and token issuing.
"""

import os
import sys
import unittest
from unittest.mock import Mock

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sonar_setup.api.base import ApiAuthenticationError, ApiConnectionError, ApiResponseError
from sonar_setup.credentials import (
    DEFAULT_ADMIN_PASSWORD, AuthenticationFailed, PasswordProvider, resolve_password
)
from sonar_setup.tokens import issue_token
from fake_sonar import FakeSonarApi, admin_session


def validator(*outcomes):
    api = Mock()
    api.base_url = 'http://sonar.test'
    api.validate_credentials.side_effect = list(outcomes)
    return api


def tried_passwords(api):
    return [c[0][0].password for c in api.validate_credentials.call_args_list]


class TestPasswordProvider(unittest.TestCase):

    def test_admin_candidates_in_order(self):
        provider = PasswordProvider.for_admin('target', 'explicit', environ={'ADMIN_PASSWORD': 'env'})

        self.assertEqual(provider.present(), ['target', 'explicit', 'env', DEFAULT_ADMIN_PASSWORD])

    def test_absent_candidates_skipped(self):
        provider = PasswordProvider.for_admin(None, None, environ={})

        self.assertEqual(provider.present(), ['admin'])

    def test_duplicates_tried_once(self):
        provider = PasswordProvider.for_admin('admin', 'x', environ={'ADMIN_PASSWORD': 'x'})

        self.assertEqual(provider.present(), ['admin', 'x'])

    def test_specific_password(self):
        self.assertEqual(PasswordProvider.specific_password('s3cret').present(), ['s3cret'])


class TestResolvePassword(unittest.TestCase):

    def test_first_valid_candidate_wins(self):
        api = validator(False, True, True)

        password = resolve_password(api, 'admin', PasswordProvider(['a', 'b', 'c']))

        self.assertEqual(password, 'b')
        self.assertEqual(tried_passwords(api), ['a', 'b'])

    def test_unauthorized_is_skipped(self):
        api = validator(ApiAuthenticationError(401, [], 'Cannot validate authentication'), True)

        self.assertEqual(resolve_password(api, 'admin', PasswordProvider(['a', 'b'])), 'b')

    def test_absent_candidate_not_sent(self):
        api = validator(True)

        self.assertEqual(resolve_password(api, 'admin', PasswordProvider([None, 'b'])), 'b')
        self.assertEqual(tried_passwords(api), ['b'])

    def test_all_invalid(self):
        api = validator(False, False)

        with self.assertRaises(AuthenticationFailed) as ctx:
            resolve_password(api, 'admin', PasswordProvider(['a', 'b']))

        self.assertEqual(ctx.exception.username, 'admin')
        self.assertIn('[admin]', str(ctx.exception))

    def test_no_candidates(self):
        with self.assertRaises(AuthenticationFailed):
            resolve_password(validator(), 'admin', PasswordProvider([]))

    def test_other_api_errors_propagate(self):
        api = validator(ApiResponseError(500, ['boom'], 'Cannot validate authentication'), True)

        with self.assertRaises(ApiResponseError):
            resolve_password(api, 'admin', PasswordProvider(['a', 'b']))

        self.assertEqual(api.validate_credentials.call_count, 1)

    def test_transport_errors_propagate(self):
        api = validator(ApiConnectionError('reset'))

        with self.assertRaises(ApiConnectionError):
            resolve_password(api, 'admin', PasswordProvider(['a']))

    def test_candidate_credentials_use_username(self):
        api = validator(True)

        resolve_password(api, 'ci-bot', PasswordProvider(['pw']))

        self.assertEqual(api.validate_credentials.call_args[0][0].username, 'ci-bot')

    def test_against_configured_server(self):
        fake = FakeSonarApi(admin_password='n3w')
        provider = PasswordProvider.for_admin('n3w', None, environ={})

        self.assertEqual(resolve_password(fake, 'admin', provider), 'n3w')
        self.assertEqual(fake.count('validate_credentials'), 1)

    def test_against_fresh_server(self):
        fake = FakeSonarApi()
        provider = PasswordProvider.for_admin('n3w', None, environ={})

        self.assertEqual(resolve_password(fake, 'admin', provider), 'admin')
        self.assertEqual(fake.count('validate_credentials'), 2)


class TestIssueToken(unittest.TestCase):

    def test_token_returned(self):
        fake = admin_session(FakeSonarApi())

        token = issue_token(fake, 'admin', 'ci')

        self.assertEqual(token, 'squ_admin_ci')
        self.assertEqual(fake.calls_named('generate_token'), [('admin', 'ci')])

    def test_unknown_login_fails(self):
        fake = admin_session(FakeSonarApi())

        with self.assertRaises(ApiResponseError) as ctx:
            issue_token(fake, 'ghost', 'ci')

        self.assertEqual(ctx.exception.status_code, 404)


if __name__ == '__main__':
    unittest.main()
