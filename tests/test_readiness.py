#!/usr/bin/env python3
"""
Tests for the readiness probe and the retry helper it is built on.
"""

import os
import sys
import unittest
from unittest.mock import Mock, patch

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sonar_setup.api.base import ApiConnectionError, ApiResponseError
from sonar_setup.readiness import ServerUnreachableError, wait_until_ready
from sonar_setup.retry import MaxRetriesExceeded, create_retry_callback, retry_call


def make_api(*outcomes):
    api = Mock()
    api.base_url = 'http://sonar.test'
    api.server_version.side_effect = list(outcomes)
    return api


class TestWaitUntilReady(unittest.TestCase):

    def setUp(self):
        self.sleep = Mock()

    def test_ready_on_first_attempt(self):
        api = make_api('9.9.0')

        self.assertEqual(wait_until_ready(api, 5, interval=1.0, sleep=self.sleep), '9.9.0')
        self.assertEqual(api.server_version.call_count, 1)
        self.sleep.assert_not_called()

    def test_ready_after_failures(self):
        api = make_api(ApiConnectionError('refused'), ApiResponseError(503, [], 'starting'), '9.9.0')

        self.assertEqual(wait_until_ready(api, 5, interval=2.5, sleep=self.sleep), '9.9.0')
        self.assertEqual(api.server_version.call_count, 3)
        self.assertEqual(self.sleep.call_count, 2)
        self.sleep.assert_called_with(2.5)

    def test_exactly_n_attempts_then_unreachable(self):
        api = make_api(*[ApiConnectionError('refused')] * 4)

        with self.assertRaises(ServerUnreachableError) as ctx:
            wait_until_ready(api, 4, interval=1.0, sleep=self.sleep)

        self.assertEqual(api.server_version.call_count, 4)
        self.assertEqual(self.sleep.call_count, 3)
        self.assertEqual(ctx.exception.attempts, 4)
        self.assertEqual(ctx.exception.url, 'http://sonar.test')
        self.assertIsInstance(ctx.exception.last_exception, ApiConnectionError)

    def test_single_attempt_never_sleeps(self):
        api = make_api(ApiConnectionError('refused'))

        with self.assertRaises(ServerUnreachableError):
            wait_until_ready(api, 1, sleep=self.sleep)

        self.sleep.assert_not_called()

    def test_unexpected_errors_are_not_retried(self):
        api = make_api(KeyError('boom'), '9.9.0')

        with self.assertRaises(KeyError):
            wait_until_ready(api, 5, sleep=self.sleep)

        self.assertEqual(api.server_version.call_count, 1)

    def test_zero_attempts_rejected(self):
        with self.assertRaises(ValueError):
            wait_until_ready(make_api(), 0, sleep=self.sleep)


class TestRetryCall(unittest.TestCase):

    def test_arguments_forwarded(self):
        func = Mock(return_value='ok')

        self.assertEqual(retry_call(func, args=(1,), kwargs={'b': 2}, sleep=Mock()), 'ok')
        func.assert_called_once_with(1, b=2)

    def test_callback_receives_attempt_number(self):
        func = Mock(side_effect=[ValueError('a'), ValueError('b'), 'ok'])
        on_retry = Mock()

        retry_call(func, max_attempts=3, exceptions=(ValueError,), on_retry=on_retry, sleep=Mock())

        self.assertEqual([c[0][0] for c in on_retry.call_args_list], [1, 2])

    def test_failing_callback_does_not_stop_retries(self):
        func = Mock(side_effect=[ValueError('a'), 'ok'])

        result = retry_call(func, max_attempts=2, exceptions=(ValueError,),
                            on_retry=Mock(side_effect=RuntimeError('callback')), sleep=Mock())

        self.assertEqual(result, 'ok')

    def test_max_retries_exceeded(self):
        func = Mock(side_effect=ValueError('always'))

        with self.assertRaises(MaxRetriesExceeded) as ctx:
            retry_call(func, max_attempts=2, exceptions=(ValueError,), sleep=Mock())

        self.assertEqual(ctx.exception.attempts, 2)
        self.assertEqual(str(ctx.exception.last_exception), 'always')

    @patch('sonar_setup.retry.logger')
    def test_callback_logs_every_nth_attempt(self, mock_logger):
        callback = create_retry_callback('Probe', every=30)

        for attempt in range(1, 61):
            callback(attempt, ValueError('x'))

        self.assertEqual(mock_logger.info.call_count, 3)


if __name__ == '__main__':
    unittest.main()
