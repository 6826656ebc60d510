"""
Command line entry point for Sonar Setup.

This module contains the two commands, ``setup`` and ``generate-token``, which
wait for the server, authenticate, and then reconcile the configuration or mint a
token. Every fatal error is reported and mapped to a non-zero exit code.
"""

import sys
import logging
import argparse
from datetime import datetime
from typing import Any, Dict, List, Optional

from sonar_setup import __version__
from sonar_setup.api.base import Credentials, SonarApiError
from sonar_setup.api.sonar import SonarApi
from sonar_setup.config import load_config, resolve_variables, ConfigurationError
from sonar_setup.credentials import AuthenticationFailed, PasswordProvider, resolve_password
from sonar_setup.logging_setup import setup_logging
from sonar_setup.models import DesiredState, precheck
from sonar_setup.readiness import DEFAULT_INTERVAL, ServerUnreachableError, wait_until_ready
from sonar_setup.reconcile import MembershipPolicy, Reconciler, ReconcilerSettings
from sonar_setup.tokens import issue_token

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_API_ERROR = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_UNREACHABLE = 3
EXIT_UNEXPECTED = 4

DEFAULT_ATTEMPTS = 600


class Command:
    """
    Base class for CLI commands.

    Subclasses implement execute(); run() maps every fatal error to an exit code.
    """

    def __init__(self, args: argparse.Namespace):
        self.args = args

    def run(self) -> int:
        """
        Run the command.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        try:
            setup_logging(self._logging_config(), force=True)
            return self.execute()

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIGURATION_ERROR
        except ServerUnreachableError as e:
            logger.error(f"Error while trying to connect to the API: {e}")
            return EXIT_UNREACHABLE
        except AuthenticationFailed as e:
            logger.error(str(e))
            return EXIT_API_ERROR
        except SonarApiError as e:
            logger.error(f"API error: {e}")
            return EXIT_API_ERROR
        except ValueError as e:
            logger.error(f"Invalid argument: {e}")
            return EXIT_CONFIGURATION_ERROR
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            return EXIT_UNEXPECTED

    def execute(self) -> int:
        raise NotImplementedError

    def _logging_config(self, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Merge logging settings from a config section with the CLI flags."""
        config = dict(overrides or {})

        verbose = getattr(self.args, 'verbose', 0) or 0
        if verbose >= 2:
            config['console_level'] = 'DEBUG'
            config['level'] = 'DEBUG'
        elif verbose == 1:
            config['console_level'] = 'INFO'

        log_dir = getattr(self.args, 'log_dir', None)
        if log_dir:
            config['log_dir'] = log_dir

        return config

    def _create_api(self) -> SonarApi:
        return SonarApi(
            self.args.sonar_url,
            timeout=self.args.timeout,
            verify_ssl=not self.args.insecure,
            truststore_file=self.args.truststore,
            truststore_type=self.args.truststore_type,
            truststore_password=self.args.truststore_password,
        )


class SetupCommand(Command):
    """
    Reconcile the server with a configuration file.

    Waits for the server, picks working admin credentials, then applies
    properties, groups, users and the admin password.
    """

    def __init__(self, args: argparse.Namespace, settings: Optional[ReconcilerSettings] = None):
        super().__init__(args)
        self.settings = settings or ReconcilerSettings(
            membership_policy=MembershipPolicy(getattr(args, 'membership_policy', 'converge'))
        )
        self.stats = {
            'start_time': None,
            'end_time': None,
            'runtime_seconds': 0,
        }

    def execute(self) -> int:
        self.stats['start_time'] = datetime.now()

        logger.debug(f"Run setup command with configuration file {self.args.file}")
        config = load_config(self.args.file)
        setup_logging(self._logging_config(config.get('logging')), force=True)

        desired = DesiredState.from_config(config, resolve_variables)
        precheck(desired, self.settings.admin_login)

        target_password = desired.admin.password if desired.admin else None
        provider = PasswordProvider.for_admin(target_password, self.args.admin_password)

        with self._create_api() as api:
            wait_until_ready(api, self.args.attempts, interval=self.args.interval)

            password = resolve_password(api, self.settings.admin_login, provider)
            api.use_credentials(Credentials(self.settings.admin_login, password))

            reconciler = Reconciler(api, self.settings)
            self.stats.update(reconciler.apply(desired))

        self.stats['end_time'] = datetime.now()
        self.stats['runtime_seconds'] = (self.stats['end_time'] - self.stats['start_time']).total_seconds()
        self._log_summary()

        logger.info("Setup completed successfully")
        return EXIT_OK

    def _log_summary(self):
        """Log final reconciliation statistics."""
        stats = self.stats

        runtime_str = f"{stats['runtime_seconds']:.2f} seconds"
        if stats['runtime_seconds'] > 60:
            minutes = int(stats['runtime_seconds'] // 60)
            seconds = stats['runtime_seconds'] % 60
            runtime_str = f"{minutes}m {seconds:.1f}s"

        logger.info("=== Setup Summary ===")
        logger.info(f"Total runtime: {runtime_str}")
        logger.info(f"Properties set: {stats.get('properties_set', 0)}")
        logger.info(f"Groups created: {stats.get('groups_created', 0)}, updated: {stats.get('groups_updated', 0)}")
        logger.info(f"Permissions granted: {stats.get('permissions_granted', 0)}, "
                    f"revoked: {stats.get('permissions_revoked', 0)}")
        logger.info(f"Users created: {stats.get('users_created', 0)}, updated: {stats.get('users_updated', 0)}")
        logger.info(f"Passwords changed: {stats.get('passwords_changed', 0)}")
        logger.info(f"Memberships added: {stats.get('memberships_added', 0)}, "
                    f"removed: {stats.get('memberships_removed', 0)}")


class GenerateTokenCommand(Command):
    """Mint a user token and print it on stdout."""

    def execute(self) -> int:
        login = self.args.login or self.args.username

        with self._create_api() as api:
            wait_until_ready(api, self.args.attempts, interval=self.args.interval)

            password = resolve_password(api, self.args.username, PasswordProvider.specific_password(self.args.password))
            api.use_credentials(Credentials(self.args.username, password))

            token = issue_token(api, login, self.args.name)

        print(token)
        return EXIT_OK


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer: {value}")
    return number


def positive_float(value: str) -> float:
    number = float(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--sonar-url', '-s', required=True, help='URL of SonarQube')
    common.add_argument('--attempts', '-a', type=positive_int, default=DEFAULT_ATTEMPTS,
                        help='Number of attempts to connect to the API (1sec between attempts)')
    common.add_argument('--interval', type=positive_float, default=DEFAULT_INTERVAL,
                        help='Seconds between two connection attempts')
    common.add_argument('--timeout', type=positive_float, default=30,
                        help='Timeout of a single API request in seconds')
    common.add_argument('--insecure', action='store_true', help='Do not verify the server certificate')
    common.add_argument('--truststore', help='CA certificates used to verify the server (PEM or PKCS12)')
    common.add_argument('--truststore-type', choices=['PEM', 'PKCS12'], default='PEM', help='Truststore format')
    common.add_argument('--truststore-password', help='Password of a PKCS12 truststore')
    common.add_argument('--verbose', '-v', action='count', default=0, help='Increase console verbosity')
    common.add_argument('--log-dir', help='Also write rotated log files to this directory')

    parser = argparse.ArgumentParser(prog='sonar-setup', description='Setup Sonarqube from a configuration file')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    subparsers = parser.add_subparsers(dest='command', required=True)

    setup = subparsers.add_parser('setup', parents=[common], help='Setup from a file')
    setup.add_argument('--file', '-f', help='YAML configuration file (defaults to $CONFIG_PATH or config.yaml)')
    setup.add_argument('--admin-password', '-p',
                       help='The password of the administrator; auto-detected with the env. variable: '
                            'ADMIN_PASSWORD and fallback with default admin password')
    setup.add_argument('--membership-policy', choices=[p.value for p in MembershipPolicy],
                       default=MembershipPolicy.CONVERGE.value,
                       help='converge: remove groups not listed for a user; '
                            'legacy: historical comparison that removes listed groups the user already has')
    setup.set_defaults(command_class=SetupCommand)

    token = subparsers.add_parser('generate-token', parents=[common], help='Generate a user token')
    token.add_argument('--name', '-n', required=True, help='Name of the generated token')
    token.add_argument('--username', '-u', default='admin', help='Username')
    token.add_argument('--password', '-p', default='admin', help='User password')
    token.add_argument('--login', '-l', help='User the token is generated for (defaults to --username)')
    token.set_defaults(command_class=GenerateTokenCommand)

    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point for the application."""
    args = build_parser().parse_args(argv)
    sys.exit(args.command_class(args).run())


if __name__ == "__main__":
    main()
