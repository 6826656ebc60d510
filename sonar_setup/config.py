"""
Configuration loading and management for Sonar Setup.

This module handles loading the declarative YAML document, validating its
structure, and resolving environment variable placeholders in its values.
"""

import os
import re
import yaml
import logging
from typing import Dict, Any, List, Mapping, Optional

from sonar_setup.logging_setup import security_logger

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


def resolve_variables(value: str, environ: Optional[Mapping[str, str]] = None) -> str:
    """
    Replace ``${VAR}`` placeholders with environment values.

    Any other ``$`` is literal text, so passwords such as ``my$ecret`` pass
    through untouched.

    Args:
        value: String possibly containing placeholders
        environ: Variables to resolve against (defaults to os.environ)

    Returns:
        The fully resolved string

    Raises:
        ConfigurationError: If a ``${`` placeholder is malformed or cannot be resolved
    """
    if environ is None:
        environ = os.environ

    names = PLACEHOLDER_PATTERN.findall(value)
    if value.count('${') != len(names):
        raise ConfigurationError(f"Invalid variable placeholder in [{value}].")

    missing = [name for name in dict.fromkeys(names) if name not in environ]
    if missing:
        raise ConfigurationError(
            f"Cannot resolve all variables from [{value}]: missing {', '.join(missing)}."
        )

    return PLACEHOLDER_PATTERN.sub(lambda match: environ[match.group(1)], value)


class ConfigLoader:
    """Handles loading and validation of the configuration document."""

    SECTIONS = ('admin', 'properties', 'groups', 'users', 'logging')

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses CONFIG_PATH env var or 'config.yaml'
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH', 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and validate it.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self.config = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file {self.config_path}: {e}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if self.config is None:
            self.config = {}

        self._validate()
        self._apply_defaults()

        security_logger.log_configuration_access(self.config_path)
        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _validate(self):
        """Validate the structure of the document, collecting every problem."""
        if not isinstance(self.config, dict):
            raise ConfigurationError("Configuration root must be a mapping")

        errors = []

        for key in self.config:
            if key not in self.SECTIONS:
                errors.append(f"Unknown top-level section: {key}")

        admin = self.config.get('admin')
        if admin is not None:
            if not isinstance(admin, dict):
                errors.append("admin must be a mapping")

        errors.extend(self._validate_list('properties', required=('name', 'value')))
        errors.extend(self._validate_list('groups', required=('name',), lists=('permissions',)))
        errors.extend(self._validate_list('users', required=('login', 'name'), lists=('groups',)))

        logging_config = self.config.get('logging')
        if logging_config is not None and not isinstance(logging_config, dict):
            errors.append("logging must be a mapping")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _validate_list(self, section: str, required=(), lists=()) -> List[str]:
        """Validate a list-of-mappings section."""
        entries = self.config.get(section)
        if entries is None:
            return []
        if not isinstance(entries, list):
            return [f"{section} must be a list"]

        errors = []
        for i, entry in enumerate(entries):
            prefix = f"{section}[{i}]"
            if not isinstance(entry, dict):
                errors.append(f"{prefix} must be a mapping")
                continue

            for field in required:
                value = entry.get(field)
                if value is None or (field != 'value' and value == ''):
                    errors.append(f"Missing required field {prefix}.{field}")

            for field in lists:
                value = entry.get(field)
                if value is not None and not isinstance(value, list):
                    errors.append(f"{prefix}.{field} must be a list")
        return errors

    def _apply_defaults(self):
        """Apply default values for optional sections."""
        for section in ('properties', 'groups', 'users'):
            if self.config.get(section) is None:
                self.config[section] = []

        for group in self.config['groups']:
            if group.get('description') is None:
                group['description'] = ''
            if group.get('permissions') is None:
                group['permissions'] = []

        for user in self.config['users']:
            if user.get('groups') is None:
                user['groups'] = []

        if self.config.get('logging') is None:
            self.config['logging'] = {}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path)
    return loader.load()
