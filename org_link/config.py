"""
Settings loading for org-link.

This module loads the YAML settings file describing the directory connection,
the organisation API endpoint, linkage policies and logging. Sensitive values
can be supplied through environment variables instead of the file.
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional

from org_link.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_FILE = 'config.yaml'


class ConfigLoader:
    """Handles loading and validation of application settings."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'ldap.bind_password': 'LDAP_BIND_PASSWORD',
    }

    REQUIRED_LDAP_FIELDS = ['server_url', 'bind_dn', 'bind_password']

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize settings loader.

        Args:
            config_path: Path to settings file. If None, uses CONFIG_PATH env var or 'config.yaml'.
                An explicitly named file must exist; the default one is optional.
        """
        self.explicit = bool(config_path or os.getenv('CONFIG_PATH'))
        self.config_path = config_path or os.getenv('CONFIG_PATH', DEFAULT_SETTINGS_FILE)
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load settings from file and apply environment overrides and defaults.

        Returns:
            Settings dictionary

        Raises:
            ConfigurationError: If an explicitly named file is missing or the YAML is invalid
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            if self.explicit:
                raise ConfigurationError(f"Settings file not found: {self.config_path}")
            logger.debug(f"No settings file at {self.config_path}, using defaults")
            self.config = {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in settings file: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Settings file {self.config_path} must contain a mapping")

        self._apply_env_overrides()
        self._validate()
        self._apply_defaults()

        logger.debug(f"Settings loaded from {self.config_path}")
        return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides for sensitive fields."""
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if key not in current or current[key] is None:
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate types of the optional sections."""
        errors = []

        for section in ('ldap', 'organisation', 'linkage', 'logging'):
            value = self.config.get(section)
            if value is not None and not isinstance(value, dict):
                errors.append(f"Section '{section}' must be a mapping")

        linkage = self.config.get('linkage') or {}
        if isinstance(linkage, dict):
            for flag in ('clear_attribute_on_remove', 'enforce_unique_linkage'):
                if flag in linkage and not isinstance(linkage[flag], bool):
                    errors.append(f"linkage.{flag} must be true or false")

        organisation = self.config.get('organisation') or {}
        if isinstance(organisation, dict):
            page_size = organisation.get('page_size')
            if page_size is not None and (not isinstance(page_size, int) or not 1 <= page_size <= 100):
                errors.append("organisation.page_size must be an integer between 1 and 100")

        if errors:
            raise ConfigurationError("Settings validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional settings."""
        ldap_defaults = {
            'user_base_dn': '',
            'user_filter': '(objectClass=person)',
            'identity_attribute': 'sAMAccountName',
            'link_attribute': 'info',
            'start_tls': False,
            'verify_ssl': True,
            'connection_timeout': 10,
            'receive_timeout': 10,
        }
        ldap_config = self._section('ldap')
        for key, value in ldap_defaults.items():
            ldap_config.setdefault(key, value)

        organisation_defaults = {
            'api_url': 'https://api.github.com',
            'timeout': 30,
            'page_size': 100,
            'role': 'member',
            'verify_ssl': True,
            'truststore_type': 'PEM',
        }
        organisation_config = self._section('organisation')
        for key, value in organisation_defaults.items():
            organisation_config.setdefault(key, value)

        linkage_defaults = {
            'clear_attribute_on_remove': False,
            'enforce_unique_linkage': False,
        }
        linkage_config = self._section('linkage')
        for key, value in linkage_defaults.items():
            linkage_config.setdefault(key, value)

        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7,
            'console_output': True,
            'console_level': 'WARNING',
        }
        logging_config = self._section('logging')
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

    def _section(self, name: str) -> Dict[str, Any]:
        if self.config.get(name) is None:
            self.config[name] = {}
        return self.config[name]


def validate_ldap_settings(ldap_config: Dict[str, Any]) -> None:
    """
    Check the directory connection settings are complete.

    Only commands that touch the directory need these, so this is checked
    on demand rather than at load time.

    Raises:
        ConfigurationError: If a required field is missing
    """
    missing = [field for field in ConfigLoader.REQUIRED_LDAP_FIELDS if not ldap_config.get(field)]
    if missing:
        raise ConfigurationError(
            "Directory settings incomplete:\n" + "\n".join(f"  - Missing required LDAP field: {field}" for field in missing)
        )


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load settings.

    Args:
        config_path: Path to settings file

    Returns:
        Loaded settings dictionary
    """
    loader = ConfigLoader(config_path)
    return loader.load()
