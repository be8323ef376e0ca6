"""
Credential file handling for org-link.

The credential file holds two `key:value` lines, `APIToken` and
`Organisation`. The value is everything after the first colon, so values may
themselves contain colons.
"""

import os
import getpass
import logging
import tempfile
from typing import Callable, Dict, Optional

from org_link.errors import Aborted, ConfigurationError, InputError, NotFound
from org_link.models import Configuration

logger = logging.getLogger(__name__)

TOKEN_KEY = 'APIToken'
ORGANISATION_KEY = 'Organisation'

DEFAULT_CREDENTIALS_FILE = os.path.join(
    os.path.dirname(os.path.abspath(__file__)), 'org-link.conf'
)


def default_credentials_path() -> str:
    """Credential file path from ORG_LINK_CREDENTIALS, else beside the package."""
    return os.getenv('ORG_LINK_CREDENTIALS', DEFAULT_CREDENTIALS_FILE)


class ConfigStore:
    """Loads, persists and replaces the credential file."""

    def __init__(self, path: Optional[str] = None):
        self.path = path or default_credentials_path()
        self.lock_path = self.path + '.lock'

    def exists(self) -> bool:
        return os.path.isfile(self.path)

    def load(self) -> Configuration:
        """
        Read the credential file.

        Returns:
            Parsed Configuration

        Raises:
            NotFound: If the credential file does not exist
            ConfigurationError: If a key is missing or has an empty value
        """
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                content = f.read()
        except FileNotFoundError:
            raise NotFound(f"Credential file not found: {self.path}")

        values = self._parse(content)

        missing = [key for key in (TOKEN_KEY, ORGANISATION_KEY) if not values.get(key)]
        if missing:
            raise ConfigurationError(
                f"Credential file {self.path} is missing values for: {', '.join(missing)}"
            )

        logger.debug(f"Credential file loaded from {self.path}")
        return Configuration(credential=values[TOKEN_KEY], organisation_id=values[ORGANISATION_KEY])

    def _parse(self, content: str) -> Dict[str, str]:
        values = {}
        # only '\n' ends a line; other separators str.splitlines() honours are value data
        for line in content.split('\n'):
            if line.endswith('\r'):
                line = line[:-1]
            if not line.strip():
                continue
            key, sep, value = line.partition(':')
            if not sep:
                logger.debug(f"Ignoring credential file line without a delimiter in {self.path}")
                continue
            key = key.strip()
            if key not in (TOKEN_KEY, ORGANISATION_KEY):
                logger.debug(f"Ignoring unknown credential file key '{key}'")
                continue
            values[key] = value
        return values

    def persist(self, config: Configuration) -> None:
        """
        Write the configuration to disk atomically.

        The content goes to a temporary file in the same directory which is
        then renamed over the credential file, so readers never observe a
        partial write.

        Raises:
            InputError: If a field is empty or contains a line break
        """
        self._validate(config)

        content = f"{TOKEN_KEY}:{config.credential}\n{ORGANISATION_KEY}:{config.organisation_id}\n"
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(prefix='.org-link-', suffix='.tmp', dir=directory)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

        logger.info(f"Configuration for organisation '{config.organisation_id}' saved to {self.path}")

    def _validate(self, config: Configuration):
        for name, value in (('credential', config.credential), ('organisation', config.organisation_id)):
            if not value:
                raise InputError(f"The {name} must not be empty")
            if '\n' in value or '\r' in value:
                raise InputError(f"The {name} must not contain line breaks")

    def init_interactive(self, prompt: Callable[[str], str] = input,
                         secret_prompt: Callable[[str], str] = getpass.getpass) -> Configuration:
        """
        Prompt for the credential and organisation, persist and return them.

        Args:
            prompt: Callable used for visible input
            secret_prompt: Callable used for the API token

        Returns:
            The persisted Configuration

        Raises:
            InputError: If an answer is empty
            ConfigurationError: If another process holds the lock
        """
        credential = secret_prompt('API token: ').strip()
        organisation_id = prompt('Organisation: ').strip()

        config = Configuration(credential=credential, organisation_id=organisation_id)
        self._validate(config)
        self._acquire_lock()
        try:
            self.persist(config)
        finally:
            self._release_lock()
        return config

    def replace(self, new_config: Configuration, confirm: bool = False) -> Configuration:
        """
        Replace the stored configuration.

        Args:
            new_config: Configuration to store
            confirm: Must be True to overwrite an existing configuration

        Returns:
            The stored Configuration

        Raises:
            Aborted: If a configuration exists and confirm is False
            ConfigurationError: If another process holds the lock
        """
        self._validate(new_config)
        self._acquire_lock()
        try:
            if self.exists() and not confirm:
                logger.warning(f"Refusing to overwrite existing configuration at {self.path} without confirmation")
                raise Aborted("A configuration already exists; confirmation is required to replace it")
            self.persist(new_config)
            return new_config
        finally:
            self._release_lock()

    def _acquire_lock(self):
        directory = os.path.dirname(os.path.abspath(self.lock_path))
        os.makedirs(directory, exist_ok=True)
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
        except FileExistsError:
            raise ConfigurationError(
                f"Credential file is locked by another process (remove {self.lock_path} if stale)"
            )
        with os.fdopen(fd, 'w') as f:
            f.write(str(os.getpid()))

    def _release_lock(self):
        try:
            os.remove(self.lock_path)
        except FileNotFoundError:
            logger.warning(f"Lock file {self.lock_path} disappeared before release")
