"""
Directory client for the linkage attribute.

This module connects to an LDAP / Active Directory server and reads or writes
the single attribute that stores a user's organisation username.
"""

import logging
import ssl
from typing import Dict, List, Any, Optional
from ldap3 import Server, Connection, SUBTREE, ALL, Tls, MODIFY_REPLACE
from ldap3.core.exceptions import (
    LDAPException, LDAPSocketOpenError, LDAPBindError,
    LDAPResponseTimeoutError, LDAPSocketReceiveError,
)
from ldap3.utils.conv import escape_filter_chars

from org_link.config import validate_ldap_settings
from org_link.errors import NotFound, Timeout, TransportError

logger = logging.getLogger(__name__)


class DirectoryConnectionError(TransportError):
    """Raised when the directory connection or bind fails."""
    pass


class DirectoryQueryError(TransportError):
    """Raised when a directory search or modification fails."""
    pass


class DirectoryAttributeClient:
    """
    Reads and writes the linkage attribute of directory user records.

    Users are located by their identity attribute (sAMAccountName by default).
    Every call is a live round trip to the directory; nothing is cached.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize directory client with configuration.

        Args:
            config: The 'ldap' settings section
        """
        validate_ldap_settings(config)

        self.config = config
        self.server_url = config['server_url']
        self.bind_dn = config['bind_dn']
        self.bind_password = config['bind_password']
        self.user_base_dn = config.get('user_base_dn', '')
        self.user_filter = config.get('user_filter', '(objectClass=person)')
        self.identity_attribute = config.get('identity_attribute', 'sAMAccountName')
        self.link_attribute = config.get('link_attribute', 'info')

        # SSL/TLS configuration
        self.use_ssl = config.get('use_ssl', self.server_url.lower().startswith('ldaps://'))
        self.start_tls = config.get('start_tls', False)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')

        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 10)

        self.server = None
        self.connection = None
        self._connected = False

    def connect(self) -> bool:
        """
        Open and bind the directory connection.

        Returns:
            True if connection successful

        Raises:
            DirectoryConnectionError: If the connection or bind fails
            Timeout: If the server does not answer in time
        """
        if self._connected:
            return True

        try:
            self.server = Server(
                self.server_url,
                use_ssl=self.use_ssl,
                tls=self._create_tls_config(),
                get_info=ALL,
                connect_timeout=self.connection_timeout
            )
        except LDAPException as e:
            raise DirectoryConnectionError(f"Failed to create LDAP server: {e}") from e

        try:
            self.connection = Connection(
                self.server,
                user=self.bind_dn,
                password=self.bind_password,
                auto_bind=False,
                receive_timeout=self.receive_timeout
            )

            if not self.connection.open():
                raise DirectoryConnectionError(f"Failed to open connection: {self.connection.result}")

            if self.start_tls and not self.use_ssl:
                if not self.connection.start_tls():
                    raise DirectoryConnectionError(f"Failed to start TLS: {self.connection.result}")
                logger.debug("StartTLS negotiation successful")

            if not self.connection.bind():
                raise DirectoryConnectionError(f"Bind failed: {self.connection.result}")

        except DirectoryConnectionError:
            self._discard_connection()
            raise
        except (LDAPResponseTimeoutError, LDAPSocketReceiveError) as e:
            self._discard_connection()
            raise Timeout(f"Directory server {self.server_url} timed out: {e}") from e
        except (LDAPSocketOpenError, LDAPBindError) as e:
            self._discard_connection()
            raise DirectoryConnectionError(f"Failed to connect to {self.server_url}: {e}") from e
        except LDAPException as e:
            self._discard_connection()
            raise DirectoryConnectionError(f"LDAP error connecting to {self.server_url}: {e}") from e

        self._connected = True
        logger.info(f"Connected and bound to directory server {self.server_url}")
        return True

    def _discard_connection(self):
        if self.connection:
            try:
                self.connection.unbind()
            except LDAPException as e:
                logger.debug(f"Ignoring error while discarding failed connection: {e}")
            self.connection = None

    def _create_tls_config(self) -> Optional[Tls]:
        """
        Create TLS configuration for the connection.

        Returns:
            Tls configuration object or None if not needed
        """
        if not (self.use_ssl or self.start_tls):
            return None

        tls_config = {}

        if not self.verify_ssl:
            tls_config['validate'] = ssl.CERT_NONE
            logger.warning("SSL certificate verification disabled for directory connection")
        else:
            tls_config['validate'] = ssl.CERT_REQUIRED

        if self.ca_cert_file:
            tls_config['ca_certs_file'] = self.ca_cert_file
            logger.debug(f"Using CA certificate file: {self.ca_cert_file}")

        try:
            return Tls(**tls_config)
        except LDAPException as e:
            raise DirectoryConnectionError(f"Failed to create TLS configuration: {e}") from e

    def disconnect(self):
        """Close directory connection."""
        if self.connection and self._connected:
            try:
                self.connection.unbind()
                logger.debug("Directory connection closed")
            except LDAPException as e:
                logger.warning(f"Error closing directory connection: {e}")
            finally:
                self._connected = False
                self.connection = None

    def get_external_id(self, internal_id: str) -> Optional[str]:
        """
        Read the linkage attribute of a directory user.

        Args:
            internal_id: Value of the identity attribute (account name)

        Returns:
            The stored organisation username, or None if the attribute is empty

        Raises:
            NotFound: If no such user exists
        """
        entry = self._find_user(internal_id)
        values = entry.entry_attributes_as_dict.get(self.link_attribute) or []
        value = values[0] if values else None
        if isinstance(value, bytes):
            value = value.decode('utf-8')
        if value is not None:
            value = value.strip()
        return value or None

    def set_external_id(self, internal_id: str, external_id: str) -> None:
        """
        Overwrite the linkage attribute of a directory user.

        Raises:
            NotFound: If no such user exists
            DirectoryQueryError: If the modification is rejected
        """
        entry = self._find_user(internal_id)
        self._modify(entry.entry_dn, [external_id])
        logger.info(f"Set {self.link_attribute}='{external_id}' on directory user '{internal_id}'")

    def clear_external_id(self, internal_id: str) -> None:
        """Remove every value of the linkage attribute of a directory user."""
        entry = self._find_user(internal_id)
        self._modify(entry.entry_dn, [])
        logger.info(f"Cleared {self.link_attribute} on directory user '{internal_id}'")

    def find_internal_ids(self, external_id: str) -> List[str]:
        """
        Find directory users whose linkage attribute holds external_id.

        Returns:
            Identity attribute values of the matching users
        """
        search_filter = f"(&{self.user_filter}({self.link_attribute}={escape_filter_chars(external_id)}))"
        entries = self._search(search_filter)

        internal_ids = []
        for entry in entries:
            values = entry.entry_attributes_as_dict.get(self.identity_attribute) or []
            if values:
                internal_ids.append(str(values[0]))
        return internal_ids

    def _find_user(self, internal_id: str):
        search_filter = f"(&{self.user_filter}({self.identity_attribute}={escape_filter_chars(internal_id)}))"
        entries = self._search(search_filter)

        if not entries:
            raise NotFound(f"Directory user '{internal_id}' not found")
        if len(entries) > 1:
            logger.warning(f"Multiple directory entries match '{internal_id}', using {entries[0].entry_dn}")
        return entries[0]

    def _search(self, search_filter: str) -> list:
        self.connect()
        search_base = self._get_domain_base()
        logger.debug(f"Searching with filter: {search_filter} in base: {search_base}")

        try:
            success = self.connection.search(
                search_base=search_base,
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=[self.identity_attribute, self.link_attribute]
            )
        except (LDAPResponseTimeoutError, LDAPSocketReceiveError) as e:
            raise Timeout(f"Directory search timed out: {e}") from e
        except LDAPException as e:
            raise DirectoryQueryError(f"LDAP query failed: {e}") from e

        if not success:
            result = self.connection.result or {}
            # noSuchObject (32) is an empty result, not a failure
            if result.get('result') in (0, 32):
                return []
            raise DirectoryQueryError(f"Search failed: {result.get('description', result)}")

        return list(self.connection.entries)

    def _modify(self, dn: str, values: List[str]):
        self.connect()
        try:
            success = self.connection.modify(dn, {self.link_attribute: [(MODIFY_REPLACE, values)]})
        except (LDAPResponseTimeoutError, LDAPSocketReceiveError) as e:
            raise Timeout(f"Directory modification timed out: {e}") from e
        except LDAPException as e:
            raise DirectoryQueryError(f"LDAP modify failed for {dn}: {e}") from e

        if not success:
            result = self.connection.result or {}
            raise DirectoryQueryError(
                f"Failed to modify {self.link_attribute} on {dn}: {result.get('description', result)}"
            )

    def _get_domain_base(self) -> str:
        """Extract domain base DN from bind DN or server info."""
        if self.user_base_dn:
            return self.user_base_dn

        if 'DC=' in self.bind_dn.upper():
            parts = self.bind_dn.split(',')
            dc_parts = [part.strip() for part in parts if part.strip().upper().startswith('DC=')]
            if dc_parts:
                return ','.join(dc_parts)

        if self.server and self.server.info and self.server.info.naming_contexts:
            return self.server.info.naming_contexts[0]

        raise DirectoryQueryError("Cannot determine domain base DN")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()
