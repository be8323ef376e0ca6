"""
Organisation membership API client.

This module wraps the three REST operations org-link needs against a
GitHub-style organisation API: list members, invite (create membership) and
remove membership. Nothing is retried; failures surface as TransportError.
"""

import re
import json
import socket
import ssl
import logging
from typing import Dict, Iterator, List, Any, Optional, Tuple, Union
from urllib.parse import urlparse, quote, urlencode
from http.client import HTTPSConnection, HTTPConnection, HTTPException

from org_link import __version__
from org_link.errors import AuthenticationError, ConfigurationError, Timeout, TransportError

logger = logging.getLogger(__name__)

API_VERSION = '2022-11-28'

_NEXT_LINK = re.compile(r'<([^>]+)>\s*;\s*rel="next"')


class OrganisationMembershipClient:
    """
    Client for organisation membership endpoints.

    The API credential is sent as a bearer token header. The connection is
    kept open across the pages of a listing and closed by close_connection().
    """

    def __init__(self, config: Dict[str, Any], credential: str):
        """
        Initialize organisation API client.

        Args:
            config: The 'organisation' settings section
            credential: API token
        """
        self.config = config
        self.base_url = config.get('api_url', 'https://api.github.com')
        self.timeout = config.get('timeout', 30)
        self.page_size = config.get('page_size', 100)
        self.role = config.get('role', 'member')
        self.verify_ssl = config.get('verify_ssl', True)

        self.parsed_url = urlparse(self.base_url)
        if self.parsed_url.scheme not in ('http', 'https') or not self.parsed_url.netloc:
            raise ConfigurationError(f"Invalid organisation API URL: {self.base_url}")
        self.host = self.parsed_url.netloc
        self.base_path = self.parsed_url.path.rstrip('/')

        self.connection = None
        self.ssl_context = None

        self.headers = {
            'Authorization': f"Bearer {credential}",
            'Accept': 'application/vnd.github+json',
            'X-GitHub-Api-Version': API_VERSION,
            'User-Agent': f"org-link/{__version__}",
        }

        self._setup_ssl_context()

    def _setup_ssl_context(self):
        """Set up SSL context based on configuration."""
        if self.parsed_url.scheme != 'https':
            logger.warning(f"Organisation API at {self.base_url} is not using HTTPS")
            return

        if not self.verify_ssl:
            self.ssl_context = ssl._create_unverified_context()
            logger.warning(f"SSL verification disabled for {self.host}")
            return

        self.ssl_context = ssl.create_default_context()

        truststore_file = self.config.get('truststore_file')
        if truststore_file:
            self._load_truststore(truststore_file)

    def _load_truststore(self, truststore_file: str):
        """Load custom CA certificates, e.g. for a self-hosted enterprise server."""
        truststore_type = str(self.config.get('truststore_type', 'PEM')).upper()
        truststore_password = self.config.get('truststore_password')

        try:
            if truststore_type == 'PEM':
                self.ssl_context.load_verify_locations(cafile=truststore_file)

            elif truststore_type == 'PKCS12':
                from cryptography.hazmat.primitives import serialization
                from cryptography.hazmat.primitives.serialization import pkcs12

                with open(truststore_file, 'rb') as f:
                    p12_data = f.read()

                _, certificate, additional_certificates = pkcs12.load_key_and_certificates(
                    p12_data, truststore_password.encode() if truststore_password else None
                )

                ca_certs = []
                if certificate:
                    ca_certs.append(certificate.public_bytes(serialization.Encoding.PEM))
                for cert in (additional_certificates or []):
                    ca_certs.append(cert.public_bytes(serialization.Encoding.PEM))

                if not ca_certs:
                    raise ConfigurationError(f"No certificates found in {truststore_file}")
                self.ssl_context.load_verify_locations(cadata=b'\n'.join(ca_certs).decode('ascii'))

            else:
                raise ConfigurationError(f"Unsupported truststore type '{truststore_type}'")

        except ConfigurationError:
            raise
        except (OSError, ValueError, ssl.SSLError) as e:
            raise ConfigurationError(f"Truststore loading failed for {truststore_file}: {e}") from e

        logger.info(f"Loaded {truststore_type} truststore: {truststore_file}")

    def _get_connection(self) -> Union[HTTPSConnection, HTTPConnection]:
        """Get or create HTTP connection."""
        if self.connection:
            return self.connection

        if self.parsed_url.scheme == 'https':
            self.connection = HTTPSConnection(self.host, context=self.ssl_context, timeout=self.timeout)
        else:
            self.connection = HTTPConnection(self.host, timeout=self.timeout)

        return self.connection

    def _send(self, method: str, path: str, body: Optional[Dict] = None) -> Tuple[Any, Dict[str, str]]:
        """
        Make one HTTP request.

        Args:
            method: HTTP method
            path: Path below the API base path (may include a query string)
            body: JSON body

        Returns:
            Parsed JSON response (None for an empty body) and response headers

        Raises:
            TransportError: If the request fails or returns an error status
        """
        full_path = self.base_path + path

        request_headers = dict(self.headers)
        request_body = None
        if body is not None:
            request_body = json.dumps(body)
            request_headers['Content-Type'] = 'application/json'

        try:
            conn = self._get_connection()
            logger.debug(f"Making {method} request to {self.host}{full_path}")
            conn.request(method, full_path, request_body, request_headers)
            response = conn.getresponse()
            response_data = response.read().decode('utf-8')
            response_headers = {key.lower(): value for key, value in response.getheaders()}
        except socket.timeout as e:
            self.close_connection()
            raise Timeout(f"{method} {full_path} timed out after {self.timeout}s") from e
        except (HTTPException, OSError) as e:
            self.close_connection()
            raise TransportError(f"Connection error to {self.host}: {e}") from e

        logger.debug(f"Response status: {response.status} {response.reason}")

        if response.status >= 400:
            message = self._error_message(response_data) or response.reason
            if response.status == 401:
                raise AuthenticationError(message, status=response.status)
            raise TransportError(message, status=response.status)

        if not response_data:
            return None, response_headers
        try:
            return json.loads(response_data), response_headers
        except json.JSONDecodeError as e:
            raise TransportError(f"Invalid JSON response from {self.host}: {e}", status=response.status) from e

    def _error_message(self, response_data: str) -> Optional[str]:
        try:
            payload = json.loads(response_data)
        except (json.JSONDecodeError, TypeError):
            return response_data.strip() or None
        if isinstance(payload, dict):
            return payload.get('message')
        return None

    def _next_page(self, headers: Dict[str, str]) -> Optional[str]:
        """Path and query of the rel="next" link, if any."""
        match = _NEXT_LINK.search(headers.get('link', ''))
        if not match:
            return None
        parsed = urlparse(match.group(1))
        if parsed.netloc and parsed.netloc != self.host:
            raise TransportError(f"Pagination link points to unexpected host {parsed.netloc}")
        path = parsed.path
        if self.base_path and path.startswith(self.base_path + '/'):
            path = path[len(self.base_path):]
        return path + ('?' + parsed.query if parsed.query else '')

    def _org_path(self, organisation_id: str) -> str:
        return f"/orgs/{quote(organisation_id, safe='')}"

    def iter_members(self, organisation_id: str) -> Iterator[str]:
        """
        Yield member usernames page by page until the listing is exhausted.

        Args:
            organisation_id: Organisation login
        """
        path = f"{self._org_path(organisation_id)}/members?{urlencode({'per_page': self.page_size})}"
        page = 0
        while path:
            page += 1
            data, headers = self._send('GET', path)
            members = data or []
            logger.debug(f"Page {page}: retrieved {len(members)} members of '{organisation_id}'")
            for member in members:
                login = member.get('login') if isinstance(member, dict) else None
                if login:
                    yield login
            path = self._next_page(headers)

    def list_members(self, organisation_id: str) -> List[str]:
        """
        List every member of the organisation.

        Returns:
            Member usernames in the order the service returns them
        """
        members = list(self.iter_members(organisation_id))
        logger.info(f"Retrieved {len(members)} members of organisation '{organisation_id}'")
        return members

    def invite_member(self, organisation_id: str, external_id: str) -> Optional[str]:
        """
        Create or update the membership of a user, inviting them if needed.

        Returns:
            Membership state reported by the service ('pending' or 'active')
        """
        path = f"{self._org_path(organisation_id)}/memberships/{quote(external_id, safe='')}"
        data, _ = self._send('PUT', path, body={'role': self.role})
        state = data.get('state') if isinstance(data, dict) else None
        logger.info(f"Invited '{external_id}' to organisation '{organisation_id}' (state: {state})")
        return state

    def remove_member(self, organisation_id: str, external_id: str) -> None:
        """Remove a user's membership or pending invitation."""
        path = f"{self._org_path(organisation_id)}/memberships/{quote(external_id, safe='')}"
        self._send('DELETE', path)
        logger.info(f"Removed '{external_id}' from organisation '{organisation_id}'")

    def close_connection(self):
        """Close HTTP connection."""
        if self.connection:
            try:
                self.connection.close()
            except OSError as e:
                logger.warning(f"Error closing connection to {self.host}: {e}")
            finally:
                self.connection = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close_connection()
