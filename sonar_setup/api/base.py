"""
Base HTTP client for the server's administrative web API.

This module provides the low-level request handling shared by every API call:
URL construction, HTTP Basic authentication, SSL/truststore handling, JSON parsing
and mapping of non-2xx responses to typed errors.
"""

import json
import ssl
import base64
import logging
from typing import Dict, List, Any, Optional, Sequence, Tuple, Union
from urllib.parse import urlparse, urlencode
from http.client import HTTPSConnection, HTTPConnection, HTTPException

logger = logging.getLogger(__name__)

QueryParams = Sequence[Tuple[str, str]]


class SonarApiError(Exception):
    """Base exception for API errors."""
    pass


class ApiConnectionError(SonarApiError):
    """Raised when the server cannot be reached (DNS, refused, timeout)."""
    pass


class ApiResponseError(SonarApiError):
    """Raised when the server answers with a non-2xx status."""

    def __init__(self, status_code: int, messages: List[str], context: str):
        self.status_code = status_code
        self.messages = messages
        self.context = context
        detail = '; '.join(messages) if messages else 'no error message'
        super().__init__(f"{context} (HTTP {status_code}): {detail}")


class ApiAuthenticationError(ApiResponseError):
    """Raised when the server rejects the credentials (HTTP 401)."""
    pass


class DeserializationError(SonarApiError):
    """Raised when a successful response does not have the expected shape."""
    pass


class Credentials:
    """Username/password pair used for HTTP Basic authentication."""

    def __init__(self, username: str, password: str):
        self.username = username
        self.password = password

    def header(self) -> str:
        token = base64.b64encode(f"{self.username}:{self.password}".encode()).decode()
        return f"Basic {token}"

    def __repr__(self):
        return f"Credentials(username={self.username!r}, password='****')"


class ApiClient:
    """
    HTTP client bound to one server base URL.

    Holds the session credentials; they are only ever replaced through
    use_credentials().
    """

    def __init__(self, base_url: str, credentials: Optional[Credentials] = None,
                 timeout: float = 30, verify_ssl: bool = True,
                 truststore_file: Optional[str] = None, truststore_type: str = 'PEM',
                 truststore_password: Optional[str] = None):
        """
        Initialize API client.

        Args:
            base_url: Server URL; one trailing slash is stripped
            credentials: Initial session credentials (None for anonymous calls)
            timeout: Socket timeout per request in seconds
            verify_ssl: Verify the server certificate on https URLs
            truststore_file: Custom CA bundle (PEM) or PKCS12 truststore
            truststore_type: 'PEM' or 'PKCS12'
            truststore_password: Password of a PKCS12 truststore
        """
        self.base_url = base_url[:-1] if base_url.endswith('/') else base_url
        self.credentials = credentials
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.truststore_file = truststore_file
        self.truststore_type = truststore_type
        self.truststore_password = truststore_password

        self.parsed_url = urlparse(self.base_url)
        if self.parsed_url.scheme not in ('http', 'https') or not self.parsed_url.netloc:
            raise ValueError(f"Invalid server URL: {base_url}")
        self.host = self.parsed_url.netloc
        self.base_path = self.parsed_url.path

        self.connection = None
        self.ssl_context = None
        self._setup_ssl_context()

    def _setup_ssl_context(self):
        """Set up SSL context based on configuration."""
        if self.parsed_url.scheme != 'https':
            return

        if not self.verify_ssl:
            self.ssl_context = ssl._create_unverified_context()
            logger.warning(f"SSL verification disabled for {self.host}")
            return

        self.ssl_context = ssl.create_default_context()

        if self.truststore_file:
            self._load_truststore(self.truststore_file)

    def _load_truststore(self, truststore_file: str):
        """Load custom truststore/CA certificates."""
        truststore_type = self.truststore_type.upper()

        try:
            if truststore_type == 'PEM':
                self.ssl_context.load_verify_locations(cafile=truststore_file)
                logger.info(f"Loaded PEM truststore: {truststore_file}")

            elif truststore_type == 'PKCS12':
                from cryptography.hazmat.primitives import serialization
                from cryptography.hazmat.primitives.serialization import pkcs12

                with open(truststore_file, 'rb') as f:
                    p12_data = f.read()

                password = self.truststore_password.encode() if self.truststore_password else None
                _, certificate, additional_certificates = pkcs12.load_key_and_certificates(p12_data, password)

                ca_certs = []
                if certificate:
                    ca_certs.append(certificate.public_bytes(serialization.Encoding.PEM))
                for cert in (additional_certificates or []):
                    ca_certs.append(cert.public_bytes(serialization.Encoding.PEM))

                if not ca_certs:
                    raise SonarApiError(f"No certificate found in truststore {truststore_file}")

                self.ssl_context.load_verify_locations(cadata=b'\n'.join(ca_certs).decode('ascii'))
                logger.info(f"Loaded PKCS12 truststore: {truststore_file}")

            else:
                raise SonarApiError(f"Unsupported truststore type: {self.truststore_type}")

        except SonarApiError:
            raise
        except Exception as e:
            logger.error(f"Failed to load truststore {truststore_file}: {e}")
            raise SonarApiError(f"Truststore loading failed: {e}")

    def use_credentials(self, credentials: Credentials):
        """Replace the session credentials used by subsequent calls."""
        self.credentials = credentials
        logger.debug(f"Session credentials set for user [{credentials.username}]")

    def build_url(self, path: str, params: Optional[QueryParams] = None) -> str:
        """Build the request target (path plus escaped query) relative to the host."""
        target = self.base_path + path
        if params:
            target += '?' + urlencode(list(params))
        return target

    def _get_connection(self) -> Union[HTTPSConnection, HTTPConnection]:
        """Get or create HTTP connection."""
        if self.connection:
            return self.connection

        if self.parsed_url.scheme == 'https':
            self.connection = HTTPSConnection(self.host, context=self.ssl_context, timeout=self.timeout)
        else:
            self.connection = HTTPConnection(self.host, timeout=self.timeout)

        return self.connection

    def request(self, method: str, path: str, params: Optional[QueryParams] = None,
                context: str = '', credentials: Optional[Credentials] = None,
                anonymous: bool = False, expect_json: bool = True) -> Any:
        """
        Make an HTTP request to the API.

        Args:
            method: HTTP method (GET or POST)
            path: API endpoint path, e.g. '/api/users/search'
            params: Ordered query parameters
            context: Describes the call in error messages
            credentials: Use these instead of the session credentials
            anonymous: Send no Authorization header
            expect_json: Parse the body as JSON (otherwise return it as text)

        Returns:
            Parsed JSON body ({} when empty) or raw text

        Raises:
            ApiConnectionError: On transport failure
            ApiResponseError: On non-2xx status
            DeserializationError: If a 2xx body is not valid JSON
        """
        target = self.build_url(path, params)
        context = context or f"{method} {path}"

        headers = {'Accept': 'application/json'}
        if method == 'POST':
            headers['Content-Type'] = 'application/x-www-form-urlencoded'
            headers['Content-Length'] = '0'

        auth = credentials or self.credentials
        if auth is not None and not anonymous:
            headers['Authorization'] = auth.header()

        # One connection per request; transport failures are never retried here
        try:
            conn = self._get_connection()
            logger.debug(f"Making {method} request to {self.host}{target}")
            conn.request(method, target, None, headers)

            response = conn.getresponse()
            response_data = response.read().decode('utf-8')
        except (OSError, HTTPException) as e:
            raise ApiConnectionError(f"Error while connecting to {self.base_url}: {e}")
        finally:
            self.close_connection()

        logger.debug(f"Response status: {response.status} {response.reason}")

        if not 200 <= response.status < 300:
            messages = self._error_messages(response_data)
            if response.status == 401:
                raise ApiAuthenticationError(response.status, messages, context)
            raise ApiResponseError(response.status, messages, context)

        if not expect_json:
            return response_data

        if not response_data.strip():
            return {}

        try:
            return json.loads(response_data)
        except json.JSONDecodeError as e:
            raise DeserializationError(f"{context}: invalid JSON response: {e}")

    def get(self, path: str, params: Optional[QueryParams] = None, **kwargs) -> Any:
        return self.request('GET', path, params, **kwargs)

    def post(self, path: str, params: Optional[QueryParams] = None, **kwargs) -> Any:
        return self.request('POST', path, params, **kwargs)

    @staticmethod
    def _error_messages(body: str) -> List[str]:
        """Extract the {"errors": [{"msg": ...}]} list from an error body."""
        try:
            data = json.loads(body) if body else {}
        except json.JSONDecodeError:
            return []

        if not isinstance(data, dict):
            return []

        messages = []
        for error in data.get('errors') or []:
            if isinstance(error, dict) and error.get('msg'):
                messages.append(str(error['msg']))
        return messages

    def close_connection(self):
        """Close HTTP connection."""
        if self.connection:
            try:
                self.connection.close()
            except Exception as e:
                logger.warning(f"Error closing connection to {self.host}: {e}")
            finally:
                self.connection = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close_connection()
