# Auth Client - REST client for device authentication
# Exchanges a 6-digit authorization code for a device session

import logging
import requests
from typing import Optional

from .exceptions import AuthenticationError
from .session import Session


logger = logging.getLogger(__name__)


class AuthClient:
    """Talks to the control server's device-proxy auth endpoint"""

    AUTH_PATH = '/api/device-proxy/authenticate'

    def __init__(self, base_url: str, timeout: int = 30, auth_path: str = AUTH_PATH):
        self.base_url = base_url.rstrip('/')
        self.auth_path = auth_path if auth_path.startswith('/') else '/' + auth_path
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({
            'Content-Type': 'application/json',
            'User-Agent': 'POS-Device-Proxy/1.0'
        })

    def authenticate(self, auth_code: str, server_url: Optional[str] = None) -> Session:
        """Authenticate with a 6-digit code; returns the new Session"""
        code = str(auth_code or '').strip()
        if len(code) != 6 or not code.isdigit():
            raise AuthenticationError('Authorization code must be 6 digits long', status_code=400)

        base_url = (server_url or self.base_url).rstrip('/')
        endpoint = f"{base_url}{self.auth_path}"
        logger.info(f"Attempting authentication with server {base_url}")

        try:
            response = self.session.post(endpoint, json={'auth_code': code}, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            logger.error("Authentication timed out")
            raise AuthenticationError('Connection to server timed out') from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Authentication request failed: {e}")
            raise AuthenticationError('Connection to server failed') from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code != 200:
            error = data.get('error') if isinstance(data, dict) else None
            logger.error(f"Authentication rejected ({response.status_code}): {error}")
            raise AuthenticationError(error or 'Authentication failed',
                                      status_code=response.status_code)

        if not isinstance(data, dict) or not data.get('success'):
            raise AuthenticationError('Invalid or expired authorization code', status_code=401)

        if not data.get('token') or not data.get('device_id'):
            raise AuthenticationError('Authentication response is missing credentials',
                                      status_code=502)

        self.base_url = base_url
        session = Session(
            auth_token=data['token'],
            device_id=str(data['device_id']),
            device_name=data.get('name'),
            server_url=base_url,
        )
        logger.info(f"Authentication successful. Device: {session.device_name} (ID: {session.device_id})")
        return session
