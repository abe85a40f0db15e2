# Session - device credentials for the POS Device Proxy
# Replaced wholesale on authentication, cleared wholesale on disconnect

import logging
import threading
from dataclasses import dataclass
from typing import Optional, Dict, Any


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    """Credentials of an authenticated device"""
    auth_token: str
    device_id: str
    device_name: Optional[str] = None
    server_url: str = 'http://localhost:4001'

    @property
    def is_valid(self) -> bool:
        return bool(self.auth_token) and bool(self.device_id)


class SessionStore:
    """In-memory session provider shared by the agent and the supervisor"""

    def __init__(self, session: Optional[Session] = None):
        self.lock = threading.Lock()
        self._session = session
        self.from_environment = False

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'SessionStore':
        """Seed credentials from config/env (AUTH_TOKEN, DEVICE_ID, ...) if present"""
        token = config.get('auth_token')
        device_id = config.get('device_id')
        store = cls()
        if token and device_id:
            store.set(Session(
                auth_token=token,
                device_id=str(device_id),
                device_name=config.get('device_name'),
                server_url=config.get('server_host') or config.get('server_url'),
            ))
            store.from_environment = True
            logger.info(f"Loaded saved credentials for device {device_id}")
        return store

    def current(self) -> Optional[Session]:
        with self.lock:
            return self._session

    def set(self, session: Session):
        with self.lock:
            self._session = session

    def clear(self):
        with self.lock:
            self._session = None
            self.from_environment = False

    def is_authenticated(self) -> bool:
        session = self.current()
        return session is not None and session.is_valid

    def get_status(self) -> Dict[str, Any]:
        session = self.current()
        return {
            'authenticated': session is not None and session.is_valid,
            'device_id': session.device_id if session else None,
            'device_name': session.device_name if session else None,
            'server_url': session.server_url if session else None,
            'auth_token': 'present' if session and session.auth_token else 'missing',
            'auto_connected': self.from_environment,
        }
