# Device Proxy Agent - wires session, devices and channel together

import logging
import threading
from datetime import datetime
from typing import Optional, Dict, Any

from .auth_client import AuthClient
from .card_scanner import CardReadEvent
from .config import load_config
from .connection_manager import ConnectionSupervisor
from .device_manager import DeviceManager
from .dispatcher import CommandDispatcher
from .escpos import generate_test_receipt
from .exceptions import JoinError, NotAuthenticatedError, PrintError
from .session import SessionStore


logger = logging.getLogger(__name__)


class DeviceProxyAgent:
    """One station: one session, one device set, one channel"""

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 sessions: Optional[SessionStore] = None,
                 devices: Optional[DeviceManager] = None,
                 auth_client: Optional[AuthClient] = None,
                 supervisor: Optional[ConnectionSupervisor] = None):
        self.config = config if config is not None else load_config()
        self.sessions = sessions or SessionStore.from_config(self.config)
        self.devices = devices or DeviceManager(self.config)
        self.auth_client = auth_client or AuthClient(self.config.get('server_url', 'http://localhost:4001'))
        self.supervisor = supervisor or ConnectionSupervisor(self.sessions)
        self.dispatcher = CommandDispatcher(self.devices.get_printer, self.supervisor.send)
        self.supervisor.on_event = self.dispatcher.dispatch
        self.running = False
        self.last_alert: Optional[Dict[str, str]] = None

    def start(self):
        logger.info("POS Device Proxy starting...")
        self.devices.initialize()
        self.devices.on_card_scanned(self._on_card_scanned)
        self.dispatcher.start()
        self.running = True

        if self.sessions.is_authenticated():
            logger.info("Saved credentials found, connecting in background")
            threading.Thread(target=self._auto_connect, daemon=True, name='auto-connect').start()

    def stop(self):
        logger.info("POS Device Proxy stopping...")
        self.supervisor.disconnect()
        self.dispatcher.stop()
        self.devices.disconnect()
        self.running = False

    def _auto_connect(self):
        try:
            self.supervisor.connect_with_retry()
        except (JoinError, NotAuthenticatedError) as e:
            logger.error(f"Automatic connection failed: {e}")

    def _on_card_scanned(self, card: CardReadEvent):
        if not self.supervisor.send_card_scanned(card):
            logger.warning("Card scanned but not connected to server")

    def record_alert(self, message: str, level: str):
        """Error alert callback; keeps the latest ERROR line for the status view"""
        self.last_alert = {'message': message, 'level': level, 'at': datetime.now().isoformat()}

    def authenticate(self, auth_code: str, server_host: Optional[str] = None) -> Dict[str, Any]:
        """Authenticate, replace the session and bring the channel up. Raises AuthenticationError."""
        session = self.auth_client.authenticate(auth_code, server_host)

        self.supervisor.disconnect()
        self.sessions.set(session)

        warning = None
        try:
            connected = self.supervisor.connect_with_retry()
            if not connected:
                warning = 'Channel connection failed - will retry automatically'
        except JoinError as e:
            connected = False
            warning = f'Channel join rejected: {e}'

        return {
            'success': True,
            'message': 'Authenticated successfully',
            'device_id': session.device_id,
            'device_name': session.device_name,
            'websocket_connected': connected,
            'warning': warning,
        }

    def reconnect(self) -> Dict[str, Any]:
        if not self.sessions.is_authenticated():
            return {'success': False, 'error': 'Not authenticated'}
        try:
            connected = self.supervisor.connect_with_retry()
        except (JoinError, NotAuthenticatedError) as e:
            return {'success': False, 'error': str(e)}
        return {
            'success': connected,
            'message': ('Channel reconnected successfully' if connected
                        else 'Channel reconnection failed - automatic retry active'),
        }

    def disconnect(self) -> Dict[str, Any]:
        self.supervisor.disconnect()
        self.sessions.clear()
        logger.info("Disconnected from server and cleared credentials")
        return {'success': True, 'message': 'Disconnected successfully'}

    def test_print(self) -> Dict[str, Any]:
        printer = self.devices.get_printer()
        if printer is None or not printer.is_ready():
            return {'success': False, 'error': 'Printer not ready'}

        html = generate_test_receipt(self.sessions.current(), self.devices.get_status(),
                                     self.supervisor.is_joined())
        try:
            printer.print_html(html)
        except PrintError as e:
            logger.error(f"Test print failed: {e}")
            return {'success': False, 'error': str(e)}
        return {'success': True, 'message': 'Test receipt printed successfully'}

    def get_auth_status(self) -> Dict[str, Any]:
        session_status = self.sessions.get_status()
        return {
            'authenticated': session_status['authenticated'],
            'device_id': session_status['device_id'],
            'device_name': session_status['device_name'],
            'server_host': session_status['server_url'] or self.config.get('server_url'),
            'auto_connected': session_status['auto_connected'],
            'websocket_connected': self.supervisor.is_joined(),
        }

    def get_status(self) -> Dict[str, Any]:
        channel = self.supervisor.get_status()
        status = self.sessions.get_status()
        status.update(self.devices.get_status())
        status.update({
            'connected': channel['joined'],
            'auto_reconnect_active': channel['auto_retry_active'],
            'channel': channel,
            'server_url': status['server_url'] or self.config.get('server_url'),
            'running': self.running,
            'last_alert': self.last_alert,
        })
        return status
