# Tests for the device proxy agent wiring (auth, print flow, card flow)

import pytest
from unittest.mock import MagicMock

from device_proxy.agent import DeviceProxyAgent
from device_proxy.connection_manager import ConnectionSupervisor
from device_proxy.device_manager import DeviceManager
from device_proxy.exceptions import AuthenticationError, JoinError
from device_proxy.session import Session, SessionStore


class FakeChannel:
    def __init__(self, outcomes, on_event=None, on_disconnect=None):
        self.outcomes = outcomes
        self.on_event = on_event
        self.on_disconnect = on_disconnect
        self.is_joined = False
        self.is_open = False
        self.sent = []

    def connect(self, session):
        outcome = self.outcomes.pop(0) if self.outcomes else 'ok'
        if outcome != 'ok':
            raise outcome
        self.is_joined = self.is_open = True

    def send(self, event, payload):
        self.sent.append((event, payload))
        return True

    def deliver_pending(self):
        pass

    def disconnect(self):
        self.is_joined = self.is_open = False


SESSION = Session(auth_token='tok', device_id='21', device_name='Till 2',
                  server_url='http://localhost:4001')


class TestDeviceProxyAgent:
    """Test the agent end to end against fake channels"""

    def setup_method(self):
        self.outcomes = []
        self.channels = []
        self.sessions = SessionStore()
        self.supervisor = ConnectionSupervisor(self.sessions, channel_factory=self._make_channel,
                                               retry_interval=3600, initial_delay_ms=1)
        self.auth_client = MagicMock()
        self.auth_client.authenticate.return_value = SESSION
        self.agent = DeviceProxyAgent(config={'server_url': 'http://localhost:4001'},
                                      sessions=self.sessions,
                                      devices=DeviceManager({}),
                                      auth_client=self.auth_client,
                                      supervisor=self.supervisor)
        # Inline dispatch keeps the print flow on the test thread
        self.agent.devices.initialize()
        self.agent.devices.on_card_scanned(self.agent._on_card_scanned)

    def teardown_method(self):
        self.agent.stop()

    def _make_channel(self, **kwargs):
        channel = FakeChannel(self.outcomes, **kwargs)
        self.channels.append(channel)
        return channel

    def test_authenticate_connects(self):
        result = self.agent.authenticate('123456')

        self.auth_client.authenticate.assert_called_once_with('123456', None)
        assert result['success'] is True
        assert result['device_id'] == '21'
        assert result['websocket_connected'] is True
        assert result['warning'] is None
        assert self.sessions.current() is SESSION

    def test_authenticate_join_rejected(self):
        self.outcomes.append(JoinError("Channel join failed", response={'status': 'error'}))

        result = self.agent.authenticate('123456')

        assert result['success'] is True
        assert result['websocket_connected'] is False
        assert 'join rejected' in result['warning']
        assert not self.supervisor.auto_retry_active

    def test_authenticate_error_propagates(self):
        self.auth_client.authenticate.side_effect = AuthenticationError('bad code', status_code=401)

        with pytest.raises(AuthenticationError):
            self.agent.authenticate('999999')

        assert self.sessions.current() is None

    def test_print_command_acks_over_channel(self):
        self.agent.authenticate('123456')

        self.channels[0].on_event('print_html', {'print_id': 'p1', 'html': '<p>Receipt</p>'})

        event, ack = self.channels[0].sent[-1]
        assert event == 'print_completed'
        assert ack['print_id'] == 'p1'
        assert ack['status'] == 'success'
        assert self.agent.devices.get_printer().jobs[0]['html'] == '<p>Receipt</p>'

    def test_card_scan_forwarded(self):
        self.agent.authenticate('123456')

        self.agent.devices.get_scanner().inject(b"CARD9001\r")

        event, payload = self.channels[0].sent[-1]
        assert event == 'card_scanned'
        assert payload['card_data']['card_id'] == '9001'
        assert payload['card_data']['format'] == 'prefixed_numeric'

    def test_card_scan_while_offline_is_dropped(self):
        self.agent.devices.get_scanner().inject(b"CARD9001\r")

        assert self.channels == []

    def test_disconnect_clears_session(self):
        self.agent.authenticate('123456')

        result = self.agent.disconnect()

        assert result['success'] is True
        assert not self.sessions.is_authenticated()
        assert not self.channels[0].is_joined
        assert self.agent.get_auth_status()['authenticated'] is False

    def test_reconnect_requires_auth(self):
        assert self.agent.reconnect() == {'success': False, 'error': 'Not authenticated'}

    def test_reconnect(self):
        self.sessions.set(SESSION)

        result = self.agent.reconnect()

        assert result['success'] is True
        assert self.supervisor.is_joined()

    def test_test_print(self):
        self.sessions.set(SESSION)

        result = self.agent.test_print()

        assert result['success'] is True
        assert 'Device ID: 21' in self.agent.devices.get_printer().jobs[0]['html']

    def test_test_print_printer_not_ready(self):
        self.agent.devices.get_printer().ready = False

        assert self.agent.test_print() == {'success': False, 'error': 'Printer not ready'}

    def test_status(self):
        self.agent.authenticate('123456')
        self.agent.record_alert('Printer jammed', 'ERROR')

        status = self.agent.get_status()

        assert status['authenticated'] is True
        assert status['connected'] is True
        assert status['auto_reconnect_active'] is False
        assert status['printer']['ready'] is True
        assert status['channel']['state'] == 'connected'
        assert status['last_alert']['message'] == 'Printer jammed'
