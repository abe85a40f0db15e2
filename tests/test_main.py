# Tests for the local HTTP control endpoints

import threading
import pytest
import requests
from http.server import ThreadingHTTPServer
from unittest.mock import MagicMock

from main import Handler
from device_proxy.exceptions import AuthenticationError


@pytest.fixture
def control_api():
    agent = MagicMock()
    server = ThreadingHTTPServer(('127.0.0.1', 0), Handler)
    server.agent = agent
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield agent, f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()


class TestControlApi:
    """Test routing and status codes of the control API"""

    def test_status(self, control_api):
        agent, base = control_api
        agent.get_status.return_value = {'connected': True}

        response = requests.get(f"{base}/status", timeout=5)

        assert response.status_code == 200
        assert response.json() == {'connected': True}

    def test_authenticate(self, control_api):
        agent, base = control_api
        agent.authenticate.return_value = {'success': True, 'device_id': '3'}

        response = requests.post(f"{base}/authenticate",
                                 json={'auth_code': '123456', 'server_host': 'http://10.0.0.2:4001'},
                                 timeout=5)

        assert response.status_code == 200
        agent.authenticate.assert_called_once_with('123456', 'http://10.0.0.2:4001')

    def test_authenticate_rejected(self, control_api):
        agent, base = control_api
        agent.authenticate.side_effect = AuthenticationError('Invalid or expired authorization code',
                                                             status_code=401)

        response = requests.post(f"{base}/authenticate", json={'auth_code': '000000'}, timeout=5)

        assert response.status_code == 401
        assert response.json() == {'success': False,
                                   'error': 'Invalid or expired authorization code'}

    def test_reconnect_not_authenticated(self, control_api):
        agent, base = control_api
        agent.reconnect.return_value = {'success': False, 'error': 'Not authenticated'}

        response = requests.post(f"{base}/reconnect", timeout=5)

        assert response.status_code == 400

    def test_test_print_not_ready(self, control_api):
        agent, base = control_api
        agent.test_print.return_value = {'success': False, 'error': 'Printer not ready'}

        response = requests.post(f"{base}/test-print", timeout=5)

        assert response.status_code == 400

    def test_unknown_route(self, control_api):
        _, base = control_api

        assert requests.get(f"{base}/nope", timeout=5).status_code == 404
        assert requests.post(f"{base}/nope", timeout=5).status_code == 404
