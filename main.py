#!/usr/bin/env python3
"""
POS Device Proxy - receipt printer and card scanner bridge with a local control API
"""

import json
import logging
from http.server import ThreadingHTTPServer, BaseHTTPRequestHandler

from device_proxy.agent import DeviceProxyAgent
from device_proxy.config import load_config
from device_proxy.exceptions import AuthenticationError
from device_proxy.logging_config import setup_logging, set_error_alert_callback


logger = logging.getLogger(__name__)


class Handler(BaseHTTPRequestHandler):
    """JSON control endpoints; the agent hangs off the server instance"""

    @property
    def agent(self) -> DeviceProxyAgent:
        return self.server.agent

    def _send_json(self, status: int, body: dict):
        data = json.dumps(body).encode()
        self.send_response(status)
        self.send_header('Content-type', 'application/json')
        self.send_header('Content-Length', str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def _read_json(self) -> dict:
        length = int(self.headers.get('Content-Length') or 0)
        if not length:
            return {}
        try:
            body = json.loads(self.rfile.read(length))
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    def do_GET(self):
        if self.path == '/status':
            self._send_json(200, self.agent.get_status())
        elif self.path == '/auth-status':
            self._send_json(200, self.agent.get_auth_status())
        else:
            self._send_json(404, {'success': False, 'error': 'Not found'})

    def do_POST(self):
        if self.path == '/authenticate':
            body = self._read_json()
            try:
                result = self.agent.authenticate(body.get('auth_code'), body.get('server_host'))
            except AuthenticationError as e:
                self._send_json(e.status_code or 500, {'success': False, 'error': str(e)})
                return
            self._send_json(200, result)
        elif self.path == '/reconnect':
            result = self.agent.reconnect()
            if result.get('error') == 'Not authenticated':
                self._send_json(400, result)
            else:
                self._send_json(200 if 'message' in result else 500, result)
        elif self.path == '/disconnect':
            self._send_json(200, self.agent.disconnect())
        elif self.path == '/test-print':
            result = self.agent.test_print()
            if result['success']:
                self._send_json(200, result)
            else:
                self._send_json(400 if result['error'] == 'Printer not ready' else 500, result)
        else:
            self._send_json(404, {'success': False, 'error': 'Not found'})

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)


def main():
    config = load_config()
    setup_logging(config.get('log_path'), level=config.get('log_level', 'INFO'))

    agent = DeviceProxyAgent(config)
    set_error_alert_callback(agent.record_alert)
    agent.start()

    port = config['http_port']
    server = ThreadingHTTPServer(('', port), Handler)
    server.agent = agent

    print("=" * 50)
    print("  POS Device Proxy")
    print("=" * 50)
    print(f"Control API: http://localhost:{port}")
    print(f"Control server: {config['server_url']}")
    print("=" * 50)
    print("Press Ctrl+C to stop")

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nStopping...")
    finally:
        server.server_close()
        agent.stop()


if __name__ == '__main__':
    main()
