# Tests for ESC/POS job building, printers and the device manager

import pytest
from unittest.mock import MagicMock

from device_proxy import printer as printer_module
from device_proxy.device_manager import DeviceManager, build_printer, build_scanner
from device_proxy.escpos import (
    html_to_text, build_text_job, generate_test_receipt, size_command,
    CMD_INITIALIZE, CMD_CUT, ALIGNMENTS,
)
from device_proxy.exceptions import PrintError
from device_proxy.printer import NetworkPrinter, MockPrinter
from device_proxy.session import Session


class TestEscpos:
    """Test HTML flattening and job bytes"""

    def test_html_to_text(self):
        markup = ('<html><head><style>b {color: red}</style></head><body>'
                  '<div>Coffee&nbsp;&amp; cake</div><p>Total: <b>4.50</b></p>line<br/>next'
                  '<script>alert(1)</script></body></html>')

        text = html_to_text(markup)

        assert text == 'Coffee\xa0& cake\nTotal: 4.50\nline\nnext'

    def test_job_layout(self):
        job = build_text_job('Hello', {'align': 'lt'})

        assert job.startswith(CMD_INITIALIZE + ALIGNMENTS['lt'])
        assert b'Hello\n\n\n\n' in job
        assert job.endswith(CMD_CUT)

    def test_unknown_align_centers(self):
        job = build_text_job('x', {'align': 'diagonal'})

        assert job[len(CMD_INITIALIZE):len(CMD_INITIALIZE) + 3] == ALIGNMENTS['ct']

    def test_size_clamped(self):
        assert size_command(9, 1) == b'\x1d!\x71'

    def test_test_receipt(self):
        session = Session(auth_token='t', device_id='8', device_name='<Till>')

        receipt = generate_test_receipt(session, {'printer': {'ready': True}}, connected=False)

        assert 'Device ID: 8' in receipt
        assert '&lt;Till&gt;' in receipt
        assert 'Printer: OK' in receipt
        assert 'Connection: N/A' in receipt


class FakeConnection:
    def __init__(self):
        self.data = b''

    def sendall(self, data):
        self.data += data

    def __enter__(self):
        return self

    def __exit__(self, *args):
        return False


class TestNetworkPrinter:
    """Test raw TCP printing against a patched socket"""

    def test_initialize_and_print(self, monkeypatch):
        conn = FakeConnection()
        create = MagicMock(return_value=conn)
        monkeypatch.setattr(printer_module.socket, 'create_connection', create)
        printer = NetworkPrinter('10.0.0.9')

        printer.initialize()
        printer.print_html('<p>Thanks</p>')

        assert printer.is_ready()
        assert printer.get_status() == 'ready'
        create.assert_called_with(('10.0.0.9', 9100), timeout=10)
        assert b'Thanks' in conn.data
        assert conn.data.endswith(CMD_CUT)

    def test_initialize_unreachable(self, monkeypatch):
        monkeypatch.setattr(printer_module.socket, 'create_connection',
                            MagicMock(side_effect=ConnectionRefusedError()))
        printer = NetworkPrinter('10.0.0.9')

        printer.initialize()

        assert not printer.is_ready()
        assert printer.get_status() == 'error'
        with pytest.raises(PrintError):
            printer.print_html('<p>x</p>')

    def test_send_failure_raises_print_error(self, monkeypatch):
        create = MagicMock(return_value=FakeConnection())
        monkeypatch.setattr(printer_module.socket, 'create_connection', create)
        printer = NetworkPrinter('10.0.0.9')
        printer.initialize()
        create.side_effect = OSError('No route to host')

        with pytest.raises(PrintError, match='unreachable'):
            printer.print_text('x')

        assert printer.get_status() == 'error'


class TestMockPrinter:
    """Test the mock printer"""

    def test_records_jobs(self):
        printer = MockPrinter()

        printer.print_html('<p>a</p>', {'align': 'rt'})

        assert printer.get_status() == 'mock_mode'
        assert printer.jobs == [{'html': '<p>a</p>', 'options': {'align': 'rt'}}]

    def test_not_ready(self):
        with pytest.raises(PrintError):
            MockPrinter(ready=False).print_html('x')


class TestDeviceManager:
    """Test device construction and status"""

    def test_default_devices(self):
        devices = DeviceManager({})
        devices.initialize()

        status = devices.get_status()

        assert status['printer'] == {'available': True, 'ready': True, 'status': 'mock_mode'}
        assert status['scanner'] == {'available': True, 'ready': True, 'status': 'mock_mode'}

    def test_status_before_initialize(self):
        status = DeviceManager().get_status()

        assert status['printer']['available'] is False
        assert status['scanner']['status'] == 'not_initialized'

    def test_card_subscription(self):
        devices = DeviceManager({})
        devices.initialize()
        cards = []
        devices.on_card_scanned(cards.append)

        devices.get_scanner().inject(b"4001\r")

        assert [c.card_id for c in cards] == ['4001']

    def test_disconnect(self):
        devices = DeviceManager({})
        devices.initialize()

        devices.disconnect()

        assert not devices.get_printer().is_ready()
        assert not devices.get_scanner().is_ready()

    @pytest.mark.parametrize('config', [{'mode': 'usb'}, {'mode': 'network'}])
    def test_bad_printer_config(self, config):
        with pytest.raises(ValueError):
            build_printer(config)

    @pytest.mark.parametrize('config', [{'mode': 'bluetooth'}, {'mode': 'serial'}])
    def test_bad_scanner_config(self, config):
        with pytest.raises(ValueError):
            build_scanner(config)
