# Tests for the channel envelope codec

import json
import pytest
from device_proxy.protocol import (
    Envelope, encode_envelope, decode_envelope, socket_url, make_ref,
    join_envelope, heartbeat_envelope, JOIN_REF,
)
from device_proxy.exceptions import FrameDecodeError


class TestSocketUrl:
    """Test websocket endpoint derivation"""

    def test_http_becomes_ws(self):
        assert socket_url('http://localhost:4001') == 'ws://localhost:4001/socket/websocket'

    def test_https_becomes_wss(self):
        assert socket_url('https://pos.example.com') == 'wss://pos.example.com/socket/websocket'

    def test_trailing_slash_dropped(self):
        assert socket_url('https://pos.example.com/') == 'wss://pos.example.com/socket/websocket'

    def test_websocket_scheme_kept(self):
        assert socket_url('ws://10.0.0.5:4000') == 'ws://10.0.0.5:4000/socket/websocket'

    @pytest.mark.parametrize('url', ['', 'localhost:4001', 'ftp://host'])
    def test_invalid_urls(self, url):
        with pytest.raises(ValueError):
            socket_url(url)


class TestEnvelopeCodec:
    """Test encode/decode of envelopes"""

    def test_encode(self):
        envelope = Envelope(topic='device:7', event='print_completed',
                            payload={'print_id': 'p1'}, ref='r1')

        data = json.loads(encode_envelope(envelope))

        assert data == {'topic': 'device:7', 'event': 'print_completed',
                        'payload': {'print_id': 'p1'}, 'ref': 'r1'}

    def test_decode_reply(self):
        raw = '{"topic":"device:7","event":"phx_reply","payload":{"status":"ok","response":{}},"ref":"join_ref_1"}'

        envelope = decode_envelope(raw)

        assert envelope.is_reply
        assert envelope.reply_ok
        assert envelope.ref == JOIN_REF

    def test_decode_server_push_with_null_ref(self):
        raw = b'{"topic":"device:7","event":"print_html","payload":{"print_id":"9","html":"<p>x</p>"},"ref":null}'

        envelope = decode_envelope(raw)

        assert envelope.event == 'print_html'
        assert envelope.ref is None
        assert envelope.payload['print_id'] == '9'

    def test_decode_missing_payload_defaults_to_empty(self):
        envelope = decode_envelope('{"topic":"phoenix","event":"heartbeat","ref":"1"}')

        assert envelope.payload == {}

    def test_error_reply_is_not_ok(self):
        envelope = decode_envelope('{"topic":"t","event":"phx_reply","payload":{"status":"error"},"ref":"1"}')

        assert envelope.is_reply
        assert not envelope.reply_ok

    @pytest.mark.parametrize('raw', [
        'not json',
        '[1, 2, 3]',
        '{"event": "x"}',
        '{"topic": "t", "event": "x", "payload": [1]}',
        b'\xff\xfe',
    ])
    def test_decode_rejects_bad_frames(self, raw):
        with pytest.raises(FrameDecodeError):
            decode_envelope(raw)


class TestRefs:
    """Test ref generation"""

    def test_join_uses_fixed_ref(self):
        envelope = join_envelope('42', 'secret')

        assert envelope.topic == 'device:42'
        assert envelope.event == 'phx_join'
        assert envelope.payload == {'token': 'secret'}
        assert envelope.ref == JOIN_REF

    def test_heartbeat_envelope(self):
        envelope = heartbeat_envelope()

        assert envelope.topic == 'phoenix'
        assert envelope.event == 'heartbeat'
        assert envelope.payload == {}
        assert envelope.ref.startswith('hb_')

    def test_refs_are_unique(self):
        refs = {make_ref('card_scanned') for _ in range(500)}

        assert len(refs) == 500
        assert all(ref.startswith('card_scanned_') for ref in refs)
