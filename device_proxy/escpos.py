# ESC/POS job builder for the POS Device Proxy
# Turns receipt text into printer byte streams

import re
import html
from datetime import datetime
from typing import Dict, Any, Optional


# ESC/POS command constants
ESC = b'\x1b'
GS = b'\x1d'
LF = b'\x0a'

CMD_INITIALIZE = ESC + b'@'  # Initialize printer
CMD_CUT = GS + b'V' + b'\x00'  # Full cut
CMD_FEED = LF

ALIGNMENTS = {
    'lt': ESC + b'a\x00',
    'ct': ESC + b'a\x01',
    'rt': ESC + b'a\x02',
}

DEFAULT_ENCODING = 'cp1252'

_DROP_BLOCKS = re.compile(r'<(head|style|script)\b.*?</\1\s*>', re.IGNORECASE | re.DOTALL)
_LINE_BREAKS = re.compile(r'<br\s*/?>|</(div|p|tr|li|h[1-6])\s*>', re.IGNORECASE)
_TAGS = re.compile(r'<[^>]+>')
_BLANK_RUNS = re.compile(r'\n{3,}')


def size_command(width: int = 0, height: int = 0) -> bytes:
    """GS ! n - character size multiplier (0-7 each way)"""
    width = max(0, min(int(width), 7))
    height = max(0, min(int(height), 7))
    return GS + b'!' + bytes([(width << 4) | height])


def html_to_text(markup: str) -> str:
    """Plain text fallback for an HTML receipt (no layout, no images)"""
    text = _DROP_BLOCKS.sub('', markup or '')
    text = _LINE_BREAKS.sub('\n', text)
    text = html.unescape(_TAGS.sub('', text))
    lines = [line.strip() for line in text.splitlines()]
    return _BLANK_RUNS.sub('\n\n', '\n'.join(lines)).strip('\n')


def build_text_job(text: str, options: Optional[Dict[str, Any]] = None,
                   encoding: str = DEFAULT_ENCODING, feed_lines: int = 3) -> bytes:
    """Initialize, print ``text`` with the given align/size, feed and cut"""
    options = options or {}
    align = ALIGNMENTS.get(options.get('align', 'ct'), ALIGNMENTS['ct'])

    job = bytearray(CMD_INITIALIZE)
    job += align
    job += size_command(options.get('width', 0), options.get('height', 0))
    job += text.replace('\r\n', '\n').encode(encoding, errors='replace')
    if not text.endswith('\n'):
        job += LF
    job += LF * feed_lines
    job += CMD_CUT
    return bytes(job)


def generate_test_receipt(session, device_status: Dict[str, Any], connected: bool) -> str:
    """HTML test slip showing device identity and device/connection health"""
    now = datetime.now()
    printer_ok = device_status.get('printer', {}).get('ready')
    scanner_ok = device_status.get('scanner', {}).get('ready')
    device_name = html.escape(str(getattr(session, 'device_name', None) or 'Unknown'))
    device_id = html.escape(str(getattr(session, 'device_id', None) or 'Unknown'))

    return f"""<!DOCTYPE html>
<html>
<head>
<style>
    body {{ font-family: monospace; width: 58mm; margin: 0; padding: 10px; font-size: 12px; }}
    .center {{ text-align: center; }}
    .line {{ border-top: 1px dashed #000; margin: 5px 0; }}
</style>
</head>
<body>
<div class="center"><b>DEVICE PROXY TEST</b></div>
<div class="line"></div>
<div>Date: {now.strftime('%Y-%m-%d')}</div>
<div>Time: {now.strftime('%H:%M:%S')}</div>
<div>Device: {device_name}</div>
<div>Device ID: {device_id}</div>
<div class="line"></div>
<div class="center">Printer: {'OK' if printer_ok else 'N/A'}<br>Scanner: {'OK' if scanner_ok else 'N/A'}<br>Connection: {'OK' if connected else 'N/A'}</div>
<div class="line"></div>
<div class="center">Test completed successfully</div>
</body>
</html>
"""
