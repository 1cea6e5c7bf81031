import json

import pytest

from pricecheck.server.framing import LineFramer


class TestLineFramer:
    """Test suite for newline framing of the stdio byte stream."""

    def test_complete_lines(self):
        framer = LineFramer()
        assert framer.feed(b'{"a":1}\n{"b":2}\n') == [b'{"a":1}', b'{"b":2}']
        assert framer.pending == b""

    def test_partial_line_is_kept(self):
        framer = LineFramer()
        assert framer.feed(b'{"jsonrpc":"2.0",') == []
        assert framer.pending == b'{"jsonrpc":"2.0",'
        assert framer.feed(b'"method":"ping"}\n') == [b'{"jsonrpc":"2.0","method":"ping"}']

    def test_blank_lines_skipped(self):
        framer = LineFramer()
        assert framer.feed(b"\n  \n{}\n") == [b"{}"]

    def test_crlf_stripped(self):
        framer = LineFramer()
        assert framer.feed(b"{}\r\n") == [b"{}"]

    @pytest.mark.parametrize("chunk_size", [1, 2, 3, 7, 64])
    def test_any_chunking_yields_same_messages(self, chunk_size):
        """Splitting the stream anywhere, even mid-token or mid-character, changes nothing."""
        messages = [
            {"jsonrpc": "2.0", "id": 1, "method": "tools/list"},
            {"jsonrpc": "2.0", "id": 2, "method": "tools/call", "params": {"name": "x", "arguments": {"city": "Zürich"}}},
            {"jsonrpc": "2.0", "method": "notifications/initialized"},
        ]
        stream = b"".join(json.dumps(m, ensure_ascii=False).encode("utf-8") + b"\n" for m in messages)

        framer = LineFramer()
        lines = []
        for start in range(0, len(stream), chunk_size):
            lines.extend(framer.feed(stream[start:start + chunk_size]))

        assert [json.loads(line) for line in lines] == messages
        assert framer.pending == b""
