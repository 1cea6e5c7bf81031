class LineFramer:
    """Splits an incoming byte stream into newline-terminated lines.

    Bytes after the last newline stay buffered until a later chunk completes
    the line, so reads may cut the stream anywhere, including inside a
    multi-byte UTF-8 character.
    """

    def __init__(self):
        self._buffer = bytearray()

    def feed(self, data: bytes) -> list[bytes]:
        self._buffer.extend(data)
        *complete, rest = self._buffer.split(b"\n")
        self._buffer = bytearray(rest)

        lines = []
        for line in complete:
            line = line.rstrip(b"\r")
            if line.strip():
                lines.append(bytes(line))
        return lines

    @property
    def pending(self) -> bytes:
        return bytes(self._buffer)
