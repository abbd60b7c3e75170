"""In-memory stream doubles for exercising protocol coroutines without sockets."""

import asyncio


def make_reader(data: bytes = b'', eof: bool = True) -> asyncio.StreamReader:
    """Return a StreamReader preloaded with ``data``; must be called inside a running loop."""
    reader = asyncio.StreamReader()
    if data:
        reader.feed_data(data)
    if eof:
        reader.feed_eof()
    return reader


class RecordingWriter:
    """Collects everything written to it; mimics the StreamWriter surface the proxy uses."""

    def __init__(self, peername=('127.0.0.1', 50000)):
        self.peername = peername
        self.buffer = bytearray()
        self.closed = False
        self.close_calls = 0

    @property
    def data(self) -> bytes:
        return bytes(self.buffer)

    def write(self, data: bytes):
        if self.closed:
            raise ConnectionResetError("writer is closed")
        self.buffer.extend(data)

    async def drain(self):
        if self.closed:
            raise ConnectionResetError("writer is closed")

    def close(self):
        self.closed = True
        self.close_calls += 1

    async def wait_closed(self):
        pass

    def is_closing(self) -> bool:
        return self.closed

    def get_extra_info(self, name, default=None):
        if name == 'peername':
            return self.peername
        return default
