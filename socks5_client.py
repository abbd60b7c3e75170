"""Blocking SOCKS5 client used by the integration tests."""

import socket
import struct
from typing import Tuple


def recv_exact(sock: socket.socket, n: int) -> bytes:
    """Read exactly n bytes or raise ConnectionError if the peer closes first."""
    data = bytearray()
    while len(data) < n:
        chunk = sock.recv(n - len(data))
        if not chunk:
            raise ConnectionError(f"closed after {len(data)} of {n} bytes")
        data.extend(chunk)
    return bytes(data)


def recv_until_closed(sock: socket.socket) -> bytes:
    """Read until EOF (or reset) and return everything received."""
    data = bytearray()
    while True:
        try:
            chunk = sock.recv(65536)
        except ConnectionResetError:
            break
        if not chunk:
            break
        data.extend(chunk)
    return bytes(data)


def read_reply(sock: socket.socket) -> Tuple[int, int, str, int]:
    """Read a command reply; returns (rep, atyp, bound_host, bound_port)."""
    ver, rep, rsv, atyp = recv_exact(sock, 4)
    assert ver == 0x05 and rsv == 0x00
    if atyp == 0x03:
        length = recv_exact(sock, 1)[0]
        host = recv_exact(sock, length).decode('ascii')
    elif atyp == 0x01:
        host = socket.inet_ntoa(recv_exact(sock, 4))
    else:
        raise ValueError(f"unexpected ATYP {atyp:#x}")
    port = struct.unpack(">H", recv_exact(sock, 2))[0]
    return rep, atyp, host, port


class Socks5Client:
    """A simple SOCKS5 client for testing."""

    proxy_host: str
    proxy_port: int

    def __init__(self, proxy_host: str, proxy_port: int, timeout: float = 5.0):
        self.proxy_host = proxy_host
        self.proxy_port = proxy_port
        self.timeout = timeout

    def open(self) -> socket.socket:
        sock = socket.create_connection((self.proxy_host, self.proxy_port), timeout=self.timeout)
        sock.settimeout(self.timeout)
        return sock

    def greet(self, methods: bytes = b"\x00") -> socket.socket:
        """Open a connection and complete method negotiation."""
        sock = self.open()
        sock.sendall(bytes([0x05, len(methods)]) + methods)
        assert recv_exact(sock, 2) == b"\x05\x00"
        return sock

    @staticmethod
    def request_bytes(target_host: str, target_port: int, cmd: int = 0x01) -> bytes:
        try:
            addr = socket.inet_aton(target_host)
            request = bytes([0x05, cmd, 0x00, 0x01]) + addr
        except OSError:
            host_bytes = target_host.encode("utf-8")
            request = bytes([0x05, cmd, 0x00, 0x03, len(host_bytes)]) + host_bytes
        return request + struct.pack(">H", target_port)

    def request(self, target_host: str, target_port: int, cmd: int = 0x01) -> Tuple[socket.socket, tuple]:
        """Negotiate and send a request; returns the socket and the parsed reply."""
        sock = self.greet()
        sock.sendall(self.request_bytes(target_host, target_port, cmd))
        return sock, read_reply(sock)

    def connect(self, target_host: str, target_port: int) -> socket.socket:
        """Connect to target through the proxy; returns a socket ready for data."""
        sock, reply = self.request(target_host, target_port)
        if reply[0] != 0x00:
            sock.close()
            raise ConnectionError(f"SOCKS5 connect failed: {reply}")
        return sock
