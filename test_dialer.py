"""Target dialer tests."""

import asyncio
import errno
import socket

import pytest

from protocol import DialFailure, ReplyStatus
from proxy.base import close_writer
from proxy.dialer import classify_dial_error, dial_target


def test_refused_dial_reports_general_failure(closed_port: int) -> None:
    with pytest.raises(DialFailure) as info:
        asyncio.run(dial_target("127.0.0.1", closed_port))
    assert info.value.status is ReplyStatus.GENERAL_SOCKS_SERVER_FAILURE


def test_detailed_mode_reports_connection_refused(closed_port: int) -> None:
    with pytest.raises(DialFailure) as info:
        asyncio.run(dial_target("127.0.0.1", closed_port, detailed=True))
    assert info.value.status is ReplyStatus.CONNECTION_REFUSED


def test_empty_host_is_dial_failure() -> None:
    with pytest.raises(DialFailure) as info:
        asyncio.run(dial_target("", 80))
    assert info.value.status is ReplyStatus.GENERAL_SOCKS_SERVER_FAILURE


def test_dial_success(echo_server_addr: tuple[str, int]) -> None:
    async def run():
        reader, writer = await dial_target(*echo_server_addr, timeout=5)
        writer.write(b"ping")
        await writer.drain()
        data = await reader.readexactly(4)
        await close_writer(writer)
        return data

    assert asyncio.run(run()) == b"ping"


@pytest.mark.parametrize("exc, status", [
    (ConnectionRefusedError(), ReplyStatus.CONNECTION_REFUSED),
    (socket.gaierror(socket.EAI_NONAME, "Name or service not known"), ReplyStatus.HOST_UNREACHABLE),
    (asyncio.TimeoutError(), ReplyStatus.TTL_EXPIRED),
    (OSError(errno.ENETUNREACH, "Network is unreachable"), ReplyStatus.NETWORK_UNREACHABLE),
    (OSError(errno.EHOSTUNREACH, "No route to host"), ReplyStatus.HOST_UNREACHABLE),
    (OSError(errno.EACCES, "Permission denied"), ReplyStatus.GENERAL_SOCKS_SERVER_FAILURE),
])
def test_classify_dial_error(exc: BaseException, status: ReplyStatus) -> None:
    assert classify_dial_error(exc) is status


@pytest.mark.parametrize("host", ["local\x00host", "\ufffd\ufffdhost"])
def test_unresolvable_host_name_is_dial_failure(host: str, closed_port: int) -> None:
    with pytest.raises(DialFailure) as info:
        asyncio.run(dial_target(host, closed_port))
    assert info.value.status is ReplyStatus.GENERAL_SOCKS_SERVER_FAILURE
