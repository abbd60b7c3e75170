"""Session state machine tests with an in-memory client and real targets."""

import asyncio
import struct

import pytest

import proxy.session as session_module
from config import ServerConfig
from fake_streams import RecordingWriter, make_reader
from protocol import ReplyStatus, make_reply
from proxy.relay import RelayOutcome
from proxy.session import SessionState, Socks5Session

BIND_HOST = "proxy.test"
BIND_PORT = 10086
GREETING = b"\x05\x01\x00"


def _connect_request(host: str, port: int, cmd: int = 0x01) -> bytes:
    return bytes([0x05, cmd, 0x00, 0x01]) + bytes(int(p) for p in host.split(".")) + struct.pack(">H", port)


def _run_session(data: bytes, eof: bool = True, **config_overrides):
    config = ServerConfig(host="127.0.0.1", port=0, advertised_host=BIND_HOST, **config_overrides)

    async def run():
        writer = RecordingWriter()
        session = Socks5Session(7, make_reader(data, eof=eof), writer, config, BIND_HOST, BIND_PORT)
        await asyncio.wait_for(session.run(), timeout=10)
        return session, writer

    return asyncio.run(run())


def test_protocol_violation_aborts_without_reply() -> None:
    session, writer = _run_session(b"\x04\x01\x00")
    assert writer.data == b""
    assert writer.closed
    assert session.state is SessionState.CLOSED


def test_unknown_command_gets_command_not_supported() -> None:
    session, writer = _run_session(GREETING + b"\x05\x7f\x00\x01\x7f\x00\x00\x01\x00\x50")
    assert writer.data == b"\x05\x00" + make_reply(ReplyStatus.COMMAND_NOT_SUPPORTED, BIND_HOST, BIND_PORT)
    assert writer.closed


def test_unknown_address_type_gets_address_type_not_supported() -> None:
    _, writer = _run_session(GREETING + b"\x05\x01\x00\x05")
    assert writer.data[2:4] == bytes([0x05, ReplyStatus.ADDRESS_TYPE_NOT_SUPPORTED])


@pytest.mark.parametrize("cmd", [0x02, 0x03])
def test_bind_and_udp_associate_are_rejected_without_dialing(cmd: int, monkeypatch) -> None:
    dialed = []

    async def fake_dial(*args, **kwargs):
        dialed.append(args)
        raise AssertionError("must not dial")

    monkeypatch.setattr(session_module, "dial_target", fake_dial)
    _, writer = _run_session(GREETING + _connect_request("127.0.0.1", 80, cmd=cmd))
    assert writer.data[2:4] == b"\x05\x07"
    assert dialed == []


def test_ipv6_target_is_rejected() -> None:
    _, writer = _run_session(GREETING + b"\x05\x01\x00\x04" + bytes(16) + b"\x00\x50")
    assert writer.data[2:4] == b"\x05\x07"
    assert writer.closed


def test_dial_failure_gets_general_failure(closed_port: int) -> None:
    session, writer = _run_session(GREETING + _connect_request("127.0.0.1", closed_port))
    assert writer.data == b"\x05\x00" + make_reply(
        ReplyStatus.GENERAL_SOCKS_SERVER_FAILURE, BIND_HOST, BIND_PORT
    )
    assert session.relay_stats is None
    assert session.state is SessionState.CLOSED


def test_successful_connect_relays_and_returns_cleanly(echo_server_addr: tuple[str, int], caplog) -> None:
    host, port = echo_server_addr
    session, writer = _run_session(GREETING + _connect_request(host, port) + b"hello")
    success = make_reply(ReplyStatus.SUCCEEDED, BIND_HOST, BIND_PORT)
    assert writer.data[:2 + len(success)] == b"\x05\x00" + success
    assert session.relay_stats.bytes_up == 5
    assert session.relay_stats.outcome is RelayOutcome.CLIENT_CLOSED
    assert session.state is SessionState.CLOSED
    assert not [r for r in caplog.records if r.levelname == "ERROR"]


def test_handshake_deadline_ends_stalled_client() -> None:
    session, writer = _run_session(b"\x05\x02\x00", eof=False, handshake_timeout=0.2)
    assert writer.data == b""
    assert writer.closed
    assert session.state is SessionState.CLOSED


def test_strict_auth_ends_session_after_no_acceptable_reply() -> None:
    session, writer = _run_session(b"\x05\x01\x02", strict_auth=True)
    assert writer.data == b"\x05\xff"
    assert session.state is SessionState.CLOSED


def test_state_never_moves_backwards() -> None:
    async def run():
        config = ServerConfig(advertised_host=BIND_HOST)
        session = Socks5Session(1, make_reader(), RecordingWriter(), config, BIND_HOST, BIND_PORT)
        session._advance(SessionState.RELAYING)
        with pytest.raises(RuntimeError):
            session._advance(SessionState.COMMAND_PENDING)
        await session.close()
        await session.close()
        return session

    session = asyncio.run(run())
    assert session.state is SessionState.CLOSED
    assert session.writer.close_calls == 1
