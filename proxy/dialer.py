"""
目标连接模块 - 建立到 CONNECT 目标的出站 TCP 连接

默认情况下任何连接失败（解析失败或非法主机名、拒绝、不可达、超时）都映射为
GENERAL_SOCKS_SERVER_FAILURE；开启 detailed 后按失败原因细分为
CONNECTION_REFUSED / NETWORK_UNREACHABLE / HOST_UNREACHABLE / TTL_EXPIRED。
"""

import asyncio
import errno
import logging
import socket
from typing import Optional, Tuple

from protocol import DialFailure, ReplyStatus

logger = logging.getLogger('socks5-proxy-dialer')


def classify_dial_error(exc: BaseException) -> ReplyStatus:
    """
    将连接异常映射为应答状态

    Args:
        exc: open_connection 抛出的异常

    Returns:
        ReplyStatus: 最贴近失败原因的应答状态
    """
    if isinstance(exc, ConnectionRefusedError):
        return ReplyStatus.CONNECTION_REFUSED
    if isinstance(exc, socket.gaierror):
        return ReplyStatus.HOST_UNREACHABLE
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ReplyStatus.TTL_EXPIRED
    if isinstance(exc, OSError):
        if exc.errno == errno.ENETUNREACH:
            return ReplyStatus.NETWORK_UNREACHABLE
        if exc.errno == errno.EHOSTUNREACH:
            return ReplyStatus.HOST_UNREACHABLE
        if exc.errno == errno.ECONNREFUSED:
            return ReplyStatus.CONNECTION_REFUSED
    return ReplyStatus.GENERAL_SOCKS_SERVER_FAILURE


async def dial_target(host: str, port: int, timeout: Optional[float] = None,
                      detailed: bool = False) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """
    建立到目标主机的 TCP 连接

    Args:
        host: 目标主机名或 IPv4 地址
        port: 目标端口
        timeout: 连接超时（秒），None 表示使用系统默认
        detailed: 是否细分失败原因

    Returns:
        tuple: (reader, writer)

    Raises:
        DialFailure: 连接失败，status 为需要回复给客户端的应答状态
    """
    if not host:
        logger.info(f"目标主机为空: port={port}")
        raise DialFailure(ReplyStatus.GENERAL_SOCKS_SERVER_FAILURE, "目标主机为空")

    try:
        connect = asyncio.open_connection(host, port)
        if timeout is None:
            return await connect
        return await asyncio.wait_for(connect, timeout=timeout)
    except (OSError, asyncio.TimeoutError, UnicodeError, ValueError) as e:
        # 域名中含 NUL 等字符时解析器抛出 ValueError
        status = classify_dial_error(e) if detailed else ReplyStatus.GENERAL_SOCKS_SERVER_FAILURE
        reason = f"{type(e).__name__}: {e}"
        logger.info(f"连接目标失败: {host}:{port}, {reason}, 应答={status.name}")
        raise DialFailure(status, reason)
