"""
握手协商模块

读取客户端问候 [VER=0x05][NMETHODS][METHODS...]，选择认证方法并回复
[VER=0x05][METHOD]。

默认模式下服务器总是选择 NO_AUTHENTICATION_REQUIRED，客户端提供的
方法列表只记录到日志；strict 模式下只有客户端提供了 0x00 才接受，
否则回复 0xFF（NO_ACCEPTABLE_METHODS）。
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List

from protocol import (
    SOCKS_VERSION, AuthMethod, ProtocolViolation, describe_method, make_method_reply
)

from .base import read_exactly, send

logger = logging.getLogger('socks5-proxy-handshake')


@dataclass
class Greeting:
    """
    客户端问候

    Attributes:
        version: 协议版本（必为 0x05）
        methods: 客户端提供的认证方法代码列表
    """
    version: int
    methods: List[int]

    @property
    def nmethods(self) -> int:
        return len(self.methods)

    def describe_methods(self) -> str:
        return ", ".join(describe_method(m) for m in self.methods)


async def read_greeting(reader: asyncio.StreamReader) -> Greeting:
    """
    读取客户端问候，恰好消耗 2 + NMETHODS 字节

    Raises:
        ProtocolViolation: VER 不是 0x05 或 NMETHODS 小于 1
        TransportError: 数据不完整时连接关闭
    """
    version, nmethods = await read_exactly(reader, 2)
    if version != SOCKS_VERSION:
        raise ProtocolViolation(f"版本必须是 0x05，收到 0x{version:02X}")
    if nmethods < 1:
        raise ProtocolViolation("方法数量必须大于 0")

    methods = await read_exactly(reader, nmethods)
    return Greeting(version=version, methods=list(methods))


def select_method(methods: List[int], strict: bool = False) -> AuthMethod:
    """
    选择认证方法

    Args:
        methods: 客户端提供的方法列表
        strict: 是否要求列表中包含 NO_AUTHENTICATION_REQUIRED

    Returns:
        AuthMethod: NO_AUTHENTICATION_REQUIRED 或 NO_ACCEPTABLE_METHODS
    """
    if not strict or AuthMethod.NO_AUTHENTICATION_REQUIRED in methods:
        return AuthMethod.NO_AUTHENTICATION_REQUIRED
    return AuthMethod.NO_ACCEPTABLE_METHODS


async def negotiate(reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                    strict: bool = False) -> AuthMethod:
    """
    完成认证方法协商

    协议违规时不发送任何应答，由调用方中止会话。

    Returns:
        AuthMethod: 已发送给客户端的方法；NO_ACCEPTABLE_METHODS 表示会话应结束
    """
    greeting = await read_greeting(reader)
    logger.info(f"version={greeting.version}, methodNum={greeting.nmethods}, "
                f"methods=[{greeting.describe_methods()}]")

    method = select_method(greeting.methods, strict)
    await send(writer, make_method_reply(method))
    if method == AuthMethod.NO_ACCEPTABLE_METHODS:
        logger.info("客户端未提供可接受的认证方法")
    return method
