"""
代理会话模块

本模块定义了 Socks5Session 类，负责处理单个客户端连接从握手到转发结束的
完整生命周期：认证方法协商 -> 命令解析 -> 连接目标 -> 双向转发 -> 关闭。
"""

import asyncio
import logging
import time
from enum import IntEnum
from typing import Awaitable, Optional, TypeVar

from config import ServerConfig
from logger import add_context
from protocol import (
    AuthMethod, Command, DialFailure, ProtocolViolation, ReplyStatus,
    TransportError, UnsupportedRequest, make_reply
)

from .base import close_writer, peer_string, send
from .dialer import dial_target
from .handshake import negotiate
from .relay import Relay, RelayStats
from .request import read_request

logger = logging.getLogger('socks5-proxy-session')

T = TypeVar('T')


class SessionState(IntEnum):
    """会话状态，只能向前推进"""
    NEGOTIATING = 1
    COMMAND_PENDING = 2
    RELAYING = 3
    CLOSED = 4


class Socks5Session:
    """
    SOCKS5 会话类 - 处理单个客户端的代理连接

    工作流程:
    1. 协商认证方法（总是无认证）
    2. 解析命令请求
    3. 拒绝不支持的命令/地址类型
    4. 连接目标并回复应答
    5. 双向转发直到任一端关闭或超时
    6. 关闭所有连接

    会话独占持有客户端和目标两端的连接，run() 返回时两端均已关闭。

    Attributes:
        session_id: 会话编号（单调递增）
        config: 服务器配置
        bind_host: 应答中报告的服务器身份
        bind_port: 应答中报告的监听端口
        state: 当前会话状态
        started_at: 会话开始时间戳
        peer_str: 客户端地址字符串（IP:端口）
        relay_stats: 转发统计（仅在进入转发后设置）
    """

    def __init__(
        self,
        session_id: int,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        config: ServerConfig,
        bind_host: str,
        bind_port: int
    ):
        self.session_id = session_id
        self.reader = reader
        self.writer = writer
        self.config = config
        self.bind_host = bind_host
        self.bind_port = bind_port

        self.state = SessionState.NEGOTIATING
        self.started_at = time.time()
        self.peer_str = peer_string(writer)
        self.relay_stats: Optional[RelayStats] = None
        self._target_writer: Optional[asyncio.StreamWriter] = None

    def _advance(self, state: SessionState):
        """
        推进会话状态

        Raises:
            RuntimeError: 试图回退状态
        """
        if state < self.state:
            raise RuntimeError(f"会话状态不能回退: {self.state.name} -> {state.name}")
        self.state = state

    async def run(self):
        """
        主会话处理器

        所有会话内错误在此处理，不会传播到接收循环；
        任何退出路径都会关闭两端连接。
        """
        add_context(session_id=self.session_id, client=self.peer_str)
        try:
            await self._serve()
        except ProtocolViolation as e:
            logger.warning(f"协议错误，中止会话: {e}")
        except (TransportError, ConnectionError, OSError) as e:
            logger.info(f"传输错误，结束会话: {e}")
        except asyncio.CancelledError:
            logger.debug("会话被取消")
            raise
        except Exception as e:
            logger.error(f"会话错误: {e}", exc_info=True)
        finally:
            await self.close()

    async def _serve(self):
        method = await self._with_deadline(
            negotiate(self.reader, self.writer, strict=self.config.strict_auth)
        )
        if method == AuthMethod.NO_ACCEPTABLE_METHODS:
            return
        self._advance(SessionState.COMMAND_PENDING)

        try:
            request = await self._with_deadline(read_request(self.reader))
            if request.command != Command.CONNECT:
                raise UnsupportedRequest(
                    ReplyStatus.COMMAND_NOT_SUPPORTED, f"不支持的命令: {request.command.name}"
                )
            target_reader, target_writer = await dial_target(
                request.host,
                request.port,
                timeout=self.config.connect_timeout,
                detailed=self.config.detailed_dial_errors
            )
        except (UnsupportedRequest, DialFailure) as e:
            logger.info(f"拒绝请求: {e}, 应答={e.status.name}")
            await self.send_reply(e.status)
            return

        self._target_writer = target_writer
        self._advance(SessionState.RELAYING)
        relay = Relay(
            self.reader, self.writer, target_reader, target_writer,
            timeout=self.config.relay_timeout,
            buffer_size=self.config.relay_buffer_size
        )
        try:
            await self.send_reply(ReplyStatus.SUCCEEDED)
        except BaseException:
            await close_writer(target_writer)
            raise

        add_context(target=f"{request.host}:{request.port}")
        self.relay_stats = await relay.run()

    async def _with_deadline(self, aw: Awaitable[T]) -> T:
        """为握手阶段的读取加上可选超时"""
        timeout = self.config.handshake_timeout
        if timeout is None:
            return await aw
        try:
            return await asyncio.wait_for(aw, timeout=timeout)
        except asyncio.TimeoutError:
            raise TransportError(f"{self.state.name} 阶段读取超时 ({timeout}s)")

    async def send_reply(self, status: ReplyStatus):
        """发送命令应答，服务器身份总是以 DOMAIN 类型报告"""
        await send(self.writer, make_reply(status, self.bind_host, self.bind_port))

    async def close(self):
        """关闭两端连接（幂等）"""
        if self.state == SessionState.CLOSED:
            return
        self._advance(SessionState.CLOSED)
        await close_writer(self._target_writer)
        await close_writer(self.writer)

    def abort(self):
        """立即关闭两端套接字，正在进行的读写会随之结束"""
        for writer in (self.writer, self._target_writer):
            if writer is not None and not writer.is_closing():
                writer.close()
