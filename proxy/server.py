"""
SOCKS5 代理服务器模块 - 服务器生命周期管理

此模块包含 Socks5Server 类，负责监听端口、接受客户端连接、执行全局并发
会话上限，并为每个被接纳的连接创建独立的 Socks5Session 协程。

主要组件:
- SessionLimiter: 全局活跃会话计数器
- Socks5Server: 代理服务器类，管理服务器生命周期和客户端连接

使用示例:
    >>> config = ServerConfig(host='0.0.0.0', port=10086)
    >>> server = Socks5Server(config)
    >>> asyncio.run(server.start())
"""

import asyncio
import itertools
import logging
import socket
from typing import Dict, Optional

from config import ServerConfig
from protocol import CapacityExceeded
from resource_monitor import ResourceMonitor

from .base import close_writer, peer_string
from .session import Socks5Session

logger = logging.getLogger('socks5-proxy-server')


def resolve_server_identity() -> str:
    """
    解析本机的主机地址，作为应答中的 BND.ADDR

    Returns:
        str: 本机主机名解析出的 IP；解析失败时返回 127.0.0.1
    """
    try:
        return socket.gethostbyname(socket.gethostname())
    except OSError as e:
        logger.warning(f"无法解析本机地址，使用 127.0.0.1: {e}")
        return '127.0.0.1'


class SessionLimiter:
    """
    全局活跃会话计数器

    计数等于"已接纳"且尚未"拆除"的会话数。所有会话运行在同一个事件循环中，
    增减操作之间不存在并发交错。

    Attributes:
        max_sessions: 最大并发会话数
    """

    def __init__(self, max_sessions: int):
        self.max_sessions = max_sessions
        self._active = 0

    @property
    def active(self) -> int:
        return self._active

    def admit(self):
        """
        接纳一个会话，计数加一

        Raises:
            CapacityExceeded: 活跃会话数已达上限
        """
        if self._active >= self.max_sessions:
            raise CapacityExceeded(f"会话数已达上限 {self.max_sessions}")
        self._active += 1

    def release(self):
        if self._active <= 0:
            raise RuntimeError("会话计数已为 0，不能再释放")
        self._active -= 1


class Socks5Server:
    """
    SOCKS5 代理服务器类 - 管理服务器生命周期和客户端连接

    工作流程:
    1. 绑定监听套接字
    2. 接受客户端连接
    3. 会话数达到上限时直接关闭新连接
    4. 否则分配会话编号，在独立协程中运行会话
    5. 会话结束后释放计数（无论从哪条路径退出）

    Attributes:
        config: 服务器配置
        limiter: 全局会话计数器
        bind_host: 应答中报告的服务器身份
        bind_port: 应答中报告的监听端口（绑定后为实际端口）
        total_sessions: 已接纳的会话总数
        rejected_sessions: 因达到上限被拒绝的连接数
    """

    def __init__(self, config: ServerConfig):
        self.config = config
        self.limiter = SessionLimiter(config.max_sessions)
        self.bind_host = config.advertised_host or resolve_server_identity()
        self.bind_port = config.port
        self.total_sessions = 0
        self.rejected_sessions = 0

        self._session_ids = itertools.count(1)
        self._sessions: Dict[Socks5Session, asyncio.Task] = {}
        self._server: Optional[asyncio.AbstractServer] = None

    @property
    def active_sessions(self) -> int:
        return self.limiter.active

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        """
        处理客户端连接

        此方法由 asyncio.start_server 为每个连接在独立协程中调用。
        """
        try:
            self.limiter.admit()
        except CapacityExceeded as e:
            self.rejected_sessions += 1
            logger.warning(f"client num run out, 拒绝 {peer_string(writer)}: {e}")
            await close_writer(writer)
            return

        session = Socks5Session(
            next(self._session_ids), reader, writer, self.config, self.bind_host, self.bind_port
        )
        self.total_sessions += 1
        self._sessions[session] = asyncio.current_task()
        try:
            logger.info(f"new client, ip={session.peer_str}, session={session.session_id}, "
                        f"current client count={self.limiter.active}")
            await session.run()
        finally:
            self._sessions.pop(session, None)
            self.limiter.release()
            logger.info(f"client dead, session={session.session_id}, "
                        f"current client count={self.limiter.active}")

    async def start_serving(self) -> asyncio.AbstractServer:
        """
        绑定监听套接字并开始接受连接

        配置端口为 0 时，应答中报告系统分配的实际端口。

        Returns:
            asyncio.AbstractServer: 已开始服务的服务器对象
        """
        self._server = await asyncio.start_server(
            self.handle_client,
            self.config.host,
            self.config.port
        )
        addr = self._server.sockets[0].getsockname()
        self.bind_port = addr[1]
        logger.info(f"SOCKS5 代理运行于 {addr[0]}:{addr[1]}")
        logger.info(f"服务器身份: {self.bind_host}:{self.bind_port}, "
                    f"最大会话数: {self.limiter.max_sessions}")
        return self._server

    async def start(self):
        """
        启动代理服务器并一直运行，直到被取消

        stats_interval 大于 0 时同时运行资源统计任务。
        """
        server = await self.start_serving()
        monitor_task = None
        if self.config.stats_interval > 0:
            monitor = ResourceMonitor(self, self.config.stats_interval)
            monitor_task = asyncio.create_task(monitor.monitor_loop())

        try:
            await server.serve_forever()
        finally:
            if monitor_task:
                monitor_task.cancel()
                await asyncio.gather(monitor_task, return_exceptions=True)
            await self.stop()

    async def stop(self):
        """停止接受新连接，中止所有活跃会话并等待其结束"""
        if self._server is None:
            return
        server, self._server = self._server, None
        server.close()
        sessions = dict(self._sessions)
        for session in sessions:
            session.abort()
        await asyncio.gather(*sessions.values(), return_exceptions=True)
        await server.wait_closed()
        logger.info("代理服务器已停止")
