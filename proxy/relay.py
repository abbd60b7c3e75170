"""
数据转发模块 - 在客户端和目标之间双向复制字节

每个转发会话使用两个复制任务（上行: 客户端 -> 目标，下行: 目标 -> 客户端），
由事件循环调度公平性。满足以下任一条件即结束转发：
1. 目标端读到 EOF（目标关闭）
2. 客户端读到 EOF 后，向目标发送 EOF（半关闭），继续把目标的响应转发给
   客户端，直到目标关闭
3. 任一方向发生传输错误
4. 自转发开始起超过时长上限（绝对时长，不是空闲计时）

无论从哪条路径结束，两端连接都会被关闭。
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from protocol import RELAY_BUFFER_SIZE, RELAY_TIMEOUT

from .base import close_writer

logger = logging.getLogger('socks5-proxy-relay')


class RelayOutcome(Enum):
    """转发结束原因"""
    CLIENT_CLOSED = "client closed"
    TARGET_CLOSED = "target closed"
    TIMEOUT = "time out"
    ERROR = "conn exception"


@dataclass
class RelayStats:
    """
    转发统计

    Attributes:
        bytes_up: 客户端 -> 目标 的字节数
        bytes_down: 目标 -> 客户端 的字节数
        outcome: 结束原因
        elapsed: 转发持续时间（秒）
    """
    bytes_up: int = 0
    bytes_down: int = 0
    outcome: Optional[RelayOutcome] = None
    elapsed: float = 0.0


class Relay:
    """
    双向转发器

    一个 Relay 独占持有客户端和目标两端的流，run() 返回时两端均已关闭。

    Attributes:
        timeout: 转发时长上限（秒）
        buffer_size: 每次读取的最大字节数
        stats: 转发统计
    """

    def __init__(self, client_reader: asyncio.StreamReader, client_writer: asyncio.StreamWriter,
                 target_reader: asyncio.StreamReader, target_writer: asyncio.StreamWriter,
                 timeout: float = RELAY_TIMEOUT, buffer_size: int = RELAY_BUFFER_SIZE):
        self.client_reader = client_reader
        self.client_writer = client_writer
        self.target_reader = target_reader
        self.target_writer = target_writer
        self.timeout = timeout
        self.buffer_size = buffer_size
        self.stats = RelayStats()

    async def run(self) -> RelayStats:
        """
        执行转发直到结束条件满足

        Returns:
            RelayStats: 转发统计（outcome 一定已设置）
        """
        loop = asyncio.get_running_loop()
        start = loop.time()
        deadline = start + self.timeout

        upstream = asyncio.create_task(self._pipe(self.client_reader, self.target_writer, upstream=True))
        downstream = asyncio.create_task(self._pipe(self.target_reader, self.client_writer, upstream=False))

        try:
            done, _ = await asyncio.wait(
                {upstream, downstream},
                timeout=self.timeout,
                return_when=asyncio.FIRST_COMPLETED
            )
            if not done:
                self.stats.outcome = RelayOutcome.TIMEOUT
            elif upstream in done:
                self.stats.outcome = upstream.result()
                if self.stats.outcome is RelayOutcome.CLIENT_CLOSED and downstream not in done:
                    await self._finish_downstream(downstream, deadline)
            else:
                self.stats.outcome = downstream.result()
        finally:
            for task in (upstream, downstream):
                task.cancel()
            await asyncio.gather(upstream, downstream, return_exceptions=True)
            await close_writer(self.client_writer)
            await close_writer(self.target_writer)
            self.stats.elapsed = loop.time() - start

        logger.info(f"{self.stats.outcome.value}, up={self.stats.bytes_up}, "
                    f"down={self.stats.bytes_down}, elapsed={self.stats.elapsed:.2f}s")
        return self.stats

    async def _finish_downstream(self, downstream: asyncio.Task, deadline: float):
        """客户端半关闭后，向目标发送 EOF 并等待目标的剩余响应"""
        try:
            if self.target_writer.can_write_eof():
                self.target_writer.write_eof()
        except OSError as e:
            logger.debug(f"向目标发送 EOF 失败: {e}")
            return

        remaining = deadline - asyncio.get_running_loop().time()
        if remaining > 0:
            done, _ = await asyncio.wait({downstream}, timeout=remaining)
            if done:
                return
        self.stats.outcome = RelayOutcome.TIMEOUT

    async def _pipe(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                    upstream: bool) -> RelayOutcome:
        """
        单方向复制，直到 EOF 或传输错误

        Returns:
            RelayOutcome: 读到 EOF 时为对应一端关闭，出错时为 ERROR
        """
        direction = "client to remote" if upstream else "remote to client"
        try:
            while True:
                data = await reader.read(self.buffer_size)
                if not data:
                    return RelayOutcome.CLIENT_CLOSED if upstream else RelayOutcome.TARGET_CLOSED
                writer.write(data)
                await writer.drain()
                if upstream:
                    self.stats.bytes_up += len(data)
                else:
                    self.stats.bytes_down += len(data)
                logger.debug(f"{direction}, bytes={len(data)}")
        except (ConnectionError, OSError) as e:
            logger.debug(f"{direction} 传输错误: {e}")
            return RelayOutcome.ERROR
