"""
代理流操作基础函数

本模块定义了握手、请求解析、转发共用的流操作：
- 定长读取（连接提前关闭时抛出 TransportError）
- 写入并等待缓冲区排空
- 幂等关闭写入器
"""

import asyncio
import logging
from typing import Optional

from protocol import TransportError

logger = logging.getLogger('socks5-proxy-base')


async def read_exactly(reader: asyncio.StreamReader, n: int) -> bytes:
    """
    从流中读取恰好 n 字节

    Args:
        reader: 异步流读取器
        n: 需要读取的字节数

    Returns:
        bytes: 长度为 n 的数据（n 为 0 时返回空字节）

    Raises:
        TransportError: 对端在读满 n 字节之前关闭连接
    """
    if n == 0:
        return b''
    try:
        return await reader.readexactly(n)
    except asyncio.IncompleteReadError as e:
        raise TransportError(f"连接已关闭: 期望 {n} 字节，只收到 {len(e.partial)} 字节")


async def send(writer: asyncio.StreamWriter, data: bytes):
    """写入数据并等待发送缓冲区排空"""
    writer.write(data)
    await writer.drain()


async def close_writer(writer: Optional[asyncio.StreamWriter]):
    """
    关闭写入器（以及底层套接字）

    可以重复调用；连接已断开时的次生错误被忽略。
    """
    if writer is None:
        return
    try:
        writer.close()
        await writer.wait_closed()
    except (ConnectionResetError, BrokenPipeError, OSError):
        pass  # 连接已断开，忽略错误
    except Exception as e:
        logger.debug(f"关闭写入器时出错: {e}")


def peer_string(writer: asyncio.StreamWriter) -> str:
    """返回 "ip:port" 形式的对端地址，无法获取时返回 "unknown" """
    peer = writer.get_extra_info('peername')
    if not peer:
        return "unknown"
    return f"{peer[0]}:{peer[1]}"
