"""
命令请求解析模块

读取 [VER][CMD][RSV][ATYP][DST.ADDR][DST.PORT]，解码目标地址和端口。
"""

import asyncio
import logging
import struct
from dataclasses import dataclass

from protocol import (
    RSV, SOCKS_VERSION, AddressType, Command, ProtocolViolation, ReplyStatus,
    UnsupportedRequest, decode_address_type, decode_command, format_ipv4,
    IPV4_ADDRESS_SIZE
)

from .base import read_exactly

logger = logging.getLogger('socks5-proxy-request')


@dataclass
class SocksRequest:
    """
    客户端命令请求

    Attributes:
        command: 请求的命令
        address_type: 目标地址的编码类型
        host: 目标主机（域名或点分十进制 IPv4）
        port: 目标端口
    """
    command: Command
    address_type: AddressType
    host: str
    port: int

    def __str__(self) -> str:
        return (f"cmd={self.command.name}, addressType={self.address_type.name}, "
                f"domain={self.host}, port={self.port}")


async def read_request(reader: asyncio.StreamReader) -> SocksRequest:
    """
    读取并解码命令请求

    校验顺序: VER/RSV 非法属于协议违规；未知 CMD 和未知 ATYP 属于
    不支持的请求，在读取地址之前即返回；IPv6 地址不拨号，同样作为
    不支持的请求处理。

    Returns:
        SocksRequest: 解码后的请求（命令可能是 BIND/UDP_ASSOCIATE，由调用方拒绝）

    Raises:
        ProtocolViolation: VER 不是 0x05 或 RSV 不是 0x00
        UnsupportedRequest: 未知命令、未知地址类型或 IPv6 地址
        TransportError: 数据不完整时连接关闭
    """
    version, cmd, rsv, atyp = await read_exactly(reader, 4)
    if version != SOCKS_VERSION:
        raise ProtocolViolation(f"版本必须是 0x05，收到 0x{version:02X}")
    if rsv != RSV:
        raise ProtocolViolation(f"RSV 必须是 0x00，收到 0x{rsv:02X}")

    command = decode_command(cmd)
    if command is None:
        raise UnsupportedRequest(ReplyStatus.COMMAND_NOT_SUPPORTED, f"不支持的命令: 0x{cmd:02X}")

    address_type = decode_address_type(atyp)
    if address_type is None:
        raise UnsupportedRequest(ReplyStatus.ADDRESS_TYPE_NOT_SUPPORTED, f"不支持的地址类型: 0x{atyp:02X}")

    if address_type == AddressType.DOMAIN:
        length = (await read_exactly(reader, 1))[0]
        raw = await read_exactly(reader, length)
        # 非法字节替换为 U+FFFD，交给连接阶段以 0x01 拒绝
        host = raw.decode('utf-8', errors='replace')
    elif address_type == AddressType.IPV4:
        host = format_ipv4(await read_exactly(reader, IPV4_ADDRESS_SIZE))
    else:
        raise UnsupportedRequest(ReplyStatus.COMMAND_NOT_SUPPORTED, "不支持 IPv6 目标地址")

    port = struct.unpack('>H', await read_exactly(reader, 2))[0]

    request = SocksRequest(command=command, address_type=address_type, host=host, port=port)
    logger.info(f"version={version}, {request}")
    return request
