"""
SOCKS5 代理 - 核心协议模块
定义 SOCKS5 协议的常量、枚举类型和报文编码。

版本: 1.0.0

功能概述:
本模块提供了 SOCKS5 代理服务器的协议模型，包括协议常量、
地址类型/命令/认证方法/应答状态四个枚举，以及它们与线路字节
之间的解码和编码函数。所有解码函数在未匹配时返回 None，
调用方必须显式处理不支持的情况。

报文格式（RFC 1928）:
┌─────────────────┬──────────────────────────────────────────────────────┐
│ 客户端问候      │ VER(1)=0x05 NMETHODS(1) METHODS(NMETHODS)            │
│ 方法选择应答    │ VER(1)=0x05 METHOD(1)                                │
│ 客户端请求      │ VER(1) CMD(1) RSV(1)=0x00 ATYP(1) DST.ADDR DST.PORT(2)│
│ 命令应答        │ VER(1) REP(1) RSV(1) ATYP(1)=0x03 LEN(1) NAME PORT(2) │
└─────────────────┴──────────────────────────────────────────────────────┘

所有多字节字段使用大端序（网络字节序）。
"""

import socket
import struct
from enum import IntEnum
from typing import Optional


# ============================================================================
# 协议常量
# ============================================================================

SOCKS_VERSION = 0x05
RSV = 0x00

RELAY_BUFFER_SIZE = 1024 * 512  # 每次读取上限，连接很多时不宜过大
RELAY_TIMEOUT = 30.0  # 转发会话的绝对时长上限（秒）
MAX_REPLY_SIZE = 100  # 命令应答的固定缓冲区大小

DEFAULT_PORT = 10086
DEFAULT_MAX_SESSIONS = 100

IPV4_ADDRESS_SIZE = 4
IPV6_ADDRESS_SIZE = 16


# ============================================================================
# 枚举类型
# ============================================================================

class AddressType(IntEnum):
    """
    目标地址类型（ATYP）

    - IPV4: 4 字节原始地址
    - DOMAIN: 1 字节长度前缀 + 主机名，无结尾 NUL
    - IPV6: 16 字节原始地址（可解析，但本服务器不拨号）
    """
    IPV4 = 0x01
    DOMAIN = 0x03
    IPV6 = 0x04


class Command(IntEnum):
    """代理命令（CMD），仅 CONNECT 被服务"""
    CONNECT = 0x01
    BIND = 0x02
    UDP_ASSOCIATE = 0x03


class AuthMethod(IntEnum):
    """
    认证方法（METHOD）

    客户端提供的方法列表只用于诊断日志，服务器默认总是选择
    NO_AUTHENTICATION_REQUIRED。
    """
    NO_AUTHENTICATION_REQUIRED = 0x00
    GSSAPI = 0x01
    USERNAME_PASSWORD = 0x02
    NO_ACCEPTABLE_METHODS = 0xFF


class ReplyStatus(IntEnum):
    """
    命令应答状态（REP）

    0x09-0xFF 均为未分配，统一解码为 UNASSIGNED。
    """
    SUCCEEDED = 0x00
    GENERAL_SOCKS_SERVER_FAILURE = 0x01
    CONNECTION_NOT_ALLOWED_BY_RULESET = 0x02
    NETWORK_UNREACHABLE = 0x03
    HOST_UNREACHABLE = 0x04
    CONNECTION_REFUSED = 0x05
    TTL_EXPIRED = 0x06
    COMMAND_NOT_SUPPORTED = 0x07
    ADDRESS_TYPE_NOT_SUPPORTED = 0x08
    UNASSIGNED = 0x09

    @property
    def description(self) -> str:
        return _REPLY_DESCRIPTIONS[self]


_REPLY_DESCRIPTIONS = {
    ReplyStatus.SUCCEEDED: "succeeded",
    ReplyStatus.GENERAL_SOCKS_SERVER_FAILURE: "general SOCKS server failure",
    ReplyStatus.CONNECTION_NOT_ALLOWED_BY_RULESET: "connection not allowed by ruleset",
    ReplyStatus.NETWORK_UNREACHABLE: "Network unreachable",
    ReplyStatus.HOST_UNREACHABLE: "Host unreachable",
    ReplyStatus.CONNECTION_REFUSED: "Connection refused",
    ReplyStatus.TTL_EXPIRED: "TTL expired",
    ReplyStatus.COMMAND_NOT_SUPPORTED: "Command not supported",
    ReplyStatus.ADDRESS_TYPE_NOT_SUPPORTED: "Address type not supported",
    ReplyStatus.UNASSIGNED: "unassigned",
}


# ============================================================================
# 解码函数
# ============================================================================

def decode_address_type(code: int) -> Optional[AddressType]:
    """
    将 ATYP 字节解码为地址类型

    Args:
        code: 线路上的 ATYP 字节

    Returns:
        Optional[AddressType]: 匹配的地址类型，未知代码返回 None
    """
    try:
        return AddressType(code)
    except ValueError:
        return None


def decode_command(code: int) -> Optional[Command]:
    """将 CMD 字节解码为命令，未知代码返回 None"""
    try:
        return Command(code)
    except ValueError:
        return None


def decode_auth_method(code: int) -> Optional[AuthMethod]:
    """将 METHOD 字节解码为认证方法，未知代码返回 None"""
    try:
        return AuthMethod(code)
    except ValueError:
        return None


def decode_reply_status(code: int) -> ReplyStatus:
    """
    将 REP 字节解码为应答状态

    Args:
        code: 0-255 之间的 REP 字节

    Returns:
        ReplyStatus: 0x00-0x08 返回对应状态，其余返回 UNASSIGNED

    Raises:
        ValueError: code 不在单字节范围内
    """
    if not 0 <= code <= 0xFF:
        raise ValueError(f"应答状态超出单字节范围: {code}")
    if code >= ReplyStatus.UNASSIGNED:
        return ReplyStatus.UNASSIGNED
    return ReplyStatus(code)


def describe_method(code: int) -> str:
    """
    生成认证方法的可读描述，用于诊断日志

    Example:
        >>> describe_method(0x00)
        'NO_AUTHENTICATION_REQUIRED'
        >>> describe_method(0x85)
        '0x85(reserved for private methods)'
    """
    method = decode_auth_method(code)
    if method is not None:
        return method.name
    if 0x03 <= code <= 0x7F:
        return f"0x{code:02X}(IANA assigned)"
    return f"0x{code:02X}(reserved for private methods)"


def format_ipv4(raw: bytes) -> str:
    """
    将 4 字节地址渲染为点分十进制（按无符号字节）

    Raises:
        ValueError: 长度不是 4 字节
    """
    if len(raw) != IPV4_ADDRESS_SIZE:
        raise ValueError(f"IPv4 地址必须是 4 字节，实际 {len(raw)} 字节")
    return socket.inet_ntoa(raw)


# ============================================================================
# 编码函数
# ============================================================================

def make_method_reply(method: int = AuthMethod.NO_AUTHENTICATION_REQUIRED) -> bytes:
    """
    创建方法选择应答

    格式: VER(1)=0x05 + METHOD(1)
    """
    return struct.pack('>BB', SOCKS_VERSION, method)


def make_reply(status: ReplyStatus, bind_host: str, bind_port: int) -> bytes:
    """
    创建命令应答

    服务器总是以 DOMAIN 类型报告自己的身份（主机名或 IP 字符串），
    成功和失败应答都是如此，客户端不能假设 BND.ADDR 是出站套接字的
    本地地址。

    格式: VER(1) + REP(1) + RSV(1) + ATYP(1)=0x03 + LEN(1) + NAME + PORT(2)

    Args:
        status: 应答状态
        bind_host: 服务器身份字符串（ASCII）
        bind_port: 监听端口

    Returns:
        bytes: 完整的应答报文

    Raises:
        ValueError: 主机名不是 ASCII、端口越界，或应答超过 MAX_REPLY_SIZE

    Example:
        >>> make_reply(ReplyStatus.SUCCEEDED, '10.0.0.1', 1080)
        b'\\x05\\x00\\x00\\x03\\x0810.0.0.1\\x048'
    """
    try:
        name = bind_host.encode('ascii')
    except UnicodeEncodeError:
        raise ValueError(f"服务器身份必须是 ASCII: {bind_host!r}")
    if not 0 <= bind_port <= 0xFFFF:
        raise ValueError(f"端口超出范围: {bind_port}")

    payload = struct.pack('>BBBBB', SOCKS_VERSION, status, RSV, AddressType.DOMAIN, len(name) & 0xFF)
    payload += name + struct.pack('>H', bind_port)
    if len(name) > 0xFF or len(payload) > MAX_REPLY_SIZE:
        raise ValueError(f"应答超过 {MAX_REPLY_SIZE} 字节: 服务器身份过长 ({len(name)} 字节)")
    return payload


def max_bind_host_length() -> int:
    """应答缓冲区能容纳的最长服务器身份字节数"""
    return MAX_REPLY_SIZE - 5 - 2
