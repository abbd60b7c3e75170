"""
SOCKS5 协议包

本包提供了 SOCKS5 代理服务器的协议定义，包括：
- 协议常量和枚举类型
- 字节解码函数（未匹配返回 None）
- 应答报文编码
- 会话错误类型

使用示例：
    from protocol import ReplyStatus, make_reply, decode_command

    # 解码命令
    cmd = decode_command(0x01)  # Command.CONNECT

    # 构造应答
    data = make_reply(ReplyStatus.SUCCEEDED, '10.0.0.1', 10086)
"""

from .core import (
    # 协议常量
    SOCKS_VERSION,
    RSV,
    RELAY_BUFFER_SIZE,
    RELAY_TIMEOUT,
    MAX_REPLY_SIZE,
    DEFAULT_PORT,
    DEFAULT_MAX_SESSIONS,
    IPV4_ADDRESS_SIZE,
    IPV6_ADDRESS_SIZE,

    # 枚举类型
    AddressType,
    Command,
    AuthMethod,
    ReplyStatus,

    # 解码函数
    decode_address_type,
    decode_command,
    decode_auth_method,
    decode_reply_status,
    describe_method,
    format_ipv4,

    # 编码函数
    make_method_reply,
    make_reply,
    max_bind_host_length,
)
from .errors import (
    Socks5Error,
    ProtocolViolation,
    UnsupportedRequest,
    DialFailure,
    TransportError,
    CapacityExceeded,
)
