"""
SOCKS5 代理 - 错误类型

所有错误都限定在单个会话内，由会话边界统一处理:
- ProtocolViolation: 版本/保留字段非法，不发送应答直接中止
- UnsupportedRequest: 未知命令、未知地址类型或 IPv6 目标，发送对应应答后结束
- DialFailure: 目标不可达/拒绝/解析失败，发送失败应答后结束
- TransportError: 读写过程中连接中断或握手超时，立即结束
- CapacityExceeded: 会话数达到上限，连接被直接关闭
"""

from .core import ReplyStatus


class Socks5Error(Exception):
    """SOCKS5 会话错误基类"""


class ProtocolViolation(Socks5Error):
    """客户端报文违反协议，会话中止且不发送应答"""


class UnsupportedRequest(Socks5Error):
    """
    合法但不被支持的请求

    Attributes:
        status: 需要回复给客户端的应答状态
    """

    def __init__(self, status: ReplyStatus, message: str = ''):
        super().__init__(message or status.description)
        self.status = status


class DialFailure(Socks5Error):
    """
    连接目标失败

    Attributes:
        status: 需要回复给客户端的应答状态
        reason: 底层异常描述
    """

    def __init__(self, status: ReplyStatus, reason: str = ''):
        super().__init__(reason or status.description)
        self.status = status
        self.reason = reason


class TransportError(Socks5Error):
    """读写过程中的传输层错误"""


class CapacityExceeded(Socks5Error):
    """全局会话数达到上限"""
