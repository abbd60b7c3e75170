"""
SOCKS5 代理模块

本模块整合了代理服务器的会话处理功能：
- 认证方法协商
- 命令请求解析
- 目标连接
- 双向数据转发
- 连接接收与并发会话上限

使用示例：
    from proxy import Socks5Server
    server = Socks5Server(config)
    await server.start()

    # 单独使用会话
    from proxy import Socks5Session
    session = Socks5Session(1, reader, writer, config, '10.0.0.1', 10086)
    await session.run()
"""

from .base import read_exactly, send, close_writer


# 延迟导入，避免导入 protocol 等轻量模块时就加载整个服务器
def __getattr__(name):
    if name in ('Greeting', 'negotiate', 'read_greeting', 'select_method'):
        from . import handshake
        return getattr(handshake, name)
    elif name in ('SocksRequest', 'read_request'):
        from . import request
        return getattr(request, name)
    elif name in ('dial_target', 'classify_dial_error'):
        from . import dialer
        return getattr(dialer, name)
    elif name in ('Relay', 'RelayOutcome', 'RelayStats'):
        from . import relay
        return getattr(relay, name)
    elif name in ('Socks5Session', 'SessionState'):
        from . import session
        return getattr(session, name)
    elif name in ('Socks5Server', 'SessionLimiter', 'resolve_server_identity'):
        from . import server
        return getattr(server, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    'read_exactly',
    'send',
    'close_writer',
    'Greeting',
    'negotiate',
    'read_greeting',
    'select_method',
    'SocksRequest',
    'read_request',
    'dial_target',
    'classify_dial_error',
    'Relay',
    'RelayOutcome',
    'RelayStats',
    'Socks5Session',
    'SessionState',
    'Socks5Server',
    'SessionLimiter',
    'resolve_server_identity',
]
