"""
SOCKS5 代理 - 配置管理模块
加载 YAML 配置文件，构造服务器配置。

版本: 1.0.0

功能概述:
本模块提供了配置管理功能，包括：
1. 服务器配置数据类及默认值
2. YAML 配置文件的加载和保存
3. 配置项校验

配置文件格式（config.yaml）:
    server:
      host: 0.0.0.0
      port: 10086
      max_sessions: 100
    logging:
      level: INFO
"""

import logging
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

import yaml

from protocol import (
    DEFAULT_MAX_SESSIONS, DEFAULT_PORT, RELAY_BUFFER_SIZE, RELAY_TIMEOUT,
    max_bind_host_length
)

logger = logging.getLogger(__name__)


def _coerce(name: str, value: Any, kind: type):
    """把配置值转换为 kind 类型，失败时抛出 ValueError"""
    if isinstance(value, bool):
        raise ValueError(f"{name} 必须是数字: {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} 必须是数字: {value!r}")


# ============================================================================
# 配置数据类
# ============================================================================

@dataclass
class ServerConfig:
    """
    服务器配置数据类

    Attributes:
        host: 监听地址（默认: "0.0.0.0"）
        port: 监听端口（默认: 10086，0 表示由系统分配）
        max_sessions: 最大并发会话数（默认: 100）
        relay_timeout: 转发会话的绝对时长上限，秒（默认: 30）
        relay_buffer_size: 每个方向单次读取上限，字节（默认: 512K）
        advertised_host: 应答中报告的服务器身份（默认: 启动时解析本机地址）
        connect_timeout: 连接目标的超时，秒（默认: None，使用系统默认）
        handshake_timeout: 握手和请求阶段的读超时，秒（默认: None，不限制）
        strict_auth: 是否只在客户端提供 0x00 时才接受（默认: False）
        detailed_dial_errors: 是否细分连接失败的应答状态（默认: False）
        stats_interval: 资源统计日志间隔，秒，0 表示关闭（默认: 60）
    """
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    max_sessions: int = DEFAULT_MAX_SESSIONS
    relay_timeout: float = RELAY_TIMEOUT
    relay_buffer_size: int = RELAY_BUFFER_SIZE
    advertised_host: Optional[str] = None
    connect_timeout: Optional[float] = None
    handshake_timeout: Optional[float] = None
    strict_auth: bool = False
    detailed_dial_errors: bool = False
    stats_interval: float = 60

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ServerConfig':
        """
        从配置字典的 server 段构造配置

        未知配置项会被忽略并记录警告。

        Args:
            data: load_config() 返回的完整配置字典

        Returns:
            ServerConfig: 校验后的配置对象

        Raises:
            ValueError: 配置项取值非法
        """
        server_conf = (data or {}).get('server') or {}
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in server_conf.items():
            if key not in known:
                logger.warning(f"忽略未知配置项: server.{key}")
                continue
            kwargs[key] = value
        config = cls(**kwargs)
        config.validate()
        return config

    def validate(self):
        """
        校验配置项，并把数值项转换为对应类型

        YAML 中带引号的数值（如 relay_timeout: "30"）在此转换后保存。

        Raises:
            ValueError: 任一配置项取值非法
        """
        self.port = _coerce('port', self.port, int)
        self.max_sessions = _coerce('max_sessions', self.max_sessions, int)
        self.relay_timeout = _coerce('relay_timeout', self.relay_timeout, float)
        self.relay_buffer_size = _coerce('relay_buffer_size', self.relay_buffer_size, int)
        self.stats_interval = _coerce('stats_interval', self.stats_interval, float)
        for name in ('connect_timeout', 'handshake_timeout'):
            value = getattr(self, name)
            if value is not None:
                setattr(self, name, _coerce(name, value, float))

        if not 0 <= self.port <= 65535:
            raise ValueError(f"端口超出范围: {self.port}")
        if self.max_sessions < 1:
            raise ValueError(f"max_sessions 必须大于 0: {self.max_sessions}")
        if self.relay_timeout <= 0:
            raise ValueError(f"relay_timeout 必须大于 0: {self.relay_timeout}")
        if self.relay_buffer_size <= 0:
            raise ValueError(f"relay_buffer_size 必须大于 0: {self.relay_buffer_size}")
        for name in ('connect_timeout', 'handshake_timeout'):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name} 必须大于 0: {value}")
        if self.stats_interval < 0:
            raise ValueError(f"stats_interval 不能为负数: {self.stats_interval}")
        if self.advertised_host is not None:
            if not isinstance(self.advertised_host, str):
                raise ValueError(f"advertised_host 必须是字符串: {self.advertised_host!r}")
            try:
                encoded = self.advertised_host.encode('ascii')
            except UnicodeEncodeError:
                raise ValueError(f"advertised_host 必须是 ASCII: {self.advertised_host!r}")
            if not encoded or len(encoded) > max_bind_host_length():
                raise ValueError(
                    f"advertised_host 长度必须在 1-{max_bind_host_length()} 字节之间: "
                    f"{self.advertised_host!r}"
                )
        for name in ('strict_auth', 'detailed_dial_errors'):
            if not isinstance(getattr(self, name), bool):
                raise ValueError(f"{name} 必须是 true 或 false: {getattr(self, name)!r}")

    def to_dict(self) -> Dict[str, Any]:
        """转换为可写入 YAML 的字典"""
        return {'server': asdict(self)}


# ============================================================================
# 配置文件管理函数
# ============================================================================

def load_config(config_file: str) -> Dict[str, Any]:
    """
    加载配置文件

    从 YAML 格式的配置文件中加载配置数据

    Args:
        config_file: 配置文件路径

    Returns:
        Dict[str, Any]: 配置数据字典，如果文件不存在或格式错误则返回空字典
    """
    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f) or {}
    except FileNotFoundError:
        return {}
    except yaml.YAMLError as e:
        logger.warning(f"配置文件格式错误: {e}")
        return {}


def save_config(config_file: str, config_data: Dict[str, Any]) -> bool:
    """
    保存配置文件

    Args:
        config_file: 配置文件路径
        config_data: 要保存的配置数据字典

    Returns:
        bool: 保存成功返回 True，失败返回 False
    """
    try:
        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f, default_flow_style=False, allow_unicode=True)
        return True
    except OSError as e:
        logger.error(f"保存配置文件失败: {e}")
        return False
