"""
SOCKS5 代理 - 日志管理模块

版本: 1.0.0

功能概述:
本模块提供了代理服务器的日志管理功能，包括：
1. 多级别日志记录（DEBUG, INFO, WARNING, ERROR, CRITICAL）
2. 日志轮转（按日期/大小）
3. 会话上下文（session_id、client）自动附加到每条日志
4. 配置文件和环境变量支持

会话上下文保存在 contextvars 中，每个会话协程拥有独立的上下文，
并发会话之间的日志不会互相串扰。
"""

import contextvars
import logging
import logging.handlers
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

try:
    from systemd.journal import JournalHandler
    HAS_JOURNAL = True
except ImportError:
    HAS_JOURNAL = False

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(context)s] - %(message)s"

_log_context: contextvars.ContextVar = contextvars.ContextVar('socks5_log_context', default={})


@dataclass
class LogConfig:
    """
    日志配置数据类

    Attributes:
        level: 日志级别（DEBUG, INFO, WARNING, ERROR, CRITICAL）
        log_dir: 日志存储目录
        log_file: 日志文件名
        max_bytes: 单个日志文件最大大小（字节）
        backup_count: 保留的备份文件数量
        rotation_type: 轮转类型（size, date, both）
        format_string: 日志格式字符串
        enable_console: 是否输出到控制台
        enable_file: 是否输出到文件
        enable_journal: 是否输出到系统日志
        context_fields: 上下文字段列表
    """
    level: str = "INFO"
    log_dir: str = "logs"
    log_file: str = "socks5-proxy.log"
    max_bytes: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5
    rotation_type: str = "size"  # size, date, both
    format_string: str = DEFAULT_FORMAT
    enable_console: bool = True
    enable_file: bool = False
    enable_journal: bool = False
    context_fields: list = None

    def __post_init__(self):
        if self.context_fields is None:
            self.context_fields = ["session_id", "client"]

    @classmethod
    def from_dict(cls, log_config: Optional[Dict[str, Any]] = None) -> 'LogConfig':
        """
        从配置字典的 logging 段构造日志配置，环境变量优先

        Args:
            log_config: 配置文件中的 logging 段（可选）
        """
        log_config = log_config or {}
        defaults = cls()

        def _flag(env_name: str, key: str, default: bool) -> bool:
            return os.getenv(env_name, str(log_config.get(key, default))).lower() == 'true'

        return cls(
            level=os.getenv('LOG_LEVEL', log_config.get('level', defaults.level)),
            log_dir=os.getenv('LOG_DIR', log_config.get('log_dir', defaults.log_dir)),
            log_file=os.getenv('LOG_FILE', log_config.get('log_file', defaults.log_file)),
            max_bytes=int(os.getenv('LOG_MAX_BYTES', log_config.get('max_bytes', defaults.max_bytes))),
            backup_count=int(os.getenv('LOG_BACKUP_COUNT', log_config.get('backup_count', defaults.backup_count))),
            rotation_type=os.getenv('LOG_ROTATION_TYPE', log_config.get('rotation_type', defaults.rotation_type)),
            format_string=os.getenv('LOG_FORMAT', log_config.get('format_string', defaults.format_string)),
            enable_console=_flag('LOG_ENABLE_CONSOLE', 'enable_console', defaults.enable_console),
            enable_file=_flag('LOG_ENABLE_FILE', 'enable_file', defaults.enable_file),
            enable_journal=_flag('LOG_ENABLE_JOURNAL', 'enable_journal', defaults.enable_journal),
            context_fields=log_config.get('context_fields', defaults.context_fields),
        )


class ContextFilter(logging.Filter):
    """
    上下文过滤器

    为日志记录添加当前协程的会话上下文
    """

    def __init__(self, context_fields: list = None):
        super().__init__()
        self.context_fields = context_fields or []

    def filter(self, record):
        context_data = current_context()
        context_parts = []
        for field in self.context_fields:
            value = context_data.get(field, "-")
            context_parts.append(f"{field}={value}")

        record.context = " | ".join(context_parts) or "-"
        return True


class LogFormatter(logging.Formatter):
    """
    自定义日志格式化器

    支持彩色输出，缺少 context 字段的记录以 "-" 代替
    """

    COLORS = {
        'DEBUG': '\033[36m',      # 青色
        'INFO': '\033[32m',       # 绿色
        'WARNING': '\033[33m',    # 黄色
        'ERROR': '\033[31m',      # 红色
        'CRITICAL': '\033[35m',   # 紫色
    }
    RESET = '\033[0m'

    def __init__(self, fmt=None, datefmt=None, style='%', use_color=False):
        super().__init__(fmt, datefmt, style)
        self.use_color = use_color

    def format(self, record):
        if not hasattr(record, 'context'):
            record.context = "-"

        levelname = record.levelname
        if self.use_color and levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.RESET}"

        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class SizedTimedRotatingFileHandler(logging.handlers.TimedRotatingFileHandler):
    """
    每天午夜轮转，单个文件超过 max_bytes 时提前轮转

    同一天内多次轮转的备份文件在日期后追加序号（.1, .2, ...），不会互相覆盖。
    """

    def __init__(self, filename, max_bytes: int = 0, backup_count: int = 0, encoding=None):
        super().__init__(filename, when='midnight', interval=1,
                         backupCount=backup_count, encoding=encoding)
        self.max_bytes = max_bytes

    def shouldRollover(self, record):
        if super().shouldRollover(record):
            return True
        if self.max_bytes <= 0:
            return False
        if self.stream is None:
            self.stream = self._open()
        msg = "%s\n" % self.format(record)
        self.stream.seek(0, 2)
        position = self.stream.tell()
        return position > 0 and position + len(msg) >= self.max_bytes

    def rotation_filename(self, default_name):
        name = default_name
        index = 1
        while os.path.exists(name):
            name = f"{default_name}.{index}"
            index += 1
        return name

    def getFilesToDelete(self):
        """按修改时间保留最新的 backupCount 个备份，包括带序号的备份"""
        dir_name, base_name = os.path.split(self.baseFilename)
        prefix = base_name + '.'
        backups = [os.path.join(dir_name, name) for name in os.listdir(dir_name)
                   if name.startswith(prefix)]
        if len(backups) <= self.backupCount:
            return []
        backups.sort(key=os.path.getmtime)
        return backups[:len(backups) - self.backupCount]


class LoggerManager:
    """
    日志管理器

    管理日志系统的初始化和处理器配置（单例）
    """

    _instance = None
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self.config = None
            self.context_filter = None
            self._initialized = True

    def initialize(self, config: Optional[LogConfig] = None, config_data: Optional[Dict[str, Any]] = None):
        """
        初始化日志系统

        Args:
            config: 日志配置对象（可选）
            config_data: load_config() 返回的完整配置字典（可选），读取其 logging 段
        """
        if config:
            self.config = config
        else:
            self.config = LogConfig.from_dict((config_data or {}).get('logging'))

        if self.config.enable_file:
            Path(self.config.log_dir).mkdir(parents=True, exist_ok=True)
        self._setup_root_logger()

    def _level(self) -> int:
        return getattr(logging, str(self.config.level).upper(), logging.INFO)

    def _setup_root_logger(self):
        root_logger = logging.getLogger()
        root_logger.setLevel(self._level())

        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

        self.context_filter = ContextFilter(self.config.context_fields)

        if self.config.enable_console:
            self._add_handler(root_logger, self._console_handler(), use_color=sys.stdout.isatty())

        if self.config.enable_file:
            self._add_handler(root_logger, self._file_handler(), use_color=False)

        if self.config.enable_journal and HAS_JOURNAL:
            journal_handler = JournalHandler()
            journal_handler.setLevel(self._level())
            journal_handler.addFilter(self.context_filter)
            root_logger.addHandler(journal_handler)

    def _add_handler(self, logger: logging.Logger, handler: logging.Handler, use_color: bool):
        handler.setLevel(self._level())
        handler.setFormatter(LogFormatter(
            fmt=self.config.format_string,
            datefmt='%Y-%m-%d %H:%M:%S',
            use_color=use_color
        ))
        # 过滤器挂在处理器上，子日志记录器传播上来的记录也能带上上下文
        handler.addFilter(self.context_filter)
        logger.addHandler(handler)

    def _console_handler(self) -> logging.Handler:
        return logging.StreamHandler(sys.stdout)

    def _file_handler(self) -> logging.Handler:
        """
        创建文件处理器（支持轮转）

        rotation_type 为 size 时按大小轮转，date 时每天午夜轮转，both 时
        两个条件任一满足即轮转，其他取值不轮转。
        """
        log_file_path = Path(self.config.log_dir) / self.config.log_file

        if self.config.rotation_type == 'both':
            return SizedTimedRotatingFileHandler(
                filename=log_file_path,
                max_bytes=self.config.max_bytes,
                backup_count=self.config.backup_count,
                encoding='utf-8'
            )
        if self.config.rotation_type == 'size':
            return logging.handlers.RotatingFileHandler(
                filename=log_file_path,
                maxBytes=self.config.max_bytes,
                backupCount=self.config.backup_count,
                encoding='utf-8'
            )
        if self.config.rotation_type == 'date':
            return logging.handlers.TimedRotatingFileHandler(
                filename=log_file_path,
                when='midnight',
                interval=1,
                backupCount=self.config.backup_count,
                encoding='utf-8'
            )
        return logging.FileHandler(filename=log_file_path, encoding='utf-8')


def add_context(**kwargs):
    """
    添加上下文信息（便捷函数）

    只影响当前协程（及其之后创建的子任务）的上下文。

    Args:
        **kwargs: 上下文键值对
    """
    context_data = dict(_log_context.get())
    context_data.update(kwargs)
    _log_context.set(context_data)


def clear_context():
    """清除当前协程的上下文信息"""
    _log_context.set({})


def current_context() -> Dict[str, Any]:
    """返回当前协程上下文的副本"""
    return dict(_log_context.get())
