"""
资源监控模块 - 定期记录代理服务器的资源使用情况

功能:
1. 采集进程的内存、文件描述符和线程数量
2. 采集服务器的活跃/累计/被拒绝会话数
3. 超过阈值时输出告警日志

只写日志，不提供任何查询接口。
"""

import asyncio
import logging
import os
from datetime import datetime
from typing import Dict, List, Optional

import psutil

logger = logging.getLogger('socks5-proxy-monitor')


class ResourceMonitor:
    """资源监控器"""

    def __init__(self, server, check_interval: float = 60):
        """
        初始化资源监控器

        参数:
            server: Socks5Server 实例，提供会话计数
            check_interval: 检查间隔 (秒)
        """
        self.server = server
        self.check_interval = check_interval
        self.process = psutil.Process(os.getpid())

        # 告警阈值
        self.thresholds = {
            'memory_mb': 500,   # 内存阈值: 500MB
            'num_fds': 1000,    # 文件描述符阈值
        }

    def get_process_stats(self) -> Optional[Dict]:
        """
        获取进程统计信息

        返回:
            Dict: 统计信息，进程不可访问时返回 None
        """
        try:
            memory_info = self.process.memory_info()
            return {
                'memory_mb': memory_info.rss / 1024 / 1024,
                'num_threads': self.process.num_threads(),
                'num_fds': self.process.num_fds() if hasattr(self.process, 'num_fds') else 0,
            }
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return None

    def check_thresholds(self, stats: Dict) -> List[str]:
        """
        检查是否超过阈值

        返回:
            List[str]: 告警信息列表
        """
        warnings = []

        if stats['active_sessions'] >= stats['max_sessions']:
            warnings.append(f"活跃会话已达上限: {stats['active_sessions']}/{stats['max_sessions']}")

        if stats['memory_mb'] > self.thresholds['memory_mb']:
            warnings.append(f"内存使用过高: {stats['memory_mb']:.2f} MB > {self.thresholds['memory_mb']} MB")

        if stats['num_fds'] > self.thresholds['num_fds']:
            warnings.append(f"文件描述符过多: {stats['num_fds']} > {self.thresholds['num_fds']}")

        return warnings

    def monitor_once(self) -> Dict:
        """
        执行一次监控检查并写日志

        返回:
            Dict: 监控结果
        """
        process_stats = self.get_process_stats() or {'memory_mb': 0, 'num_threads': 0, 'num_fds': 0}
        result = {
            'timestamp': datetime.now(),
            'active_sessions': self.server.active_sessions,
            'max_sessions': self.server.limiter.max_sessions,
            'total_sessions': self.server.total_sessions,
            'rejected_sessions': self.server.rejected_sessions,
            **process_stats,
        }
        result['warnings'] = self.check_thresholds(result)

        logger.info(f"会话统计: 活跃={result['active_sessions']}/{result['max_sessions']}, "
                    f"总计={result['total_sessions']}, "
                    f"拒绝={result['rejected_sessions']}, "
                    f"文件描述符={result['num_fds']}, "
                    f"线程={result['num_threads']}, "
                    f"内存={result['memory_mb']:.1f}MB")
        for warning in result['warnings']:
            logger.warning(warning)
        return result

    async def monitor_loop(self):
        """持续监控，直到任务被取消"""
        while True:
            await asyncio.sleep(self.check_interval)
            try:
                self.monitor_once()
            except psutil.Error as e:
                logger.error(f"采集资源统计时出错: {e}")
