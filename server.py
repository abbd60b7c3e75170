#!/usr/bin/env python3
"""
SOCKS5 代理服务端 - 命令行入口

版本: 1.0.0

协议:
1. 认证方法协商（只支持无认证）
2. CONNECT 命令（BIND / UDP ASSOCIATE 被拒绝）
3. 双向转发，单个会话最长 30 秒

功能:
- 全局并发会话上限
- YAML 配置文件 + 命令行覆盖
- 定期资源统计日志
"""

import argparse
import asyncio
import logging

from config import ServerConfig, load_config, save_config
from logger import LoggerManager
from proxy import Socks5Server

logger = logging.getLogger('socks5-proxy')


def build_config(args: argparse.Namespace, config_data: dict) -> ServerConfig:
    """
    合并配置文件和命令行参数

    Raises:
        ValueError: 合并后的配置非法
    """
    server_conf = dict(config_data.get('server') or {})
    if args.host is not None:
        server_conf['host'] = args.host
    if args.port is not None:
        server_conf['port'] = args.port
    if args.max_sessions is not None:
        server_conf['max_sessions'] = args.max_sessions
    return ServerConfig.from_dict({'server': server_conf})


def main(argv=None):
    """主函数"""
    parser = argparse.ArgumentParser(description='SOCKS5 代理服务端')
    parser.add_argument('--config', '-c', default='config.yaml', help='配置文件路径')
    parser.add_argument('--host', default=None, help='监听地址（覆盖配置文件）')
    parser.add_argument('--port', '-p', type=int, default=None, help='监听端口（覆盖配置文件）')
    parser.add_argument('--max-sessions', type=int, default=None, help='最大并发会话数（覆盖配置文件）')
    parser.add_argument('--debug', '-d', action='store_true', help='启用调试模式')
    parser.add_argument('--save-config', metavar='PATH', default=None,
                        help='将合并后的配置写入文件后退出')
    args = parser.parse_args(argv)

    config_data = load_config(args.config)

    LoggerManager().initialize(config_data=config_data)
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        for handler in logging.getLogger().handlers:
            handler.setLevel(logging.DEBUG)

    try:
        config = build_config(args, config_data)
    except (TypeError, ValueError) as e:
        logger.error(f"配置错误: {e}")
        return 1

    if args.save_config:
        config_data = dict(config_data)
        config_data.update(config.to_dict())
        if not save_config(args.save_config, config_data):
            return 1
        logger.info(f"配置已写入 {args.save_config}")
        return 0

    server = Socks5Server(config)

    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("服务端已停止")
    except OSError as e:
        logger.error(f"无法监听 {config.host}:{config.port}: {e}")
        return 1

    return 0


if __name__ == '__main__':
    exit(main())
