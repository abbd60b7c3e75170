"""Tests for the logging setup and per-session log context."""

import asyncio
import logging

import pytest

from logger import (
    ContextFilter, LogConfig, LogFormatter, LoggerManager, SizedTimedRotatingFileHandler,
    add_context, clear_context, current_context
)


def _record(msg: str = "hello") -> logging.LogRecord:
    return logging.LogRecord("test", logging.INFO, __file__, 1, msg, None, None)


def test_context_filter_without_context_uses_placeholder() -> None:
    async def main():
        record = _record()
        ContextFilter(["session_id", "client"]).filter(record)
        return record.context

    assert asyncio.run(main()) == "session_id=- | client=-"


def test_context_is_isolated_between_tasks() -> None:
    context_filter = ContextFilter(["session_id"])

    async def session(session_id: int, started: asyncio.Event, other_started: asyncio.Event):
        add_context(session_id=session_id)
        started.set()
        await other_started.wait()
        record = _record()
        context_filter.filter(record)
        return record.context

    async def main():
        a, b = asyncio.Event(), asyncio.Event()
        return await asyncio.gather(session(1, a, b), session(2, b, a))

    assert asyncio.run(main()) == ["session_id=1", "session_id=2"]


def test_add_context_merges_and_clear_resets() -> None:
    async def main():
        add_context(session_id=7)
        add_context(client="1.2.3.4:5")
        merged = current_context()
        clear_context()
        return merged, current_context()

    merged, cleared = asyncio.run(main())
    assert merged == {"session_id": 7, "client": "1.2.3.4:5"}
    assert cleared == {}


def test_log_config_from_dict() -> None:
    config = LogConfig.from_dict({"level": "DEBUG", "enable_file": True, "log_dir": "/tmp/x"})
    assert config.level == "DEBUG"
    assert config.enable_file is True
    assert config.log_dir == "/tmp/x"
    assert config.context_fields == ["session_id", "client"]


def test_log_config_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.setenv("LOG_ENABLE_CONSOLE", "false")
    config = LogConfig.from_dict({"level": "DEBUG", "enable_console": True})
    assert config.level == "WARNING"
    assert config.enable_console is False


def test_formatter_tolerates_missing_context() -> None:
    formatter = LogFormatter(fmt="%(levelname)s [%(context)s] %(message)s")
    assert formatter.format(_record("msg")) == "INFO [-] msg"


def test_formatter_color_does_not_leak_into_record() -> None:
    formatter = LogFormatter(fmt="%(levelname)s %(message)s", use_color=True)
    record = _record()
    assert "\033[32m" in formatter.format(record)
    assert record.levelname == "INFO"


def test_initialize_writes_context_to_file(tmp_path, restore_root_logger) -> None:
    config = LogConfig(
        level="DEBUG",
        log_dir=str(tmp_path / "logs"),
        enable_console=False,
        enable_file=True,
        format_string="[%(context)s] %(message)s",
    )
    LoggerManager().initialize(config=config)

    async def main():
        add_context(session_id=3, client="10.0.0.1:4000")
        logging.getLogger("socks5-proxy-session").info("negotiated")

    asyncio.run(main())
    for handler in logging.getLogger().handlers:
        handler.flush()

    content = (tmp_path / "logs" / "socks5-proxy.log").read_text(encoding="utf-8")
    assert "[session_id=3 | client=10.0.0.1:4000] negotiated" in content


def test_size_and_date_rotation_keeps_backup_count(tmp_path) -> None:
    path = tmp_path / "proxy.log"
    handler = SizedTimedRotatingFileHandler(str(path), max_bytes=300, backup_count=3, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(message)s"))
    log = logging.getLogger("socks5-proxy-rotation-test")
    log.propagate = False
    log.addHandler(handler)
    try:
        for i in range(30):
            log.warning(f"{i:02d} " + "x" * 96)
    finally:
        log.removeHandler(handler)
        handler.close()

    backups = sorted(p.name for p in tmp_path.glob("proxy.log.*"))
    assert 1 <= len(backups) <= 3
    assert all(name.startswith("proxy.log.2") for name in backups)
    assert path.stat().st_size <= 300
    assert "29 " in path.read_text(encoding="utf-8")


def test_both_rotation_type_selects_size_and_date_handler(tmp_path, restore_root_logger) -> None:
    config = LogConfig(log_dir=str(tmp_path), enable_console=False, enable_file=True, rotation_type="both")
    LoggerManager().initialize(config=config)
    handlers = [h for h in logging.getLogger().handlers if isinstance(h, SizedTimedRotatingFileHandler)]
    assert len(handlers) == 1
    assert handlers[0].max_bytes == config.max_bytes
