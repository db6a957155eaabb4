"""pkgr 日志配置

支持普通文本和结构化 JSON 两种输出格式，统一输出到 stderr，
以免与 CLI 的 stdout 结果输出混在一起。

同步、安装等批处理日志可以通过 extra 附带包与软件源信息:

    logger.warning("同步失败: %s", exc, extra={"package_id": "demo", "source_id": "pageos"})

JSON 格式下这些字段作为独立的键输出，文本格式下追加在消息末尾。
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

# 通过 extra 传入、需要单独输出的上下文字段
CONTEXT_FIELDS = ("package_id", "version", "source_id", "batch")

# 第三方库的调试日志对使用者没有意义
_QUIET_LOGGERS = ("filelock", "werkzeug", "urllib3")


def _context(record: logging.LogRecord) -> dict[str, str]:
    return {
        key: str(getattr(record, key))
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """结构化 JSON 日志格式器，便于脚本或日志平台消费

    输出格式:
        {
            "timestamp": "2024-01-01T12:00:00+00:00",
            "level": "WARNING",
            "logger": "pkgr.core.sync",
            "message": "log message",
            "module": "sync",
            "function": "apply",
            "line": 42,
            "package_id": "demo",              (仅在通过 extra 传入时)
            "exception": "traceback..."         (仅在有异常时)
        }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            # 使用 record.created，记录事件发生时间而非格式化时间
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        log_entry.update(_context(record))
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """人类可读格式，有上下文字段时以 key=value 追加"""

    def __init__(self) -> None:
        super().__init__("%(asctime)s [%(levelname)-7s] %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        context = _context(record)
        if context:
            text += " (" + " ".join(f"{k}={v}" for k, v in context.items()) + ")"
        return text


def setup_logging(level: str = "WARNING", json_output: bool = False) -> None:
    """配置根日志器

    参数:
        level: 日志级别字符串（DEBUG, INFO, WARNING, ERROR, CRITICAL），无法识别时用 WARNING
        json_output: 为 True 时使用 JSON 格式，否则使用人类可读格式

    说明:
        - 输出到 stderr
        - 自动清理已有 handlers，避免重复输出
        - 第三方库日志最低为 WARNING，除非整体级别设为 DEBUG

    示例:
        >>> setup_logging("DEBUG")
        >>> setup_logging("INFO", json_output=True)
    """
    reset_logging()

    root = logging.getLogger()
    resolved = getattr(logging, level.upper(), None)
    if not isinstance(resolved, int):
        resolved = logging.WARNING
    root.setLevel(resolved)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if json_output else TextFormatter())
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(
            logging.DEBUG if resolved <= logging.DEBUG else logging.WARNING
        )


def reset_logging() -> None:
    """清理根日志器上已注册的 handlers，恢复到未配置状态"""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
