"""JSON / TOML 文件统一读写工具

集中管理 index.json、metadata.json、config.toml 的序列化/反序列化。
统一 encoding="utf-8"、目录自动创建、原子写入（先写临时文件再 rename），
保证并发的只读命令永远看不到写了一半的文件。
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import tomllib
from pathlib import Path
from typing import Any

import tomli_w

logger = logging.getLogger(__name__)

# 单个结构化文件最大大小限制 (10MB)，防止异常大文件导致内存耗尽
MAX_FILE_SIZE = 10 * 1024 * 1024


def atomic_write(path: Path, content: str, mode: int | None = None) -> None:
    """原子写入文件：先写临时文件再 rename，防止中途崩溃导致损坏

    参数:
        path: 目标文件路径
        content: 要写入的内容
        mode: 可选的文件权限（如 0o600），在 rename 之前设置

    实现:
        1. 在同目录创建临时文件
        2. 写入内容并 fsync
        3. os.replace 原子性地替换目标文件
        4. 如果失败，清理临时文件
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=".", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(tmp, mode)
        os.replace(tmp, str(path))
    except BaseException:
        # 取消（KeyboardInterrupt）时同样不留下临时文件
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def _read_text(path: Path) -> str:
    size = path.stat().st_size
    if size > MAX_FILE_SIZE:
        raise ValueError(
            f"文件过大: {path} ({size} 字节), 超过限制 {MAX_FILE_SIZE} 字节"
        )
    return path.read_text(encoding="utf-8")


def dumps_json(data: Any) -> str:
    """确定性 JSON 序列化：2 空格缩进、保留 Unicode、以换行结尾"""
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def load_json(path: str | Path) -> Any:
    """读取 JSON 文件

    异常:
        FileNotFoundError: 文件不存在
        json.JSONDecodeError: JSON 格式错误
    """
    p = Path(path)
    try:
        return json.loads(_read_text(p))
    except json.JSONDecodeError as e:
        logger.error("解析 JSON 文件失败: %s, 错误: %s", p, e)
        raise


def save_json(path: str | Path, data: Any) -> None:
    """原子写入 JSON 文件"""
    atomic_write(Path(path), dumps_json(data))


def load_toml(path: str | Path) -> dict[str, Any]:
    """读取 TOML 文件，返回字典

    异常:
        FileNotFoundError: 文件不存在
        tomllib.TOMLDecodeError: TOML 格式错误
    """
    p = Path(path)
    try:
        return tomllib.loads(_read_text(p))
    except tomllib.TOMLDecodeError as e:
        logger.error("解析 TOML 文件失败: %s, 错误: %s", p, e)
        raise


def save_toml(path: str | Path, data: dict[str, Any], mode: int | None = None) -> None:
    """原子写入 TOML 文件"""
    atomic_write(Path(path), tomli_w.dumps(data), mode=mode)
