"""完整性校验

严格以 metadata.all_files 为准：清单里的每个文件都必须存在且 SHA-256 一致；
暂存区中清单之外的多余文件被容忍，但不纳入后续生命周期管理。
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

from pkgr.core.exceptions import ChecksumMismatchError, ValidationError
from pkgr.core.metadata import PackageMetadata

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 8192


def hash_file(path: Path) -> str:
    """计算文件内容的 SHA-256（小写十六进制），不做任何规范化"""
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def verify_file(path: Path, expected: str) -> bool:
    """校验单个文件，哈希比较不区分大小写"""
    if not path.is_file():
        return False
    return hash_file(path) == expected.strip().lower()


def verify(staged_dir: Path, metadata: PackageMetadata) -> None:
    """校验暂存目录中的文件与清单一致

    按路径排序逐个检查，遇到第一个缺失或不一致的文件即抛出
    ChecksumMismatchError(path)。

    Raises:
        ValidationError: 清单为空或存在未填充的哈希
        ChecksumMismatchError: 文件缺失或哈希不一致
    """
    if not metadata.all_files:
        raise ValidationError(f"{metadata.id}@{metadata.version}: all_files 必须至少包含一项")
    unhashed = metadata.unhashed_files()
    if unhashed:
        raise ValidationError(
            f"{metadata.id}@{metadata.version}: 存在未计算哈希的文件",
            details=unhashed,
        )

    for rel_path, expected in sorted(metadata.all_files.items()):
        target = staged_dir / rel_path
        if not target.is_file():
            raise ChecksumMismatchError(rel_path, f"文件不存在: {rel_path}")
        actual = hash_file(target)
        if actual != expected.strip().lower():
            raise ChecksumMismatchError(
                rel_path,
                f"文件哈希不匹配: {rel_path} (预期: {expected}, 实际: {actual})",
            )
    logger.debug("校验通过: %s@%s (%d 个文件)",
                 metadata.id, metadata.version, len(metadata.all_files))
