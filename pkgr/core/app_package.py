"""应用包编写 — app init / new / add / remove

在包目录中维护 metadata.json：初始化骨架，把文件（或整个目录）连同 SHA-256
登记到 all_files，或从 all_files 中移除。
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pkgr.core.config import expand_path
from pkgr.core.exceptions import NotFoundError, ValidationError
from pkgr.core.integrity import hash_file
from pkgr.core.metadata import METADATA_FILENAME, PackageMetadata, validate_token

logger = logging.getLogger(__name__)

GITIGNORE_CONTENT = "/target/"


def init(package_path: str | Path) -> Path:
    """在目录中初始化应用包；已有的 metadata.json 和 .gitignore 不会被覆盖"""
    package_path = expand_path(package_path).absolute()
    package_path.mkdir(parents=True, exist_ok=True)

    metadata_path = package_path / METADATA_FILENAME
    if not metadata_path.exists():
        package_id = validate_token(package_path.name, "包 ID")
        PackageMetadata(
            name=package_id,
            id=package_id,
            version="0.0.0",
            description="A PageOS web application",
            author="Unknown",
            type="webapp",
            category="utility",
            entry="index.html",
        ).save(metadata_path)
        logger.info("已创建: %s", metadata_path)

    gitignore = package_path / ".gitignore"
    if not gitignore.exists():
        gitignore.write_text(GITIGNORE_CONTENT, encoding="utf-8")
    return package_path


def new(package_id: str, base_dir: str | Path) -> Path:
    """创建以包 ID 命名的目录并初始化"""
    validate_token(package_id, "包 ID")
    return init(expand_path(base_dir) / package_id)


def _load(package_path: Path) -> PackageMetadata:
    metadata_path = package_path / METADATA_FILENAME
    if not metadata_path.exists():
        raise NotFoundError(f"不是应用包目录（缺少 {METADATA_FILENAME}）: {package_path}")
    return PackageMetadata.load(metadata_path)


def _relative(path: Path, package_root: Path) -> str:
    try:
        rel = path.relative_to(package_root)
    except ValueError:
        raise ValidationError(f"文件路径 {path} 不在包目录 {package_root} 内") from None
    return rel.as_posix()


def _walk(directory: Path) -> list[Path]:
    """递归列出目录下的文件，跳过以 . 开头的文件和目录"""
    files = []
    for dirpath, dirnames, filenames in os.walk(directory):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        files.extend(
            Path(dirpath) / f for f in sorted(filenames) if not f.startswith(".")
        )
    return files


def add_file(path: str | Path, package_path: str | Path = ".") -> list[str]:
    """把文件或目录下的所有文件登记到 all_files，返回登记的相对路径"""
    root = expand_path(package_path).resolve()
    meta = _load(root)
    target = expand_path(path).resolve()
    if not target.exists():
        raise NotFoundError(f"路径不存在: {path}")
    _relative(target, root)

    if target.is_file():
        files = [target]
    elif target.is_dir():
        files = _walk(target)
    else:
        raise ValidationError(f"路径既不是文件也不是目录: {path}")

    added = []
    for file in files:
        rel = _relative(file, root)
        if rel == METADATA_FILENAME:
            continue
        meta.add_file(rel, hash_file(file))
        added.append(rel)
    meta.save(root / METADATA_FILENAME)
    logger.info("已登记 %d 个文件到 %s", len(added), meta.id)
    return added


def remove_file(path: str | Path, package_path: str | Path = ".") -> list[str]:
    """从 all_files 中移除文件，或移除目录下的所有条目；磁盘上的文件不受影响"""
    root = expand_path(package_path).resolve()
    meta = _load(root)
    rel = _relative(expand_path(path).resolve(), root)

    if rel == ".":
        removed = list(meta.all_files)
    else:
        prefix = rel.rstrip("/") + "/"
        removed = [p for p in meta.all_files if p == rel or p.startswith(prefix)]
    if not removed:
        raise NotFoundError(f"文件未登记在 all_files 中: {rel}")
    for p in removed:
        meta.remove_file(p)
    meta.save(root / METADATA_FILENAME)
    logger.info("已从 %s 移除 %d 个文件", meta.id, len(removed))
    return sorted(removed)
