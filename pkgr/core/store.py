"""包存储 — packages/<id>/<version>/ 目录树 + packages/<id>/versions.txt

Store 与 Ledger 按包 ID 共同构成"已安装了什么"的权威来源。
版本目录只经由事务协调器（transaction.py）创建：暂存目录整体 rename 到位，
不会出现只拷贝了一半的可见目录。以 "." 开头的目录（暂存中转、回收站）
永远不被视为版本。
"""

from __future__ import annotations

import contextlib
import errno
import logging
import os
import shutil
import uuid
from collections.abc import Iterator
from pathlib import Path

from pkgr.core.exceptions import (
    AlreadyExistsError,
    LedgerInconsistentError,
    NotFoundError,
    StorageExhaustedError,
    ValidationError,
)
from pkgr.core.ledger import LEDGER_FILENAME, VersionLedger
from pkgr.core.metadata import METADATA_FILENAME, PackageMetadata, validate_token

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def storage_errors(action: str) -> Iterator[None]:
    """把磁盘空间耗尽的 OSError 转换为 StorageExhaustedError"""
    try:
        yield
    except OSError as e:
        if e.errno in (errno.ENOSPC, errno.EDQUOT):
            raise StorageExhaustedError(f"{action}: 本地存储空间不足 ({e})") from e
        raise


class PackageStore:
    """磁盘上的包存储"""

    def __init__(self, packages_dir: Path) -> None:
        self.packages_dir = packages_dir

    # ---- 路径 ----

    def package_dir(self, package_id: str) -> Path:
        return self.packages_dir / validate_token(package_id, "包 ID")

    def version_dir(self, package_id: str, version: str) -> Path:
        return self.package_dir(package_id) / validate_token(version, "版本号")

    def ledger_path(self, package_id: str) -> Path:
        return self.package_dir(package_id) / LEDGER_FILENAME

    # ---- 查询 ----

    def has_version(self, package_id: str, version: str) -> bool:
        return self.version_dir(package_id, version).is_dir()

    def list_package_ids(self) -> list[str]:
        if not self.packages_dir.is_dir():
            return []
        return sorted(
            d.name for d in self.packages_dir.iterdir()
            if d.is_dir() and not d.name.startswith(".")
        )

    def list_version_dirs(self, package_id: str) -> list[str]:
        base = self.package_dir(package_id)
        if not base.is_dir():
            return []
        return sorted(
            d.name for d in base.iterdir()
            if d.is_dir() and not d.name.startswith(".")
        )

    def load_ledger(self, package_id: str) -> VersionLedger:
        return VersionLedger.load(self.ledger_path(package_id), package_id)

    def read_metadata(self, package_id: str, version: str) -> PackageMetadata:
        vdir = self.version_dir(package_id, version)
        if not vdir.is_dir():
            raise NotFoundError(f"版本不存在: {package_id}@{version}")
        return PackageMetadata.load(vdir / METADATA_FILENAME)

    def check_consistency(self, package_id: str, ledger: VersionLedger | None = None) -> VersionLedger:
        """校验版本清单与磁盘版本目录一一对应

        Raises:
            LedgerInconsistentError: 清单条目没有目录，或目录不在清单中
        """
        ledger = ledger if ledger is not None else self.load_ledger(package_id)
        on_disk = set(self.list_version_dirs(package_id))
        listed = set(ledger.versions)
        if on_disk != listed:
            missing = sorted(listed - on_disk)
            orphaned = sorted(on_disk - listed)
            raise LedgerInconsistentError(
                f"版本清单与存储不一致: {package_id} "
                f"(清单中缺少目录: {missing or '无'}, 未登记目录: {orphaned or '无'})。"
                "请运行 `pkgr repo update local --repair` 修复"
            )
        return ledger

    # ---- 变更（仅供事务协调器调用） ----

    def add_version(
        self, package_id: str, version: str, staged_dir: Path, metadata: PackageMetadata,
    ) -> Path:
        """把已校验的暂存目录整体移动到 packages/<id>/<version>/

        同一文件系统上使用 rename；跨文件系统时先拷贝到包目录内的隐藏中转目录，
        再 rename 到位，保证最终目录要么完整可见、要么不存在。
        """
        if metadata.id != package_id or metadata.version != version:
            raise ValidationError(
                f"元数据与目标不符: {metadata.id}@{metadata.version} != {package_id}@{version}"
            )
        dest = self.version_dir(package_id, version)
        if dest.exists():
            raise AlreadyExistsError(f"版本目录已存在: {package_id}@{version}")

        with storage_errors(f"提交 {package_id}@{version}"):
            dest.parent.mkdir(parents=True, exist_ok=True)
            try:
                os.rename(staged_dir, dest)
            except OSError as e:
                if e.errno != errno.EXDEV:
                    raise
                incoming = dest.parent / f".{version}.incoming-{uuid.uuid4().hex[:8]}"
                try:
                    shutil.copytree(staged_dir, incoming)
                    os.rename(incoming, dest)
                finally:
                    shutil.rmtree(incoming, ignore_errors=True)
                shutil.rmtree(staged_dir, ignore_errors=True)

        logger.info("已提交: %s@%s -> %s", package_id, version, dest)
        return dest

    def detach_version(self, package_id: str, version: str) -> Path:
        """把版本目录 rename 为隐藏的回收站目录，返回回收站路径"""
        src = self.version_dir(package_id, version)
        if not src.is_dir():
            raise NotFoundError(f"版本目录不存在: {package_id}@{version}")
        trash = src.parent / f".{version}.trash-{uuid.uuid4().hex[:8]}"
        os.rename(src, trash)
        return trash

    def restore_version(self, trash: Path, package_id: str, version: str) -> None:
        os.rename(trash, self.version_dir(package_id, version))

    @staticmethod
    def purge(trash: Path) -> None:
        shutil.rmtree(trash, ignore_errors=True)

    def remove_package_dir(self, package_id: str) -> None:
        """删除整个包目录（含 versions.txt）"""
        pdir = self.package_dir(package_id)
        if pdir.exists():
            shutil.rmtree(pdir)
            logger.info("已删除包目录: %s", pdir)
