"""事务协调器

安装一个版本:
    1. 把文件写入 <cache_dir>/staging/ 下的暂存目录
    2. 按 metadata.all_files 校验暂存副本
    3. 暂存目录整体 rename 到 packages/<id>/<version>/
    4. 追加版本清单
    5. 修补全局索引 packages 部分

1-2 任何失败（含 KeyboardInterrupt）都会清理暂存区，仓库保持原样。
3 完成后存储变更已持久化，4 或 5 失败报告为 LedgerInconsistentError，不回滚；
恢复方式是 `pkgr repo update local --repair`。

删除一个版本:
    版本目录先 rename 为隐藏回收站 → 写新 versions.txt（失败则把回收站
    rename 回去）→ 删除回收站 → 清单为空时删除整个包目录 → 修补索引
"""

from __future__ import annotations

import logging
import shutil
import uuid
from collections.abc import Callable
from pathlib import Path

from pkgr.core import integrity
from pkgr.core.context import RepoContext
from pkgr.core.exceptions import (
    AlreadyExistsError,
    LedgerInconsistentError,
    NotFoundError,
)
from pkgr.core.index import IndexBuilder
from pkgr.core.ledger import VersionLedger
from pkgr.core.lock import RepoLock
from pkgr.core.metadata import METADATA_FILENAME, PackageMetadata
from pkgr.core.store import PackageStore, storage_errors

logger = logging.getLogger(__name__)

# 把包文件写入暂存目录的回调
FillFn = Callable[[Path], None]


class TransactionCoordinator:
    """包存储 + 版本清单 + 索引的事务化变更"""

    def __init__(
        self,
        ctx: RepoContext,
        lock: RepoLock | None = None,
        store: PackageStore | None = None,
        index: IndexBuilder | None = None,
    ) -> None:
        self.ctx = ctx
        self.lock = lock
        self.store = store or PackageStore(ctx.packages_dir)
        self.index = index or IndexBuilder(ctx, self.store)

    def _ensure_lock(self) -> None:
        if self.lock is not None:
            self.lock.ensure_held()

    def _new_staging(self, meta: PackageMetadata) -> Path:
        staged = self.ctx.staging_dir / f"{meta.id}-{meta.version}-{uuid.uuid4().hex[:8]}"
        staged.mkdir(parents=True)
        return staged

    def install(self, meta: PackageMetadata, fill: FillFn) -> Path:
        """暂存 → 校验 → 提交 → 追加清单 → 修补索引

        Returns:
            提交后的版本目录

        Raises:
            AlreadyExistsError: 版本已安装
            ChecksumMismatchError: 暂存文件缺失或哈希不一致（仓库未被修改）
            LedgerInconsistentError: 提交之后更新清单或索引失败
        """
        package_id, version = meta.id, meta.version
        ledger = self.store.load_ledger(package_id)
        if version in ledger or self.store.has_version(package_id, version):
            raise AlreadyExistsError(f"版本已安装: {package_id}@{version}")

        with storage_errors(f"暂存 {package_id}@{version}"):
            staged = self._new_staging(meta)
            try:
                fill(staged)
                meta.save(staged / METADATA_FILENAME)
                integrity.verify(staged, meta)
                self._ensure_lock()
                dest = self.store.add_version(package_id, version, staged, meta)
            except BaseException:
                shutil.rmtree(staged, ignore_errors=True)
                logger.debug("已丢弃暂存区: %s", staged)
                raise

        try:
            ledger.append(version)
            ledger.save(self.store.ledger_path(package_id))
        except Exception as e:
            raise LedgerInconsistentError(
                f"{package_id}@{version} 已写入存储，但更新版本清单失败: {e}。"
                "请运行 `pkgr repo update local --repair`"
            ) from e
        self._patch_index(package_id)

        logger.info("已安装: %s@%s", package_id, version,
                    extra={"package_id": package_id, "version": version})
        return dest

    def install_from_dir(self, meta: PackageMetadata, src_dir: Path) -> Path:
        """从本地包目录安装（只拷贝 all_files 中列出的文件）"""

        def fill(staged: Path) -> None:
            for rel_path in sorted(meta.all_files):
                src = src_dir / rel_path
                if not src.is_file():
                    # 留给校验步骤报告 ChecksumMismatchError
                    continue
                target = staged / rel_path
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(src, target)

        return self.install(meta, fill)

    def remove(self, package_id: str, version: str) -> VersionLedger:
        """删除一个版本，返回更新后的版本清单"""
        ledger = self.store.check_consistency(package_id)
        if version not in ledger:
            raise NotFoundError(f"版本不存在: {package_id}@{version}")
        remaining = VersionLedger(package_id, [v for v in ledger if v != version])

        self._ensure_lock()
        trash = self.store.detach_version(package_id, version)
        try:
            remaining.save(self.store.ledger_path(package_id))
        except BaseException:
            self.store.restore_version(trash, package_id, version)
            raise
        self.store.purge(trash)
        if not remaining:
            self.store.remove_package_dir(package_id)
        self._patch_index(package_id)

        logger.info("已删除: %s@%s", package_id, version,
                    extra={"package_id": package_id, "version": version})
        return remaining

    def _patch_index(self, package_id: str) -> None:
        try:
            self.index.patch_installed(package_id)
        except Exception as e:
            raise LedgerInconsistentError(
                f"{package_id} 已变更，但更新索引失败: {e}。请运行 `pkgr repo update local`"
            ) from e
