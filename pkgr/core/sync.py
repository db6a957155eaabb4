"""同步引擎 — 增量同步与镜像同步

两种策略都只针对单个软件源：

- incremental_sync: 安装列表中新增或版本号变化的包，更新快照；永不删除任何条目
- mirror_sync: 以软件源当前列表为准，安装缺失/变化的包，并从快照中移除已下架的包

包按顺序逐个处理，每个包是独立的事务。单个包失败（网络、校验）记录后继续；
致命错误（锁丢失、存储耗尽、清单不一致）中止剩余批次。已提交的包不回滚。
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from pkgr.core.changes import DROP, INSTALL, RECORD, Change, ChangeSet, plan_sync
from pkgr.core.config import SourceConfig
from pkgr.core.context import RepoContext
from pkgr.core.exceptions import PkgrError, ValidationError
from pkgr.core.index import IndexBuilder, IndexEntry
from pkgr.core.lock import RepoLock
from pkgr.core.store import PackageStore, storage_errors
from pkgr.core.transaction import TransactionCoordinator
from pkgr.core.transport import SourceTransport

logger = logging.getLogger(__name__)

TransportFactory = Callable[[SourceConfig], SourceTransport]


@dataclass
class BatchReport:
    """一次批处理（同步、更新、升级）的结果汇总"""

    name: str
    done: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)
    aborted: PkgrError | None = None

    @property
    def ok(self) -> bool:
        return not self.failures and self.aborted is None

    def fail(self, key: str, exc: BaseException) -> None:
        self.failures[key] = str(exc)
        logger.warning("%s: %s 失败: %s", self.name, key, exc, extra={"batch": self.name})

    def summary(self) -> str:
        text = f"{self.name}: {len(self.done)} 成功, {len(self.failures)} 失败"
        if self.aborted is not None:
            text += f"，已中止: {self.aborted}"
        return text

    def log(self) -> None:
        if self.ok:
            logger.info("%s", self.summary())
        else:
            logger.warning(
                "%s (%s)", self.summary(), ", ".join(self.failures) or "-",
            )


@dataclass
class SyncPlan:
    source: SourceConfig
    listing: list[IndexEntry]
    cached: list[IndexEntry]
    changes: ChangeSet
    mirror: bool


class SyncEngine:
    """驱动事务协调器完成单个软件源的同步"""

    def __init__(
        self,
        ctx: RepoContext,
        lock: RepoLock | None = None,
        transport_factory: TransportFactory = SourceTransport,
    ) -> None:
        self.ctx = ctx
        self.lock = lock
        self.transport_factory = transport_factory
        self.store = PackageStore(ctx.packages_dir)
        self.index = IndexBuilder(ctx, self.store)
        self.coordinator = TransactionCoordinator(ctx, lock, self.store, self.index)

    def installed_versions(self) -> dict[str, list[str]]:
        return {
            pid: self.store.load_ledger(pid).versions
            for pid in self.store.list_package_ids()
        }

    def plan(self, source: SourceConfig, mirror: bool = False) -> SyncPlan:
        """拉取软件源列表并计算变更集（不修改本地状态）

        Raises:
            NetworkError: 软件源不可达，本地索引保持不变
        """
        if not source.enabled:
            raise ValidationError(f"软件源已禁用: {source.id}")
        listing = self.transport_factory(source).listing()
        cached = self.index.snapshots.load(source.id)
        changes = plan_sync(listing, cached, self.installed_versions(), mirror=mirror)
        return SyncPlan(source, listing, cached, changes, mirror)

    def apply(self, plan: SyncPlan) -> BatchReport:
        """按顺序应用变更集，每完成一个包即更新快照"""
        source = plan.source
        report = BatchReport(f"{'镜像' if plan.mirror else '增量'}同步 {source.id}")
        transport = self.transport_factory(source)
        snapshot = {e.id: e for e in plan.cached}

        for change in plan.changes.of(INSTALL, RECORD):
            try:
                with storage_errors(f"同步 {change.package_id}@{change.version}"):
                    if self.lock is not None:
                        self.lock.ensure_held()
                    if change.action == INSTALL:
                        self._install_missing(transport, change)
                    snapshot[change.package_id] = change.entry
                    self._save_snapshot(source, snapshot)
            except PkgrError as e:
                report.fail(change.package_id, e)
                if e.fatal:
                    report.aborted = e
                    break
                continue
            except OSError as e:
                report.fail(change.package_id, e)
                continue
            report.done.append(change.package_id)

        drops = plan.changes.of(DROP) if plan.mirror else []
        if drops and report.aborted is None:
            for change in drops:
                snapshot.pop(change.package_id, None)
            try:
                with storage_errors(f"更新软件源快照 {source.id}"):
                    self._save_snapshot(source, snapshot)
            except PkgrError as e:
                report.fail(source.id, e)
                report.aborted = e
            else:
                report.done.extend(c.package_id for c in drops)

        report.log()
        return report

    def _install_missing(self, transport: SourceTransport, change: Change) -> None:
        if self.store.has_version(change.package_id, change.version):
            # 目录已存在却不在清单中，是提交后追加清单失败留下的状态，不能当作已安装
            self.store.check_consistency(change.package_id)
            return
        self._install(transport, change)

    def _install(self, transport: SourceTransport, change: Change) -> None:
        entry = change.entry
        logger.info("同步: %s@%s <- %s", entry.id, entry.latest_version, entry.location,
                    extra={"package_id": entry.id, "version": entry.latest_version})
        meta = transport.fetch_metadata(entry)
        self.coordinator.install(meta, lambda staged: transport.fetch_files(entry, meta, staged))

    def _save_snapshot(self, source: SourceConfig, snapshot: dict[str, IndexEntry]) -> None:
        self.index.snapshots.save(source.id, list(snapshot.values()))
        self.index.patch_source()

    def incremental_sync(self, source: SourceConfig) -> BatchReport:
        return self.apply(self.plan(source, mirror=False))

    def mirror_sync(self, source: SourceConfig) -> BatchReport:
        return self.apply(self.plan(source, mirror=True))

    def refresh(self, source: SourceConfig) -> list[IndexEntry]:
        """只更新软件源快照与索引 source 部分，不安装任何包"""
        listing = self.transport_factory(source).listing()
        self.index.snapshots.save(source.id, listing)
        self.index.patch_source()
        return listing
