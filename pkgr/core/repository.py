"""仓库管理

RepoManager 是所有仓库命令的入口：

    repo = RepoManager.init("~/pkgr-repo")
    repo.add_package("./my-app")
    repo.install_package("pageos:demo")
    repo.sync("pageos", mirror=True)

变更操作都在仓库锁内执行；list / info 等查询不取锁。
需要确认的命令拆成 plan_xxx()（纯计算，返回 ChangeSet）和 apply()。
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from pkgr.core import integrity
from pkgr.core.changes import (
    INSTALL,
    REMOVE,
    Change,
    ChangeSet,
    plan_clean,
    plan_remove,
    plan_upgrade,
)
from pkgr.core.config import (
    ConfigManager,
    RepositoryConfig,
    SourceConfig,
    expand_path,
)
from pkgr.core.context import DEFAULT_LOCK_TIMEOUT, RepoContext
from pkgr.core.exceptions import (
    AlreadyExistsError,
    LedgerInconsistentError,
    NotFoundError,
    PkgrError,
    ValidationError,
)
from pkgr.core.index import GlobalIndex, IndexBuilder, IndexEntry
from pkgr.core.ledger import VersionLedger
from pkgr.core.lock import RepoLock
from pkgr.core.metadata import METADATA_FILENAME, PackageMetadata
from pkgr.core.store import PackageStore
from pkgr.core.sync import BatchReport, SyncEngine, SyncPlan, TransportFactory
from pkgr.core.transaction import TransactionCoordinator
from pkgr.core.transport import SourceTransport, resolve_location

logger = logging.getLogger(__name__)

DEFAULT_KEEP = 2


def parse_package_spec(spec: str) -> tuple[str | None, str, str | None]:
    """解析 id / source:id / source:id:version

    Returns:
        (source_id, package_id, version)，未给出的部分为 None
    """
    parts = spec.split(":")
    if any(not p for p in parts) or len(parts) > 3:
        raise ValidationError(f"无法解析包描述 '{spec}'，请使用 id、source:id 或 source:id:version")
    if len(parts) == 1:
        return None, parts[0], None
    if len(parts) == 2:
        return parts[0], parts[1], None
    return parts[0], parts[1], parts[2]


class RepoManager:
    """单个仓库的生命周期与包管理操作"""

    def __init__(
        self,
        ctx: RepoContext,
        transport_factory: TransportFactory = SourceTransport,
    ) -> None:
        self.ctx = ctx
        self.transport_factory = transport_factory
        self.store = PackageStore(ctx.packages_dir)
        self.index = IndexBuilder(ctx, self.store)

    # ---- 生命周期 ----

    @classmethod
    def init(
        cls,
        root: str | Path,
        cache_dir: str | None = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ) -> RepoManager:
        """创建空仓库：packages/、config.toml、空的 index.json"""
        root = expand_path(root)
        config_path = root / "config.toml"
        if config_path.exists():
            raise AlreadyExistsError(f"仓库已存在: {root}")

        root.mkdir(parents=True, exist_ok=True)
        config = RepositoryConfig()
        if cache_dir is not None:
            config.cache_dir = str(expand_path(cache_dir))
        ConfigManager(config_path).save(config)

        ctx = RepoContext(root=root, cache_dir=expand_path(config.cache_dir),
                          lock_timeout=lock_timeout)
        ctx.packages_dir.mkdir(exist_ok=True)
        repo = cls(ctx)
        repo.index.save(GlobalIndex())
        logger.info("已初始化仓库: %s", root)
        return repo

    @classmethod
    def new(cls, name: str, base_dir: str | Path, cache_dir: str | None = None) -> RepoManager:
        return cls.init(expand_path(base_dir) / name, cache_dir=cache_dir)

    @classmethod
    def open(
        cls,
        root: str | Path,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        transport_factory: TransportFactory = SourceTransport,
    ) -> RepoManager:
        return cls(RepoContext.open(root, lock_timeout), transport_factory)

    @property
    def config(self) -> RepositoryConfig:
        return self.ctx.config_manager().load()

    @contextmanager
    def locked(self) -> Iterator[RepoLock]:
        with RepoLock(self.ctx.lock_path, self.ctx.lock_timeout) as lock:
            yield lock

    def _coordinator(self, lock: RepoLock) -> TransactionCoordinator:
        return TransactionCoordinator(self.ctx, lock, self.store, self.index)

    def _engine(self, lock: RepoLock) -> SyncEngine:
        return SyncEngine(self.ctx, lock, self.transport_factory)

    def installed_versions(self) -> dict[str, list[str]]:
        return {
            pid: self.store.load_ledger(pid).versions
            for pid in self.store.list_package_ids()
        }

    def _ledger(self, package_id: str) -> VersionLedger:
        ledger = self.store.load_ledger(package_id)
        if not ledger:
            raise NotFoundError(f"未安装: {package_id}")
        return ledger

    # ---- 查询 ----

    def list_packages(self, section: str = "packages", text: str | None = None) -> list[IndexEntry]:
        return self.index.query(section=section, text=text)

    def info(self, package_id: str) -> dict:
        """已安装版本、最新版本元数据与软件源中的条目"""
        installed = self.index.query("packages", package_id=package_id)
        advertised = self.index.query("source", package_id=package_id)
        if not installed and not advertised:
            raise NotFoundError(f"未找到包: {package_id}")
        result: dict = {
            "id": package_id,
            "versions": self.store.load_ledger(package_id).versions,
            "installed": installed[0].to_dict() if installed else None,
            "source": advertised[0].to_dict() if advertised else None,
        }
        if installed:
            meta = self.store.read_metadata(package_id, installed[0].latest_version)
            result["metadata"] = meta.to_dict()
        return result

    # ---- 包来源解析 ----

    def _advertised(self) -> dict[str, tuple[SourceConfig, IndexEntry]]:
        """包 ID → (软件源, 条目)，同一 ID 以配置中靠后的启用软件源为准"""
        found: dict[str, tuple[SourceConfig, IndexEntry]] = {}
        for src in self.config.enabled_sources():
            for entry in self.index.snapshots.load(src.id):
                found[entry.id] = (src, entry)
        return found

    def resolve(self, spec: str, version: str | None = None) -> tuple[SourceConfig, IndexEntry]:
        """把包描述解析为 (软件源, 待安装条目)"""
        source_id, package_id, spec_version = parse_package_spec(spec)
        version = spec_version or version
        config = self.config

        if source_id is None:
            source = next(
                (s for s in config.enabled_sources()
                 if any(e.id == package_id for e in self.index.snapshots.load(s.id))),
                None,
            )
            if source is None:
                raise NotFoundError(
                    f"没有启用的软件源提供 {package_id}，请先运行 `pkgr repo update`"
                )
        else:
            source = config.get_source(source_id)

        entry = next(
            (e for e in self.index.snapshots.load(source.id) if e.id == package_id), None,
        )
        if version is None:
            if entry is None:
                raise NotFoundError(f"软件源 {source.id} 中未找到包: {package_id}")
            return source, entry
        if entry is not None and entry.latest_version == version:
            return source, entry

        # 软件源列表只给出最新版本，其他版本按标准布局定位
        location = resolve_location(source.url, f"./packages/{package_id}/{version}")
        base = entry or IndexEntry(id=package_id)
        return source, IndexEntry(
            id=package_id,
            name=base.name,
            icon=base.icon,
            author=base.author,
            latest_version=version,
            description=base.description,
            location=location,
        )

    # ---- 变更集 ----

    def plan_install(self, spec: str, version: str | None = None) -> ChangeSet:
        source, entry = self.resolve(spec, version)
        ledger = self.store.load_ledger(entry.id)
        if entry.latest_version in ledger:
            raise AlreadyExistsError(f"版本已安装: {entry.id}@{entry.latest_version}")
        previous = ledger.latest() if ledger else None
        return ChangeSet([Change(
            INSTALL, entry.id, entry.latest_version, previous, entry, source.id,
        )])

    def plan_remove(self, package_id: str, version: str | None = None) -> ChangeSet:
        ledger = self._ledger(package_id)
        if version is not None and version not in ledger:
            raise NotFoundError(f"版本不存在: {package_id}@{version}")
        return plan_remove(package_id, ledger.versions, version)

    def plan_upgrade(self, package_id: str | None = None) -> ChangeSet:
        installed = self.installed_versions()
        advertised = self._advertised()
        if package_id is not None:
            self._ledger(package_id)
            if package_id not in advertised:
                raise NotFoundError(f"没有启用的软件源提供 {package_id}")
        changes = plan_upgrade(installed, [e for _, e in advertised.values()], package_id)
        for change in changes:
            change.source_id = advertised[change.package_id][0].id
        return changes

    def plan_clean(self, keep: int = DEFAULT_KEEP) -> ChangeSet:
        return plan_clean(self.installed_versions(), keep)

    def apply(self, changes: ChangeSet, *, batch: bool = False, name: str = "应用变更") -> BatchReport:
        """按顺序应用 INSTALL / REMOVE 变更

        batch=False 时第一个错误直接抛出；batch=True 时逐个记录失败并继续，
        遇到致命错误中止剩余部分。
        """
        report = BatchReport(name)
        if changes.is_empty:
            return report
        config = self.config
        with self.locked() as lock:
            coordinator = self._coordinator(lock)
            for change in changes:
                try:
                    lock.ensure_held()
                    self._apply_one(coordinator, config, change)
                except PkgrError as e:
                    if not batch:
                        raise
                    report.fail(change.package_id, e)
                    if e.fatal:
                        report.aborted = e
                        break
                    continue
                report.done.append(f"{change.package_id}@{change.version}")
        report.log()
        return report

    def _apply_one(
        self, coordinator: TransactionCoordinator, config: RepositoryConfig, change: Change,
    ) -> None:
        if change.action == REMOVE:
            coordinator.remove(change.package_id, change.version)
        elif change.action == INSTALL:
            transport = self.transport_factory(config.get_source(change.source_id))
            entry = change.entry
            meta = transport.fetch_metadata(entry)
            coordinator.install(meta, lambda staged: transport.fetch_files(entry, meta, staged))
        else:
            raise ValidationError(f"不支持的变更: {change.action}")

    # ---- 包操作 ----

    def add_package(self, package_path: str | Path) -> Path:
        """把本地包目录（metadata.json + all_files）加入仓库"""
        package_path = expand_path(package_path)
        meta = PackageMetadata.load(package_path / METADATA_FILENAME)
        if not meta.all_files:
            raise ValidationError("metadata.all_files 必须至少包含一项")
        # 先在源目录上校验一遍，给出比暂存区更直观的错误
        integrity.verify(package_path, meta)
        with self.locked() as lock:
            return self._coordinator(lock).install_from_dir(meta, package_path)

    def install_package(self, spec: str, version: str | None = None) -> BatchReport:
        return self.apply(self.plan_install(spec, version), name=f"安装 {spec}")

    def remove_package(self, package_id: str, version: str | None = None) -> BatchReport:
        return self.apply(self.plan_remove(package_id, version), name=f"删除 {package_id}")

    def upgrade(self, package_id: str | None = None) -> BatchReport:
        return self.apply(self.plan_upgrade(package_id), batch=True, name="升级")

    def clean(self, keep: int = DEFAULT_KEEP) -> BatchReport:
        """删除旧版本（保留最新 keep 个）、清空本仓库的暂存区与软件源快照、清空索引 source 部分

        共用 cache_dir 的其他仓库不受影响。
        """
        report = self.apply(self.plan_clean(keep), name="清理")
        with self.locked():
            for path in (self.ctx.staging_dir, self.ctx.snapshots_dir):
                if path.exists():
                    shutil.rmtree(path)
                    logger.info("已清空: %s", path)
            self.index.patch_source()
        return report

    # ---- 索引 ----

    def update_source_index(self) -> BatchReport:
        """刷新所有启用软件源的列表快照，并重新推导索引 source 部分"""
        report = BatchReport("更新软件源索引")
        with self.locked() as lock:
            engine = self._engine(lock)
            for source in self.config.enabled_sources():
                try:
                    engine.refresh(source)
                except PkgrError as e:
                    report.fail(source.id, e)
                    if e.fatal:
                        report.aborted = e
                        break
                    continue
                report.done.append(source.id)
        report.log()
        return report

    def repair_ledgers(self) -> list[str]:
        """以包存储为准修正版本清单，返回被修改的包 ID

        保留清单中仍有目录的版本的原有顺序，未登记的目录按名称追加到末尾。
        """
        changed = []
        for package_id in self.store.list_package_ids():
            path = self.store.ledger_path(package_id)
            try:
                ledger = self.store.load_ledger(package_id)
                listed = ledger.versions
            except LedgerInconsistentError:
                # 重复条目：按首次出现去重
                listed = list(dict.fromkeys(
                    v.strip() for v in path.read_text(encoding="utf-8").splitlines() if v.strip()
                ))
            on_disk = self.store.list_version_dirs(package_id)
            repaired = [v for v in listed if v in on_disk]
            repaired += [v for v in on_disk if v not in repaired]
            if repaired == listed and repaired:
                continue
            if repaired:
                VersionLedger(package_id, repaired).save(path)
            else:
                self.store.remove_package_dir(package_id)
            changed.append(package_id)
            logger.warning("已修复版本清单: %s %s -> %s", package_id, listed, repaired)
        return changed

    def update_local_index(self, repair: bool = False) -> GlobalIndex:
        with self.locked():
            if repair:
                self.repair_ledgers()
            return self.index.generate_global_index()

    # ---- 同步 ----

    def plan_sync(self, source_id: str | None = None, mirror: bool = False) -> list[SyncPlan]:
        """拉取软件源列表并计算同步变更集；不指定软件源时针对所有启用的软件源"""
        config = self.config
        sources = [config.get_source(source_id)] if source_id else config.enabled_sources()
        if not sources:
            raise NotFoundError("没有启用的软件源")
        engine = SyncEngine(self.ctx, None, self.transport_factory)
        return [engine.plan(s, mirror=mirror) for s in sources]

    def apply_sync(self, plans: list[SyncPlan]) -> list[BatchReport]:
        reports = []
        with self.locked() as lock:
            engine = self._engine(lock)
            for plan in plans:
                report = engine.apply(plan)
                reports.append(report)
                if report.aborted is not None:
                    break
        return reports

    def sync(self, source_id: str | None = None, mirror: bool = False) -> list[BatchReport]:
        return self.apply_sync(self.plan_sync(source_id, mirror))

    # ---- 软件源管理 ----

    def _reindex_sources(self, config: RepositoryConfig) -> None:
        self.index.patch_source(config)

    def add_source(self, source: SourceConfig) -> RepositoryConfig:
        with self.locked():
            config = self.ctx.config_manager().add_source(source)
            self._reindex_sources(config)
        return config

    def remove_source(self, source_id: str) -> RepositoryConfig:
        with self.locked():
            config = self.ctx.config_manager().remove_source(source_id)
            self.index.snapshots.delete(source_id)
            self._reindex_sources(config)
        return config

    def set_source_enabled(self, source_id: str, enabled: bool) -> RepositoryConfig:
        with self.locked():
            config = self.ctx.config_manager().set_enabled(source_id, enabled)
            self._reindex_sources(config)
        return config
