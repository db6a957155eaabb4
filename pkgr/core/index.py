"""全局索引（index.json）

index.json 是一个物化视图，不是权威数据：

    packages  由包存储 + 各包版本清单的 latest() 推导
    source    由各启用软件源的列表快照（<root>/sources/<sid>.json）推导

generate_global_index() 从零重建；patch_installed() / patch_source() 是增量
优化，二者的结果必须一致（同一状态下字节级相同）。
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pkgr.core.config import RepositoryConfig
from pkgr.core.context import RepoContext
from pkgr.core.exceptions import ConfigError, ValidationError
from pkgr.core.metadata import PackageMetadata
from pkgr.core.store import PackageStore
from pkgr.utils.serde_io import atomic_write, dumps_json, load_json, save_json

logger = logging.getLogger(__name__)

SECTIONS = ("packages", "source")


@dataclass
class IndexEntry:
    """索引中的一条包摘要"""

    id: str
    name: str = ""
    icon: str = ""
    author: str = ""
    latest_version: str = ""
    description: str = ""
    location: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IndexEntry:
        if not isinstance(data, dict) or not data.get("id"):
            raise ValueError(f"索引条目缺少 id: {data!r}")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            icon=str(data.get("icon", "")),
            author=str(data.get("author", "")),
            latest_version=str(data.get("latest_version", "")),
            description=str(data.get("description", "")),
            location=str(data.get("location", "")),
        )

    @classmethod
    def from_metadata(cls, meta: PackageMetadata, location: str) -> IndexEntry:
        return cls(
            id=meta.id,
            name=meta.name,
            icon=meta.icon,
            author=meta.author,
            latest_version=meta.version,
            description=meta.description,
            location=location,
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "name": self.name,
            "icon": self.icon,
            "author": self.author,
            "latest_version": self.latest_version,
            "description": self.description,
            "location": self.location,
        }

    def matches(self, text: str) -> bool:
        text = text.lower()
        return any(text in v.lower() for v in (self.id, self.name, self.description, self.author))


@dataclass
class GlobalIndex:
    packages: list[IndexEntry] = field(default_factory=list)
    source: list[IndexEntry] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GlobalIndex:
        return cls(
            packages=[IndexEntry.from_dict(e) for e in data.get("packages") or []],
            source=[IndexEntry.from_dict(e) for e in data.get("source") or []],
        )

    def to_dict(self) -> dict[str, list[dict[str, str]]]:
        return {
            "packages": [e.to_dict() for e in self.packages],
            "source": [e.to_dict() for e in self.source],
        }

    def render(self) -> str:
        return dumps_json(self.to_dict())

    def find_installed(self, package_id: str) -> IndexEntry | None:
        return next((e for e in self.packages if e.id == package_id), None)

    def find_source(self, package_id: str) -> IndexEntry | None:
        return next((e for e in self.source if e.id == package_id), None)


def installed_location(package_id: str, version: str) -> str:
    return f"./packages/{package_id}/{version}"


def _sorted(entries: list[IndexEntry]) -> list[IndexEntry]:
    return sorted(entries, key=lambda e: e.id)


# ---- 软件源列表快照 ----


class SnapshotStore:
    """各软件源最近一次成功拉取的列表快照"""

    def __init__(self, ctx: RepoContext) -> None:
        self.ctx = ctx

    def path(self, source_id: str) -> Path:
        return self.ctx.snapshots_dir / f"{source_id}.json"

    def load(self, source_id: str) -> list[IndexEntry]:
        path = self.path(source_id)
        if not path.exists():
            return []
        try:
            data = load_json(path)
            return [IndexEntry.from_dict(e) for e in data]
        except (json.JSONDecodeError, ValueError, TypeError) as e:
            # 快照只是缓存，损坏时当作从未拉取过
            logger.warning("软件源快照已损坏，忽略: %s (%s)", path, e)
            return []

    def save(self, source_id: str, entries: list[IndexEntry]) -> None:
        save_json(self.path(source_id), [e.to_dict() for e in _sorted(entries)])

    def delete(self, source_id: str) -> None:
        self.path(source_id).unlink(missing_ok=True)


# ---- 构建 ----


class IndexBuilder:
    """全局索引的重建、增量修补与查询"""

    def __init__(self, ctx: RepoContext, store: PackageStore | None = None) -> None:
        self.ctx = ctx
        self.store = store or PackageStore(ctx.packages_dir)
        self.snapshots = SnapshotStore(ctx)

    def _config(self) -> RepositoryConfig:
        return self.ctx.config_manager().load()

    def installed_entry(self, package_id: str) -> IndexEntry | None:
        """由版本清单最新版本的 metadata.json 推导 packages 条目；清单为空返回 None"""
        ledger = self.store.check_consistency(package_id)
        if not ledger:
            return None
        latest = ledger.latest()
        meta = self.store.read_metadata(package_id, latest)
        return IndexEntry.from_metadata(meta, installed_location(package_id, latest))

    def source_entries(self, config: RepositoryConfig | None = None) -> list[IndexEntry]:
        """合并所有启用软件源的快照；同一 ID 以配置中靠后的软件源为准"""
        config = config or self._config()
        merged: dict[str, IndexEntry] = {}
        for src in config.enabled_sources():
            for entry in self.snapshots.load(src.id):
                merged[entry.id] = entry
        return _sorted(list(merged.values()))

    def generate_global_index(self, config: RepositoryConfig | None = None) -> GlobalIndex:
        """从包存储、版本清单和软件源快照完整重建索引并写盘"""
        packages = []
        for package_id in self.store.list_package_ids():
            entry = self.installed_entry(package_id)
            if entry is not None:
                packages.append(entry)
        index = GlobalIndex(packages=_sorted(packages), source=self.source_entries(config))
        self.save(index)
        logger.info("索引已重建: %d 个已安装包, %d 个软件源包",
                    len(index.packages), len(index.source))
        return index

    def load(self) -> GlobalIndex:
        path = self.ctx.index_path
        if not path.exists():
            return GlobalIndex()
        try:
            return GlobalIndex.from_dict(load_json(path))
        except (json.JSONDecodeError, ValueError, TypeError, AttributeError) as e:
            raise ConfigError(
                f"无法解析索引文件 {path}: {e}。请运行 `pkgr repo update local` 重建"
            ) from e

    def save(self, index: GlobalIndex) -> None:
        atomic_write(self.ctx.index_path, index.render())

    # ---- 增量修补 ----

    def patch_installed(self, package_id: str) -> GlobalIndex:
        """重新推导单个包的 packages 条目"""
        index = self.load()
        entry = self.installed_entry(package_id)
        others = [e for e in index.packages if e.id != package_id]
        index.packages = _sorted(others + ([entry] if entry else []))
        self.save(index)
        logger.debug("索引已修补: packages/%s", package_id)
        return index

    def patch_source(self, config: RepositoryConfig | None = None) -> GlobalIndex:
        """只重新推导 source 部分，packages 部分保持不变"""
        index = self.load()
        index.source = self.source_entries(config)
        self.save(index)
        logger.debug("索引已修补: source (%d 项)", len(index.source))
        return index

    # ---- 查询 ----

    def query(
        self,
        section: str = "packages",
        text: str | None = None,
        package_id: str | None = None,
    ) -> list[IndexEntry]:
        """只读查询，不修改任何状态

        Args:
            section: packages / source / all
            text: 在 id、名称、描述、作者中做不区分大小写的子串匹配
            package_id: 精确匹配包 ID
        """
        if section not in (*SECTIONS, "all"):
            raise ValidationError(f"未知的索引分区: {section}")
        index = self.load()
        entries: list[IndexEntry] = []
        if section in ("packages", "all"):
            entries.extend(index.packages)
        if section in ("source", "all"):
            entries.extend(index.source)
        if package_id is not None:
            entries = [e for e in entries if e.id == package_id]
        if text:
            entries = [e for e in entries if e.matches(text)]
        return entries
