"""仓库上下文 — 显式传递给每个操作的路径集合

所有组件都从 RepoContext 取路径，而不是自己去查缓存目录或配置目录，
测试中只需构造一个指向临时目录的 RepoContext 即可完全隔离。

目录结构:
    <root>/config.toml
    <root>/index.json
    <root>/.lock
    <root>/packages/<id>/versions.txt
    <root>/packages/<id>/<version>/...
    <root>/sources/<sid>.json      各软件源最近一次成功拉取的列表快照
    <cache_dir>/staging/<key>/    事务暂存区，key 由仓库根目录派生

多个仓库可以共用同一个 cache_dir，其中只放可随时丢弃的暂存数据。
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path

from pkgr.core.config import ConfigManager, expand_path
from pkgr.core.exceptions import NotFoundError

DEFAULT_LOCK_TIMEOUT = 10.0


@dataclass(frozen=True)
class RepoContext:
    """一个仓库的根目录与缓存目录"""

    root: Path
    cache_dir: Path
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT

    @classmethod
    def open(cls, root: str | Path, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> RepoContext:
        """从已有仓库的 config.toml 构造上下文"""
        root = expand_path(root)
        if not root.is_dir():
            raise NotFoundError(f"仓库目录不存在: {root}")
        config = ConfigManager(root / "config.toml").load()
        return cls(
            root=root,
            cache_dir=expand_path(config.cache_dir),
            lock_timeout=lock_timeout,
        )

    @property
    def packages_dir(self) -> Path:
        return self.root / "packages"

    @property
    def config_path(self) -> Path:
        return self.root / "config.toml"

    @property
    def index_path(self) -> Path:
        return self.root / "index.json"

    @property
    def lock_path(self) -> Path:
        return self.root / ".lock"

    @property
    def staging_dir(self) -> Path:
        key = hashlib.sha256(str(self.root.resolve()).encode("utf-8")).hexdigest()[:16]
        return self.cache_dir / "staging" / key

    @property
    def snapshots_dir(self) -> Path:
        return self.root / "sources"

    def config_manager(self) -> ConfigManager:
        return ConfigManager(self.config_path)
