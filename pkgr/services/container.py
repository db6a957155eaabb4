"""服务容器 — CLI 与 Web 层获取仓库对象的统一入口

同一容器内的实例共享（RepoContext、RepoManager、IndexBuilder 只构造一次）。
仓库根目录在构造时显式传入，不传则使用默认仓库目录。

用法:
    container = ServiceContainer(repo_root="~/pkgr-repo")
    container.repo.install_package("pageos:demo")

    # 全局单例（Web 层共享）
    from pkgr.services.container import configure_container, get_container
    configure_container("/srv/pageos-repo")
    entries = get_container().index.query("packages")
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from pkgr.core.config import default_repo_dir, expand_path
from pkgr.core.context import DEFAULT_LOCK_TIMEOUT

if TYPE_CHECKING:
    from pkgr.core.context import RepoContext
    from pkgr.core.index import IndexBuilder
    from pkgr.core.repository import RepoManager
    from pkgr.core.store import PackageStore

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器 — 每个实例对应一个仓库"""

    def __init__(
        self,
        repo_root: str | Path | None = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ) -> None:
        self._instances: dict[str, object] = {}
        self.repo_root = expand_path(repo_root or default_repo_dir())
        self.lock_timeout = lock_timeout

    @property
    def context(self) -> RepoContext:
        if "context" not in self._instances:
            from pkgr.core.context import RepoContext
            self._instances["context"] = RepoContext.open(self.repo_root, self.lock_timeout)
        return self._instances["context"]  # type: ignore[return-value]

    @property
    def repo(self) -> RepoManager:
        if "repo" not in self._instances:
            from pkgr.core.repository import RepoManager
            self._instances["repo"] = RepoManager(self.context)
        return self._instances["repo"]  # type: ignore[return-value]

    @property
    def store(self) -> PackageStore:
        return self.repo.store

    @property
    def index(self) -> IndexBuilder:
        return self.repo.index


# ---- 全局单例 ----

_global: ServiceContainer | None = None
_global_lock = threading.Lock()


def get_container() -> ServiceContainer:
    """获取全局 ServiceContainer 单例（线程安全）"""
    global _global  # noqa: PLW0603
    if _global is not None:
        return _global
    with _global_lock:
        if _global is None:
            _global = ServiceContainer()
        return _global


def configure_container(
    repo_root: str | Path, lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
) -> ServiceContainer:
    """用指定仓库替换全局容器"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = ServiceContainer(repo_root, lock_timeout)
        logger.debug("全局容器已指向仓库: %s", _global.repo_root)
        return _global


def reset_container() -> None:
    """重置全局容器（仅用于测试）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = None
