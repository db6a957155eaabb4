"""仓库级互斥锁

基于 filelock 的 <root>/.lock 咨询锁。所有变更操作（安装、删除、同步、清理、
软件源变更）都必须持锁执行；纯查询不取锁。

    with RepoLock(ctx.lock_path, timeout=10) as lock:
        ...
        lock.ensure_held()
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from types import TracebackType

from filelock import FileLock, Timeout

from pkgr.core.exceptions import LockContentionError

logger = logging.getLogger(__name__)


class RepoLock:
    """单个仓库的互斥锁"""

    def __init__(self, path: Path, timeout: float = 10.0) -> None:
        self.path = path
        self.timeout = timeout
        self._lock = FileLock(str(path), timeout=timeout)
        self._inode: int | None = None

    def acquire(self) -> RepoLock:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._lock.acquire()
        except Timeout:
            raise LockContentionError(
                f"仓库正被其他进程使用 ({self.path})，等待 {self.timeout:g}s 后放弃"
            ) from None
        self._inode = os.stat(self.path).st_ino
        logger.debug("已获取仓库锁: %s", self.path)
        return self

    def release(self) -> None:
        if self._lock.is_locked:
            self._lock.release()
            logger.debug("已释放仓库锁: %s", self.path)
        self._inode = None

    @property
    def is_held(self) -> bool:
        """锁仍由本实例持有，且锁文件没有被删除或替换"""
        if not self._lock.is_locked or self._inode is None:
            return False
        try:
            return os.stat(self.path).st_ino == self._inode
        except FileNotFoundError:
            return False

    def ensure_held(self) -> None:
        """长操作的每一步之前调用；锁已丢失时抛出 LockContentionError"""
        if not self.is_held:
            raise LockContentionError(f"操作过程中丢失了仓库锁: {self.path}")

    def __enter__(self) -> RepoLock:
        return self.acquire()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
