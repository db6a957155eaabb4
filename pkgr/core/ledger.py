"""版本清单（versions.txt）

每个包一个只追加的有序版本列表，列表位置即新旧顺序（越靠后越新），
不对版本号做任何语义解析。

    ledger = VersionLedger.load(path, "demo")
    ledger.append("0.1.1")
    ledger.latest()                       # "0.1.1"
    ledger.version("0.1.0") < ledger.version("0.1.1")   # True
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Iterator
from pathlib import Path

from pkgr.core.exceptions import (
    AlreadyExistsError,
    EmptyLedgerError,
    LedgerInconsistentError,
    NotFoundError,
)
from pkgr.utils.serde_io import atomic_write

logger = logging.getLogger(__name__)

LEDGER_FILENAME = "versions.txt"


class VersionLedger:
    """单个包的版本清单"""

    def __init__(self, package_id: str, versions: list[str] | None = None) -> None:
        self.package_id = package_id
        self._versions: list[str] = []
        for v in versions or []:
            self.append(v)

    @classmethod
    def load(cls, path: Path, package_id: str) -> VersionLedger:
        """从 versions.txt 加载；文件不存在时返回空清单"""
        if not path.exists():
            return cls(package_id)
        lines = [
            line.strip() for line in path.read_text(encoding="utf-8").splitlines()
        ]
        try:
            return cls(package_id, [v for v in lines if v])
        except AlreadyExistsError as e:
            raise LedgerInconsistentError(f"版本清单包含重复版本: {path}") from e

    def render(self) -> str:
        """按 versions.txt 格式输出（旧到新，换行分隔）"""
        return "\n".join(self._versions)

    def save(self, path: Path) -> None:
        atomic_write(path, self.render())

    # ---- 变更 ----

    def append(self, version: str) -> None:
        if version in self._versions:
            raise AlreadyExistsError(f"版本已存在: {self.package_id}@{version}")
        self._versions.append(version)

    def remove(self, version: str) -> None:
        if version not in self._versions:
            raise NotFoundError(f"版本不存在: {self.package_id}@{version}")
        self._versions.remove(version)

    # ---- 查询 ----

    def latest(self) -> str:
        if not self._versions:
            raise EmptyLedgerError(f"没有已安装的版本: {self.package_id}")
        return self._versions[-1]

    def position(self, version: str) -> int:
        try:
            return self._versions.index(version)
        except ValueError:
            raise NotFoundError(f"版本不存在: {self.package_id}@{version}") from None

    def compare(self, a: str, b: str) -> int:
        """按列表位置比较：a 更新返回 1，相同返回 0，b 更新返回 -1"""
        pa, pb = self.position(a), self.position(b)
        return (pa > pb) - (pa < pb)

    def version(self, token: str) -> LedgerVersion:
        """返回绑定到本清单的可比较版本对象"""
        self.position(token)
        return LedgerVersion(self, token)

    @property
    def versions(self) -> list[str]:
        return list(self._versions)

    def __contains__(self, version: object) -> bool:
        return version in self._versions

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._versions))

    def __len__(self) -> int:
        return len(self._versions)

    def __repr__(self) -> str:
        return f"VersionLedger({self.package_id!r}, {self._versions!r})"


@functools.total_ordering
class LedgerVersion:
    """绑定到某个包版本清单的版本号

    只能和同一清单中的版本比较大小；跨包比较大小直接报 TypeError，
    避免把不同包的版本号当字符串或语义化版本去比。跨包判等总是 False。
    """

    __slots__ = ("ledger", "token")

    def __init__(self, ledger: VersionLedger, token: str) -> None:
        self.ledger = ledger
        self.token = token

    def _same_ledger(self, other: LedgerVersion) -> None:
        if other.ledger is not self.ledger:
            raise TypeError(
                f"不能比较不同包的版本: {self.ledger.package_id} / {other.ledger.package_id}"
            )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LedgerVersion):
            return NotImplemented
        return other.ledger is self.ledger and self.token == other.token

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, LedgerVersion):
            return NotImplemented
        self._same_ledger(other)
        return self.ledger.compare(self.token, other.token) < 0

    def __hash__(self) -> int:
        return hash((id(self.ledger), self.token))

    def __str__(self) -> str:
        return self.token

    def __repr__(self) -> str:
        return f"LedgerVersion({self.ledger.package_id!r}, {self.token!r})"
