"""变更集计算

需要确认的命令（install / remove / upgrade / sync / clean）都分成两步：
先用这里的纯函数算出"将要做什么"，交给 CLI 展示并确认，再交给执行方应用。
本模块不读写磁盘、不访问网络。
"""

from __future__ import annotations

from dataclasses import dataclass, field

from pkgr.core.exceptions import ValidationError
from pkgr.core.index import IndexEntry

# 拉取并安装该版本
INSTALL = "install"
# 该版本已在本地，只更新软件源快照
RECORD = "record"
# 删除一个已安装版本
REMOVE = "remove"
# 从软件源快照中移除（不涉及已安装版本）
DROP = "drop"

_SYMBOLS = {INSTALL: "+", RECORD: "=", REMOVE: "-", DROP: "x"}


@dataclass
class Change:
    action: str
    package_id: str
    version: str
    previous: str | None = None
    entry: IndexEntry | None = None
    source_id: str | None = None

    def describe(self) -> str:
        symbol = _SYMBOLS.get(self.action, "?")
        if self.previous and self.action in (INSTALL, RECORD):
            return f"{symbol} {self.package_id} {self.previous} -> {self.version}"
        return f"{symbol} {self.package_id} {self.version}"


@dataclass
class ChangeSet:
    changes: list[Change] = field(default_factory=list)

    def of(self, *actions: str) -> list[Change]:
        return [c for c in self.changes if c.action in actions]

    @property
    def is_empty(self) -> bool:
        return not self.changes

    def describe(self) -> list[str]:
        return [c.describe() for c in self.changes]

    def __len__(self) -> int:
        return len(self.changes)

    def __iter__(self):
        return iter(self.changes)


def plan_sync(
    listing: list[IndexEntry],
    cached: list[IndexEntry],
    installed: dict[str, list[str]],
    *,
    mirror: bool = False,
) -> ChangeSet:
    """计算一次同步的变更集

    Args:
        listing: 本次从软件源拉到的列表
        cached: 该软件源上次成功同步后的快照
        installed: 包 ID → 版本清单（旧到新）
        mirror: 镜像模式下快照中多出的包会被 DROP；
                且已缓存但本地存储中不存在的版本也会重新安装

    增量模式只比较同一软件源的快照：ID 不在快照中或版本号不同即视为需要更新，
    不同软件源的版本号之间永不比较。
    """
    cached_by_id = {e.id: e for e in cached}
    changes: list[Change] = []
    for entry in sorted(listing, key=lambda e: e.id):
        prev = cached_by_id.get(entry.id)
        have = installed.get(entry.id, [])
        previous = prev.latest_version if prev else None
        changed = prev is None or prev.latest_version != entry.latest_version
        if not changed and not (mirror and entry.latest_version not in have):
            continue
        action = RECORD if entry.latest_version in have else INSTALL
        changes.append(Change(action, entry.id, entry.latest_version, previous, entry))

    if mirror:
        listed = {e.id for e in listing}
        for prev in sorted(cached, key=lambda e: e.id):
            if prev.id not in listed:
                changes.append(Change(DROP, prev.id, prev.latest_version, entry=prev))
    return ChangeSet(changes)


def plan_upgrade(
    installed: dict[str, list[str]],
    advertised: list[IndexEntry],
    package_id: str | None = None,
) -> ChangeSet:
    """对每个已安装包，若软件源提供的版本既不是最新版本、也不在清单中，则安装之"""
    by_id = {e.id: e for e in advertised}
    targets = [package_id] if package_id is not None else sorted(installed)
    changes = []
    for pid in targets:
        versions = installed.get(pid) or []
        entry = by_id.get(pid)
        if not versions or entry is None:
            continue
        if entry.latest_version in versions:
            continue
        changes.append(Change(INSTALL, pid, entry.latest_version, versions[-1], entry))
    return ChangeSet(changes)


def plan_remove(package_id: str, versions: list[str], version: str | None = None) -> ChangeSet:
    """删除指定版本；不指定时删除全部版本（从新到旧）"""
    if version is not None:
        targets = [version] if version in versions else []
    else:
        targets = list(reversed(versions))
    return ChangeSet([Change(REMOVE, package_id, v) for v in targets])


def plan_clean(installed: dict[str, list[str]], keep: int) -> ChangeSet:
    """按版本清单位置保留每个包最新的 keep 个版本，其余删除（从旧到新）"""
    if keep < 1:
        raise ValidationError("保留版本数必须至少为 1")
    changes = []
    for pid in sorted(installed):
        versions = installed[pid]
        for v in versions[: max(len(versions) - keep, 0)]:
            changes.append(Change(REMOVE, pid, v))
    return ChangeSet(changes)
