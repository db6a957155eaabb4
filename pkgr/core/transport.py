"""软件源传输层

软件源的布局与本地仓库相同：

    <url>index.json                               取其中的 packages 部分作为列表
    <location>/metadata.json
    <location>/<all_files 中的相对路径>

url 可以是 http(s) 地址（必须以 / 结尾），也可以是本地目录。
列表中 ./packages/... 形式的相对 location 会被改写为软件源下的绝对位置。
"""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path

from pkgr.core.config import SourceConfig
from pkgr.core.exceptions import NetworkError, ValidationError
from pkgr.core.index import IndexEntry
from pkgr.core.metadata import METADATA_FILENAME, PackageMetadata
from pkgr.utils.net import DEFAULT_ATTEMPTS, DEFAULT_TIMEOUT, http_get, is_remote

logger = logging.getLogger(__name__)


def resolve_location(base: str, location: str) -> str:
    """把列表中的相对 location 改写为以 base 为根的绝对位置"""
    if is_remote(location) or Path(location).is_absolute():
        return location.rstrip("/")
    rel = location[2:] if location.startswith("./") else location
    if is_remote(base):
        return f"{base.rstrip('/')}/{rel.strip('/')}"
    return str(Path(base) / rel)


def join_location(location: str, rel_path: str) -> str:
    if is_remote(location):
        return f"{location.rstrip('/')}/{rel_path}"
    return str(Path(location) / rel_path)


class SourceTransport:
    """单个软件源的只读访问"""

    def __init__(
        self,
        source: SourceConfig,
        timeout: float = DEFAULT_TIMEOUT,
        attempts: int = DEFAULT_ATTEMPTS,
    ) -> None:
        self.source = source
        self.timeout = timeout
        self.attempts = attempts

    def _local_path(self, location: str) -> Path:
        if self.source.is_remote:
            # 远程软件源不允许把 location 指向本机文件
            raise ValidationError(f"远程软件源 '{self.source.id}' 给出了本地路径: {location}")
        return Path(location)

    def _read(self, location: str) -> bytes:
        if is_remote(location):
            return http_get(
                location,
                timeout=self.timeout,
                attempts=self.attempts,
                require_https=self.source.require_https,
            )
        try:
            return self._local_path(location).read_bytes()
        except OSError as e:
            raise NetworkError(f"无法读取: {location} ({e})") from e

    def listing(self) -> list[IndexEntry]:
        """拉取软件源当前的完整包列表"""
        url = join_location(self.source.url, "index.json")
        raw = self._read(url)
        try:
            data = json.loads(raw.decode("utf-8"))
            entries = [IndexEntry.from_dict(e) for e in data.get("packages") or []]
        except (UnicodeDecodeError, json.JSONDecodeError, ValueError, TypeError, AttributeError) as e:
            raise NetworkError(f"软件源 '{self.source.id}' 的索引格式无效: {e}") from e

        for entry in entries:
            entry.location = resolve_location(self.source.url, entry.location)
        logger.info("软件源 %s: 列表包含 %d 个包", self.source.id, len(entries),
                    extra={"source_id": self.source.id})
        return entries

    def fetch_metadata(self, entry: IndexEntry) -> PackageMetadata:
        location = join_location(entry.location, METADATA_FILENAME)
        meta = PackageMetadata.from_bytes(self._read(location), location)
        if meta.id != entry.id or meta.version != entry.latest_version:
            raise ValidationError(
                f"元数据与列表不符: {location} 声明 {meta.id}@{meta.version}，"
                f"列表为 {entry.id}@{entry.latest_version}"
            )
        return meta

    def fetch_files(self, entry: IndexEntry, meta: PackageMetadata, dest: Path) -> None:
        """把 all_files 中的每个文件写入暂存目录 dest"""
        for rel_path in sorted(meta.all_files):
            target = dest / rel_path
            target.parent.mkdir(parents=True, exist_ok=True)
            location = join_location(entry.location, rel_path)
            if is_remote(location):
                target.write_bytes(self._read(location))
            else:
                src = self._local_path(location)
                if not src.is_file():
                    raise NetworkError(f"源文件不存在: {location}")
                shutil.copyfile(src, target)
            logger.debug("  已拉取: %s", rel_path)
