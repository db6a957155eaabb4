"""公共测试夹具：临时仓库 + 以本地目录发布的软件源"""

from __future__ import annotations

import json
import shutil
from pathlib import Path

import pytest

from pkgr.core.config import SourceConfig
from pkgr.core.integrity import hash_bytes
from pkgr.core.metadata import PackageMetadata
from pkgr.core.repository import RepoManager


def write_package(
    directory: Path,
    package_id: str,
    version: str,
    files: dict[str, bytes] | None = None,
    **fields: str,
) -> PackageMetadata:
    """在 directory 中写入包文件和带哈希的 metadata.json"""
    files = files if files is not None else {"index.html": f"<h1>{package_id} {version}</h1>".encode()}
    directory.mkdir(parents=True, exist_ok=True)
    for rel, content in files.items():
        target = directory / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
    meta = PackageMetadata(
        name=fields.get("name", package_id),
        id=package_id,
        version=version,
        description=fields.get("description", f"{package_id} 测试包"),
        icon=fields.get("icon", ""),
        author=fields.get("author", "tester"),
        type="webapp",
        category="utility",
        entry="index.html",
        all_files={rel: hash_bytes(content) for rel, content in files.items()},
    )
    meta.save(directory / "metadata.json")
    return meta


class LocalSource:
    """按仓库布局发布包的本地目录软件源"""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self.listed: dict[str, dict] = {}
        self._write_index()

    @property
    def url(self) -> str:
        return str(self.root) + "/"

    def config(self, source_id: str = "main", **kwargs) -> SourceConfig:
        return SourceConfig(id=source_id, name=source_id, url=self.url, **kwargs)

    def publish(self, package_id: str, version: str, files: dict[str, bytes] | None = None,
                **fields: str) -> PackageMetadata:
        meta = write_package(self.root / "packages" / package_id / version,
                             package_id, version, files, **fields)
        self.listed[package_id] = {
            "id": package_id,
            "name": meta.name,
            "icon": meta.icon,
            "author": meta.author,
            "latest_version": version,
            "description": meta.description,
            "location": f"./packages/{package_id}/{version}",
        }
        self._write_index()
        return meta

    def unpublish(self, package_id: str) -> None:
        self.listed.pop(package_id, None)
        self._write_index()

    def corrupt(self, package_id: str, version: str, rel_path: str) -> None:
        (self.root / "packages" / package_id / version / rel_path).write_bytes(b"tampered")

    def delete_files(self) -> None:
        shutil.rmtree(self.root / "packages", ignore_errors=True)

    def _write_index(self) -> None:
        data = {"packages": sorted(self.listed.values(), key=lambda e: e["id"]), "source": []}
        (self.root / "index.json").write_text(json.dumps(data), encoding="utf-8")


@pytest.fixture()
def repo(tmp_path: Path) -> RepoManager:
    return RepoManager.init(tmp_path / "repo", cache_dir=str(tmp_path / "cache"), lock_timeout=0.2)


@pytest.fixture()
def source(tmp_path: Path) -> LocalSource:
    return LocalSource(tmp_path / "upstream")


@pytest.fixture()
def repo_with_source(repo: RepoManager, source: LocalSource) -> RepoManager:
    repo.add_source(source.config())
    return repo
