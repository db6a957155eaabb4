"""事务协调器单元测试：暂存 → 校验 → 提交 → 清单 → 索引"""

from __future__ import annotations

from pathlib import Path
from unittest import mock

import pytest
from conftest import write_package

from pkgr.core.exceptions import (
    AlreadyExistsError,
    ChecksumMismatchError,
    LedgerInconsistentError,
    LockContentionError,
    NotFoundError,
)
from pkgr.core.index import IndexBuilder
from pkgr.core.ledger import VersionLedger
from pkgr.core.lock import RepoLock
from pkgr.core.repository import RepoManager
from pkgr.core.transaction import TransactionCoordinator


def _snapshot_tree(root: Path) -> dict[str, bytes]:
    return {
        str(p.relative_to(root)): p.read_bytes()
        for p in sorted(root.rglob("*")) if p.is_file() and p.name != ".lock"
    }


@pytest.fixture()
def coordinator(repo: RepoManager) -> TransactionCoordinator:
    return TransactionCoordinator(repo.ctx)


def _install(coordinator: TransactionCoordinator, tmp_path: Path, version: str,
             package_id: str = "demo") -> Path:
    src = tmp_path / "src" / f"{package_id}-{version}"
    meta = write_package(src, package_id, version)
    return coordinator.install_from_dir(meta, src)


class TestInstall:
    def test_install_commits_all_three(
        self, repo: RepoManager, coordinator: TransactionCoordinator, tmp_path: Path,
    ) -> None:
        dest = _install(coordinator, tmp_path, "0.1.0")
        assert dest == repo.ctx.packages_dir / "demo" / "0.1.0"
        assert (dest / "index.html").read_text(encoding="utf-8") == "<h1>demo 0.1.0</h1>"
        assert (dest / "metadata.json").exists()
        assert repo.store.load_ledger("demo").versions == ["0.1.0"]
        entry = repo.index.load().find_installed("demo")
        assert entry.latest_version == "0.1.0"
        assert entry.location == "./packages/demo/0.1.0"

    def test_staging_cleaned_after_commit(
        self, repo: RepoManager, coordinator: TransactionCoordinator, tmp_path: Path,
    ) -> None:
        _install(coordinator, tmp_path, "0.1.0")
        assert list(repo.ctx.staging_dir.iterdir()) == []

    def test_only_listed_files_copied(
        self, repo: RepoManager, coordinator: TransactionCoordinator, tmp_path: Path,
    ) -> None:
        src = tmp_path / "src"
        meta = write_package(src, "demo", "1.0")
        (src / "notes.txt").write_text("draft", encoding="utf-8")
        dest = coordinator.install_from_dir(meta, src)
        assert sorted(p.name for p in dest.iterdir()) == ["index.html", "metadata.json"]

    def test_duplicate_version_rejected(
        self, coordinator: TransactionCoordinator, tmp_path: Path,
    ) -> None:
        _install(coordinator, tmp_path, "0.1.0")
        with pytest.raises(AlreadyExistsError):
            _install(coordinator, tmp_path / "again", "0.1.0")

    def test_checksum_failure_leaves_repo_untouched(
        self, repo: RepoManager, coordinator: TransactionCoordinator, tmp_path: Path,
    ) -> None:
        """校验失败时包存储、版本清单、索引与安装前完全一致，并指出出错文件"""
        _install(coordinator, tmp_path, "0.1.0")
        before = _snapshot_tree(repo.ctx.root)

        src = tmp_path / "bad"
        meta = write_package(src, "demo", "0.2.0", {"index.html": b"ok", "app.js": b"js"})
        (src / "app.js").write_bytes(b"tampered")
        with pytest.raises(ChecksumMismatchError) as exc_info:
            coordinator.install_from_dir(meta, src)

        assert exc_info.value.path == "app.js"
        assert _snapshot_tree(repo.ctx.root) == before
        assert list(repo.ctx.staging_dir.iterdir()) == []

    def test_missing_file_reported(
        self, coordinator: TransactionCoordinator, tmp_path: Path,
    ) -> None:
        src = tmp_path / "src"
        meta = write_package(src, "demo", "1.0", {"index.html": b"a", "lib/x.js": b"x"})
        (src / "lib" / "x.js").unlink()
        with pytest.raises(ChecksumMismatchError) as exc_info:
            coordinator.install_from_dir(meta, src)
        assert exc_info.value.path == "lib/x.js"

    def test_interrupt_discards_staging(
        self, repo: RepoManager, coordinator: TransactionCoordinator, tmp_path: Path,
    ) -> None:
        meta = write_package(tmp_path / "src", "demo", "1.0")

        def fill(staged: Path) -> None:
            (staged / "index.html").write_text("partial", encoding="utf-8")
            raise KeyboardInterrupt

        with pytest.raises(KeyboardInterrupt):
            coordinator.install(meta, fill)
        assert list(repo.ctx.staging_dir.iterdir()) == []
        assert not repo.store.package_dir("demo").exists()

    def test_lost_lock_blocks_commit(self, repo: RepoManager, tmp_path: Path) -> None:
        lock = RepoLock(repo.ctx.lock_path, timeout=0.1)
        coordinator = TransactionCoordinator(repo.ctx, lock=lock)
        with pytest.raises(LockContentionError):
            _install(coordinator, tmp_path, "1.0")
        assert not repo.store.package_dir("demo").exists()
        assert list(repo.ctx.staging_dir.iterdir()) == []

    def test_ledger_failure_after_commit(
        self, repo: RepoManager, coordinator: TransactionCoordinator, tmp_path: Path,
    ) -> None:
        """提交后写清单失败：报告不一致，不回滚；--repair 可恢复"""
        with mock.patch.object(VersionLedger, "save", side_effect=OSError("磁盘只读")):
            with pytest.raises(LedgerInconsistentError, match="--repair"):
                _install(coordinator, tmp_path, "1.0")
        assert repo.store.has_version("demo", "1.0")
        assert repo.store.load_ledger("demo").versions == []

        repo.update_local_index(repair=True)
        assert repo.store.load_ledger("demo").versions == ["1.0"]
        assert repo.index.load().find_installed("demo").latest_version == "1.0"

    def test_index_failure_after_commit(
        self, repo: RepoManager, coordinator: TransactionCoordinator, tmp_path: Path,
    ) -> None:
        with mock.patch.object(IndexBuilder, "patch_installed", side_effect=OSError("boom")):
            with pytest.raises(LedgerInconsistentError):
                _install(coordinator, tmp_path, "1.0")
        assert repo.store.load_ledger("demo").versions == ["1.0"]
        assert repo.index.load().find_installed("demo") is None


class TestRemove:
    def test_demo_scenario_remove_older(
        self, repo: RepoManager, coordinator: TransactionCoordinator, tmp_path: Path,
    ) -> None:
        """demo 从 [0.1.0] 开始：安装 0.1.1，再删除 0.1.0"""
        _install(coordinator, tmp_path, "0.1.0")
        _install(coordinator, tmp_path, "0.1.1")
        ledger = repo.store.load_ledger("demo")
        assert ledger.versions == ["0.1.0", "0.1.1"]
        assert ledger.latest() == "0.1.1"
        kept = repo.ctx.packages_dir / "demo" / "0.1.1"
        kept_before = _snapshot_tree(kept)

        remaining = coordinator.remove("demo", "0.1.0")

        assert remaining.versions == ["0.1.1"]
        assert repo.store.load_ledger("demo").versions == ["0.1.1"]
        assert not (repo.ctx.packages_dir / "demo" / "0.1.0").exists()
        assert _snapshot_tree(kept) == kept_before
        assert repo.index.load().find_installed("demo").latest_version == "0.1.1"

    def test_demo_scenario_remove_last(
        self, repo: RepoManager, coordinator: TransactionCoordinator, tmp_path: Path,
    ) -> None:
        _install(coordinator, tmp_path, "0.1.1")
        remaining = coordinator.remove("demo", "0.1.1")
        assert len(remaining) == 0
        assert not (repo.ctx.packages_dir / "demo").exists()
        assert repo.index.load().find_installed("demo") is None

    def test_remove_unknown_version(
        self, coordinator: TransactionCoordinator, tmp_path: Path,
    ) -> None:
        _install(coordinator, tmp_path, "1.0")
        with pytest.raises(NotFoundError):
            coordinator.remove("demo", "9.9")

    def test_ledger_write_failure_restores_directory(
        self, repo: RepoManager, coordinator: TransactionCoordinator, tmp_path: Path,
    ) -> None:
        _install(coordinator, tmp_path, "1.0")
        _install(coordinator, tmp_path, "2.0")
        with mock.patch.object(VersionLedger, "save", side_effect=OSError("磁盘只读")):
            with pytest.raises(OSError):
                coordinator.remove("demo", "1.0")
        assert repo.store.list_version_dirs("demo") == ["1.0", "2.0"]
        assert repo.store.load_ledger("demo").versions == ["1.0", "2.0"]
        assert not any(p.name.startswith(".") for p in repo.store.package_dir("demo").iterdir())

    def test_inconsistent_store_refuses_removal(
        self, repo: RepoManager, coordinator: TransactionCoordinator, tmp_path: Path,
    ) -> None:
        _install(coordinator, tmp_path, "1.0")
        (repo.ctx.packages_dir / "demo" / "orphan").mkdir()
        with pytest.raises(LedgerInconsistentError):
            coordinator.remove("demo", "1.0")
        assert repo.store.has_version("demo", "1.0")
