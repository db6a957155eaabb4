"""命令行测试（click.testing.CliRunner）"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
from click.testing import CliRunner, Result
from conftest import LocalSource

from pkgr.cli import main


@pytest.fixture(autouse=True)
def _restore_logging():
    """CLI 会重新配置根日志器，测试结束后恢复"""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


class Pkgr:
    """绑定到临时仓库的命令调用器"""

    def __init__(self, runner: CliRunner, root: Path) -> None:
        self.runner = runner
        self.root = root

    def repo(self, *args: str, input: str | None = None, yes: bool = False) -> Result:
        prefix = ["-y"] if yes else []
        return self.runner.invoke(
            main, [*prefix, "repo", "--repo", str(self.root), "--lock-timeout", "0.2", *args],
            input=input,
        )


@pytest.fixture()
def pkgr(runner: CliRunner, tmp_path: Path) -> Pkgr:
    cli = Pkgr(runner, tmp_path / "repo")
    result = cli.repo("init", "--cache-dir", str(tmp_path / "cache"))
    assert result.exit_code == 0, result.output
    return cli


@pytest.fixture()
def upstream(pkgr: Pkgr, source: LocalSource) -> LocalSource:
    source.publish("demo", "0.1.0")
    source.publish("clock", "2.0")
    result = pkgr.repo("source", "add", "main", str(source.root))
    assert result.exit_code == 0, result.output
    return source


class TestRepoLifecycle:
    def test_init(self, pkgr: Pkgr) -> None:
        assert (pkgr.root / "config.toml").exists()
        assert json.loads((pkgr.root / "index.json").read_text(encoding="utf-8")) == {
            "packages": [], "source": [],
        }

    def test_init_twice_is_error(self, pkgr: Pkgr) -> None:
        result = pkgr.repo("init")
        assert result.exit_code == 1
        assert "错误:" in result.output
        assert "仓库已存在" in result.output

    def test_new(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(main, [
            "repo", "new", "mirror", "--base-dir", str(tmp_path), "--cache-dir", str(tmp_path / "c"),
        ])
        assert result.exit_code == 0, result.output
        assert (tmp_path / "mirror" / "config.toml").exists()

    def test_missing_repo_is_error(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(main, ["repo", "--repo", str(tmp_path / "nope"), "list"])
        assert result.exit_code == 1
        assert "仓库目录不存在" in result.output

    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.3.0" in result.output


class TestSources:
    def test_add_list_disable_remove(self, pkgr: Pkgr, upstream: LocalSource) -> None:
        out = pkgr.repo("source", "list").output
        assert "main" in out and "启用" in out

        assert pkgr.repo("source", "disable", "main").exit_code == 0
        assert "禁用" in pkgr.repo("source", "list").output
        assert pkgr.repo("source", "enable", "main").exit_code == 0

        assert pkgr.repo("source", "remove", "main").exit_code == 0
        assert "没有配置软件源" in pkgr.repo("source", "list").output

    def test_local_url_normalized(self, pkgr: Pkgr, upstream: LocalSource) -> None:
        config = (pkgr.root / "config.toml").read_text(encoding="utf-8")
        assert f'url = "{upstream.root}/"' in config

    def test_http_requires_flag(self, pkgr: Pkgr) -> None:
        result = pkgr.repo("source", "add", "lan", "http://lan.local/")
        assert result.exit_code == 1
        assert "HTTPS" in result.output
        result = pkgr.repo("source", "add", "lan", "http://lan.local/", "--allow-http")
        assert result.exit_code == 0, result.output

    def test_remove_unknown(self, pkgr: Pkgr) -> None:
        result = pkgr.repo("source", "remove", "ghost")
        assert result.exit_code == 1
        assert "错误: 未找到软件源: ghost" in result.output


class TestInstallRemove:
    def test_update_then_list_source(self, pkgr: Pkgr, upstream: LocalSource) -> None:
        result = pkgr.repo("update")
        assert result.exit_code == 0, result.output
        assert "1 成功, 0 失败" in result.output
        out = pkgr.repo("list", "--section", "source").output
        assert "demo" in out and "clock" in out
        assert "没有匹配的包" in pkgr.repo("list").output

    def test_install_with_yes(self, pkgr: Pkgr, upstream: LocalSource) -> None:
        pkgr.repo("update")
        result = pkgr.repo("install", "demo", "-y")
        assert result.exit_code == 0, result.output
        assert "+ demo 0.1.0" in result.output
        assert (pkgr.root / "packages" / "demo" / "0.1.0" / "index.html").exists()

    def test_root_yes_flag(self, pkgr: Pkgr, upstream: LocalSource) -> None:
        pkgr.repo("update")
        result = pkgr.repo("install", "main:clock", yes=True)
        assert result.exit_code == 0, result.output
        assert (pkgr.root / "packages" / "clock" / "versions.txt").read_text(encoding="utf-8") == "2.0"

    def test_declining_is_not_an_error(self, pkgr: Pkgr, upstream: LocalSource) -> None:
        pkgr.repo("update")
        result = pkgr.repo("install", "demo", input="n\n")
        assert result.exit_code == 0
        assert "已取消。" in result.output
        assert not (pkgr.root / "packages" / "demo").exists()

    def test_confirm_prompt(self, pkgr: Pkgr, upstream: LocalSource) -> None:
        pkgr.repo("update")
        result = pkgr.repo("install", "demo", input="y\n")
        assert result.exit_code == 0, result.output
        assert "确定要安装吗？" in result.output
        assert (pkgr.root / "packages" / "demo" / "0.1.0").is_dir()

    def test_install_unknown_is_error(self, pkgr: Pkgr, upstream: LocalSource) -> None:
        result = pkgr.repo("install", "ghost", "-y")
        assert result.exit_code == 1
        assert result.output.startswith("错误:")

    def test_bad_spec_is_error(self, pkgr: Pkgr) -> None:
        result = pkgr.repo("install", "a:b:c:d", "-y")
        assert result.exit_code == 1
        assert "无法解析包描述" in result.output

    def test_info_and_remove(self, pkgr: Pkgr, upstream: LocalSource) -> None:
        pkgr.repo("update")
        pkgr.repo("install", "demo", "-y")
        info = pkgr.repo("info", "demo").output
        assert "已安装版本: 0.1.0" in info
        assert "软件源最新版本: 0.1.0" in info

        result = pkgr.repo("remove", "demo:0.1.0", "-y")
        assert result.exit_code == 0, result.output
        assert "- demo 0.1.0" in result.output
        assert not (pkgr.root / "packages" / "demo").exists()

    def test_add_local_package(self, pkgr: Pkgr, runner: CliRunner, tmp_path: Path) -> None:
        app_dir = tmp_path / "apps"
        assert runner.invoke(main, ["app", "new", "hello", "--base-dir", str(app_dir)]).exit_code == 0
        (app_dir / "hello" / "index.html").write_text("<h1>hello</h1>", encoding="utf-8")
        result = runner.invoke(main, [
            "app", "--package", str(app_dir / "hello"), "add", str(app_dir / "hello" / "index.html"),
        ])
        assert result.exit_code == 0, result.output
        assert "+ index.html" in result.output

        result = pkgr.repo("add", str(app_dir / "hello"))
        assert result.exit_code == 0, result.output
        assert "hello" in pkgr.repo("list").output


class TestSyncUpgradeClean:
    def test_sync_and_mirror(self, pkgr: Pkgr, upstream: LocalSource) -> None:
        result = pkgr.repo("sync", "-y")
        assert result.exit_code == 0, result.output
        assert "+ clock 2.0" in result.output and "+ demo 0.1.0" in result.output

        upstream.unpublish("clock")
        result = pkgr.repo("sync", "mirror", "main", "-y")
        assert result.exit_code == 0, result.output
        assert "x clock 2.0" in result.output
        assert "clock" not in pkgr.repo("list", "--section", "source").output

    def test_sync_nothing_to_do(self, pkgr: Pkgr, upstream: LocalSource) -> None:
        pkgr.repo("sync", "-y")
        result = pkgr.repo("sync")
        assert result.exit_code == 0
        assert "没有需要执行的变更。" in result.output

    def test_sync_failure_exits_nonzero(self, pkgr: Pkgr, upstream: LocalSource) -> None:
        upstream.corrupt("demo", "0.1.0", "index.html")
        result = pkgr.repo("sync", "-y")
        assert result.exit_code == 1
        assert "1 成功, 1 失败" in result.output
        assert "错误: 部分操作失败" in result.output

    def test_sync_too_many_sources(self, pkgr: Pkgr) -> None:
        result = pkgr.repo("sync", "a", "b")
        assert result.exit_code == 1

    def test_upgrade(self, pkgr: Pkgr, upstream: LocalSource) -> None:
        pkgr.repo("sync", "-y")
        assert "没有需要执行的变更。" in pkgr.repo("upgrade").output
        upstream.publish("demo", "0.2.0")
        pkgr.repo("update")
        result = pkgr.repo("upgrade", "demo", "-y")
        assert result.exit_code == 0, result.output
        assert "+ demo 0.1.0 -> 0.2.0" in result.output

    def test_clean(self, pkgr: Pkgr, upstream: LocalSource, tmp_path: Path) -> None:
        for version in ("0.2.0", "0.3.0"):
            upstream.publish("demo", version)
            pkgr.repo("sync", "-y")
        result = pkgr.repo("clean", "--keep", "1", "-y")
        assert result.exit_code == 0, result.output
        assert "缓存已清空。" in result.output
        versions = (pkgr.root / "packages" / "demo" / "versions.txt").read_text(encoding="utf-8")
        assert versions == "0.3.0"
        assert not (pkgr.root / "sources").exists()

    def test_update_local_repair(self, pkgr: Pkgr, upstream: LocalSource) -> None:
        pkgr.repo("sync", "-y")
        (pkgr.root / "packages" / "demo" / "versions.txt").write_text("", encoding="utf-8")
        result = pkgr.repo("list")
        assert result.exit_code == 0
        result = pkgr.repo("update", "local", "--repair")
        assert result.exit_code == 0, result.output
        assert "2 个已安装包" in result.output

    def test_repair_requires_local(self, pkgr: Pkgr) -> None:
        result = pkgr.repo("update", "--repair")
        assert result.exit_code == 1
        assert "update local" in result.output

    def test_inconsistent_ledger_reported(self, pkgr: Pkgr, upstream: LocalSource) -> None:
        pkgr.repo("sync", "-y")
        (pkgr.root / "packages" / "demo" / "versions.txt").write_text("", encoding="utf-8")
        result = pkgr.repo("update", "local")
        assert result.exit_code == 1
        assert "--repair" in result.output


class TestAppCommands:
    def test_init_add_remove(self, runner: CliRunner, tmp_path: Path) -> None:
        pkg = tmp_path / "notes"
        assert runner.invoke(main, ["app", "--package", str(pkg), "init"]).exit_code == 0
        (pkg / "a.js").write_text("a", encoding="utf-8")
        (pkg / "b.js").write_text("b", encoding="utf-8")
        result = runner.invoke(main, ["app", "--package", str(pkg), "add", str(pkg / "a.js"), str(pkg / "b.js")])
        assert result.exit_code == 0, result.output
        result = runner.invoke(main, ["app", "--package", str(pkg), "remove", str(pkg / "a.js")])
        assert result.exit_code == 0, result.output
        data = json.loads((pkg / "metadata.json").read_text(encoding="utf-8"))
        assert list(data["all_files"]) == ["b.js"]

    def test_remove_unlisted_is_error(self, runner: CliRunner, tmp_path: Path) -> None:
        pkg = tmp_path / "notes"
        runner.invoke(main, ["app", "--package", str(pkg), "init"])
        result = runner.invoke(main, ["app", "--package", str(pkg), "remove", str(pkg / "x.js")])
        assert result.exit_code == 1
        assert "错误:" in result.output
