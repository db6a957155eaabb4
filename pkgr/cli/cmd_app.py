"""CLI — 应用包编写命令（pkgr app ...）"""

from __future__ import annotations

import click

from pkgr.cli import PkgrGroup
from pkgr.core import app_package


def register(group: click.Group) -> None:
    group.add_command(app_group)


@click.group(name="app", cls=PkgrGroup)
@click.option("--package", "package_path", default=".", help="应用包目录（默认当前目录）")
@click.pass_context
def app_group(ctx: click.Context, package_path: str) -> None:
    """应用包管理"""
    ctx.ensure_object(dict)["package_path"] = package_path


@app_group.command(name="init")
@click.pass_context
def app_init(ctx: click.Context) -> None:
    """在 --package 目录初始化应用包"""
    path = app_package.init(ctx.obj["package_path"])
    click.echo(f"应用包已初始化: {path}")


@app_group.command(name="new")
@click.argument("package_id")
@click.option("--base-dir", default=".", help="在此目录下创建应用包")
def app_new(package_id: str, base_dir: str) -> None:
    """创建以 PACKAGE_ID 命名的新应用包"""
    path = app_package.new(package_id, base_dir)
    click.echo(f"应用包已创建: {path}")


@app_group.command(name="add")
@click.argument("paths", nargs=-1, required=True)
@click.pass_context
def app_add(ctx: click.Context, paths: tuple[str, ...]) -> None:
    """把文件或目录登记到 metadata.json 的 all_files"""
    for path in paths:
        added = app_package.add_file(path, ctx.obj["package_path"])
        for rel in added:
            click.echo(f"  + {rel}")
    click.echo("metadata.json 已更新。")


@app_group.command(name="remove")
@click.argument("paths", nargs=-1, required=True)
@click.pass_context
def app_remove(ctx: click.Context, paths: tuple[str, ...]) -> None:
    """从 all_files 中移除文件或目录下的全部文件"""
    for path in paths:
        for rel in app_package.remove_file(path, ctx.obj["package_path"]):
            click.echo(f"  - {rel}")
    click.echo("metadata.json 已更新。")
