"""CLI — 仓库管理命令（pkgr repo ...）"""

from __future__ import annotations

import click

from pkgr.cli import CliError, PkgrGroup, confirm_changes, finish, yes_option
from pkgr.core.changes import ChangeSet
from pkgr.core.config import SourceConfig, default_repo_dir, expand_path
from pkgr.core.context import DEFAULT_LOCK_TIMEOUT
from pkgr.core.index import IndexEntry
from pkgr.core.repository import DEFAULT_KEEP, RepoManager
from pkgr.services.container import ServiceContainer


def register(group: click.Group) -> None:
    group.add_command(repo_group)


def _svc(ctx: click.Context) -> ServiceContainer:
    """当前命令对应仓库的服务容器"""
    obj = ctx.find_object(dict)
    if "container" not in obj:
        obj["container"] = ServiceContainer(obj["repo_root"], obj["lock_timeout"])
    return obj["container"]


def _print_entries(entries: list[IndexEntry]) -> None:
    if not entries:
        click.echo("没有匹配的包。")
        return
    for e in entries:
        click.echo(f"  {e.id:30s} {e.latest_version:12s} {e.name}  {e.description}")


@click.group(name="repo", cls=PkgrGroup)
@click.option("--repo", "repo_root", default=default_repo_dir, show_default=False,
              help="仓库目录（默认 $XDG_DATA_HOME/pageos-pkgr/repo）")
@click.option("--lock-timeout", default=DEFAULT_LOCK_TIMEOUT, type=float,
              help="等待仓库锁的秒数")
@click.pass_context
def repo_group(ctx: click.Context, repo_root: str, lock_timeout: float) -> None:
    """软件仓库管理"""
    obj = ctx.ensure_object(dict)
    obj["repo_root"] = str(expand_path(repo_root))
    obj["lock_timeout"] = lock_timeout


# ---- 生命周期 ----


@repo_group.command(name="init")
@click.option("--cache-dir", default=None, help="缓存目录（默认 $XDG_CACHE_HOME/pageos-pkgr/cache）")
@click.pass_context
def repo_init(ctx: click.Context, cache_dir: str | None) -> None:
    """在 --repo 指定的目录初始化空仓库"""
    repo = RepoManager.init(ctx.obj["repo_root"], cache_dir=cache_dir)
    click.echo(f"仓库已初始化: {repo.ctx.root}")


@repo_group.command(name="new")
@click.argument("name")
@click.option("--base-dir", default=".", help="在此目录下创建仓库")
@click.option("--cache-dir", default=None, help="缓存目录")
def repo_new(name: str, base_dir: str, cache_dir: str | None) -> None:
    """创建名为 NAME 的新仓库目录"""
    repo = RepoManager.new(name, base_dir, cache_dir=cache_dir)
    click.echo(f"仓库已创建: {repo.ctx.root}")


@repo_group.command(name="clean")
@click.option("--keep", default=DEFAULT_KEEP, type=int, show_default=True,
              help="每个包保留的最新版本数")
@yes_option
@click.pass_context
def repo_clean(ctx: click.Context, keep: int, yes: bool) -> None:
    """清空缓存、清空索引 source 部分并删除旧版本"""
    repo = _svc(ctx).repo
    changes = repo.plan_clean(keep)
    if not changes.is_empty and not confirm_changes(ctx, changes, "确定要删除这些旧版本吗？", yes):
        return
    finish(repo.clean(keep))
    click.echo("缓存已清空。")


# ---- 索引 ----


@repo_group.command(name="update")
@click.argument("target", required=False, type=click.Choice(["local"]))
@click.option("--repair", is_flag=True, default=False,
              help="以包存储为准修复版本清单（仅 update local）")
@click.pass_context
def repo_update(ctx: click.Context, target: str | None, repair: bool) -> None:
    """刷新软件源索引；`update local` 重建本地索引"""
    repo = _svc(ctx).repo
    if target == "local":
        index = repo.update_local_index(repair=repair)
        click.echo(f"本地索引已重建: {len(index.packages)} 个已安装包, {len(index.source)} 个软件源包")
        return
    if repair:
        raise CliError("--repair 只能与 `update local` 一起使用")
    finish(repo.update_source_index())


@repo_group.command(name="list")
@click.option("--section", default="packages", type=click.Choice(["packages", "source", "all"]),
              help="查询的索引分区")
@click.option("-q", "--query", "text", default=None, help="按 ID / 名称 / 描述过滤")
@click.pass_context
def repo_list(ctx: click.Context, section: str, text: str | None) -> None:
    """列出索引中的包"""
    _print_entries(_svc(ctx).index.query(section=section, text=text))


@repo_group.command(name="info")
@click.argument("package_id")
@click.pass_context
def repo_info(ctx: click.Context, package_id: str) -> None:
    """显示包的详细信息"""
    info = _svc(ctx).repo.info(package_id)
    click.echo(f"ID: {info['id']}")
    click.echo(f"已安装版本: {', '.join(info['versions']) or '无'}")
    if info["installed"]:
        click.echo(f"名称: {info['installed']['name']}")
        click.echo(f"作者: {info['installed']['author']}")
        click.echo(f"描述: {info['installed']['description']}")
        click.echo(f"文件数: {len(info['metadata']['all_files'])}")
    if info["source"]:
        click.echo(f"软件源最新版本: {info['source']['latest_version']}")
        click.echo(f"位置: {info['source']['location']}")


# ---- 包操作 ----


@repo_group.command(name="add")
@click.argument("package_path")
@click.pass_context
def repo_add(ctx: click.Context, package_path: str) -> None:
    """把本地应用包目录加入仓库"""
    dest = _svc(ctx).repo.add_package(package_path)
    click.echo(f"已添加: {dest}")


@repo_group.command(name="install")
@click.argument("spec")
@click.option("--version", default=None, help="安装指定版本")
@yes_option
@click.pass_context
def repo_install(ctx: click.Context, spec: str, version: str | None, yes: bool) -> None:
    """安装软件包（SPEC: id、source:id 或 source:id:version）"""
    repo = _svc(ctx).repo
    changes = repo.plan_install(spec, version)
    if confirm_changes(ctx, changes, "确定要安装吗？", yes):
        finish(repo.apply(changes, name=f"安装 {spec}"))


@repo_group.command(name="remove")
@click.argument("spec")
@yes_option
@click.pass_context
def repo_remove(ctx: click.Context, spec: str, yes: bool) -> None:
    """删除软件包（SPEC: id 删除全部版本，id:version 删除单个版本）"""
    package_id, _, version = spec.partition(":")
    repo = _svc(ctx).repo
    changes = repo.plan_remove(package_id, version or None)
    if confirm_changes(ctx, changes, "确定要删除吗？", yes):
        finish(repo.apply(changes, name=f"删除 {package_id}"))


@repo_group.command(name="upgrade")
@click.argument("package_id", required=False)
@yes_option
@click.pass_context
def repo_upgrade(ctx: click.Context, package_id: str | None, yes: bool) -> None:
    """升级已安装的软件包（不指定则升级全部）"""
    repo = _svc(ctx).repo
    changes = repo.plan_upgrade(package_id)
    if confirm_changes(ctx, changes, "确定要升级吗？", yes):
        finish(repo.apply(changes, batch=True, name="升级"))


@repo_group.command(name="sync")
@click.argument("args", nargs=-1)
@click.option("-m", "--mirror", is_flag=True, default=False, help="镜像同步")
@yes_option
@click.pass_context
def repo_sync(ctx: click.Context, args: tuple[str, ...], mirror: bool, yes: bool) -> None:
    """从软件源同步：`sync [SOURCE]` 增量，`sync mirror [SOURCE]` 镜像"""
    if args and args[0] == "mirror":
        mirror, args = True, args[1:]
    if len(args) > 1:
        raise CliError("最多只能指定一个软件源")
    source_id = args[0] if args else None

    repo = _svc(ctx).repo
    plans = repo.plan_sync(source_id, mirror=mirror)
    merged = ChangeSet([c for p in plans for c in p.changes])
    prompt = "确定要镜像同步吗？" if mirror else "确定要同步吗？"
    if confirm_changes(ctx, merged, prompt, yes):
        finish(repo.apply_sync(plans))


@repo_group.command(name="serve")
@click.option("--host", default="127.0.0.1", help="监听地址")
@click.option("--port", default=8080, type=int, help="监听端口")
@click.pass_context
def repo_serve(ctx: click.Context, host: str, port: int) -> None:
    """以 HTTP 只读方式发布仓库，可作为其他仓库的软件源"""
    from pkgr.services.container import configure_container
    from pkgr.web.app import app

    container = configure_container(ctx.obj["repo_root"], ctx.obj["lock_timeout"])
    # 仓库不存在时在启动前报错
    root = container.context.root
    click.echo(f"发布仓库 {root} -> http://{host}:{port}/")
    app.run(host=host, port=port)


# ---- 软件源管理 ----


@repo_group.group(name="source", cls=PkgrGroup)
def source_group() -> None:
    """软件源管理"""


@source_group.command(name="list")
@click.pass_context
def source_list(ctx: click.Context) -> None:
    """列出配置的软件源"""
    sources = _svc(ctx).repo.config.source
    if not sources:
        click.echo("没有配置软件源。")
        return
    for s in sources:
        state = "启用" if s.enabled else "禁用"
        https = "https" if s.require_https else "-"
        click.echo(f"  {s.id:20s} [{state}] [{https:5s}] {s.url}  {s.name}")


@source_group.command(name="add")
@click.argument("source_id")
@click.argument("url")
@click.option("--name", default=None, help="显示名称（默认同 ID）")
@click.option("--disabled", is_flag=True, default=False, help="添加为禁用状态")
@click.option("--allow-http", is_flag=True, default=False, help="允许非 HTTPS 地址")
@click.pass_context
def source_add(
    ctx: click.Context, source_id: str, url: str, name: str | None,
    disabled: bool, allow_http: bool,
) -> None:
    """添加软件源（URL 为以 / 结尾的地址或本地目录）"""
    if not url.startswith(("http://", "https://")):
        url = str(expand_path(url).absolute())
        if not url.endswith("/"):
            url += "/"
    _svc(ctx).repo.add_source(SourceConfig(
        id=source_id,
        name=name or source_id,
        url=url,
        enabled=not disabled,
        require_https=not allow_http,
    ))
    click.echo(f"软件源已添加: {source_id} -> {url}")


@source_group.command(name="remove")
@click.argument("source_id")
@click.pass_context
def source_remove(ctx: click.Context, source_id: str) -> None:
    """删除软件源（同时清除其索引条目）"""
    _svc(ctx).repo.remove_source(source_id)
    click.echo(f"软件源已删除: {source_id}")


@source_group.command(name="enable")
@click.argument("source_id")
@click.pass_context
def source_enable(ctx: click.Context, source_id: str) -> None:
    """启用软件源"""
    _svc(ctx).repo.set_source_enabled(source_id, True)
    click.echo(f"软件源已启用: {source_id}")


@source_group.command(name="disable")
@click.argument("source_id")
@click.pass_context
def source_disable(ctx: click.Context, source_id: str) -> None:
    """禁用软件源（同时清除其索引条目）"""
    _svc(ctx).repo.set_source_enabled(source_id, False)
    click.echo(f"软件源已禁用: {source_id}")
