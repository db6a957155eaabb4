"""pageos-pkgr 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
业务异常（PkgrError）统一在这里转换为 "错误: ..." 输出和退出码 1。
"""

from __future__ import annotations

import os
from typing import Any

import click

from pkgr import __version__
from pkgr.core.changes import ChangeSet
from pkgr.core.exceptions import PkgrError
from pkgr.core.sync import BatchReport
from pkgr.utils.logger import setup_logging


class CliError(click.ClickException):
    """以中文前缀输出的命令行错误"""

    def show(self, file: Any = None) -> None:
        click.echo(f"错误: {self.format_message()}", err=True)


class PkgrGroup(click.Group):
    """把 PkgrError 映射为 CliError 的命令组"""

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except PkgrError as e:
            raise CliError(str(e)) from e


def yes_option(func: Any) -> Any:
    return click.option("-y", "--yes", is_flag=True, default=False, help="跳过确认提示")(func)


def confirm_changes(ctx: click.Context, changes: ChangeSet, prompt: str, yes: bool) -> bool:
    """展示变更集并请求确认；空变更集或拒绝时返回 False（均不是错误）"""
    if changes.is_empty:
        click.echo("没有需要执行的变更。")
        return False
    click.echo("将执行以下变更:")
    for line in changes.describe():
        click.echo(f"  {line}")
    if yes or (ctx.find_root().obj or {}).get("yes"):
        return True
    if not click.confirm(prompt, default=False):
        click.echo("已取消。")
        return False
    return True


def finish(reports: BatchReport | list[BatchReport]) -> None:
    """输出批处理汇总；有失败或被中止时以非零码退出"""
    if isinstance(reports, BatchReport):
        reports = [reports]
    failed = False
    for report in reports:
        click.echo(report.summary())
        for key, reason in report.failures.items():
            click.echo(f"  {key}: {reason}", err=True)
        failed = failed or not report.ok
    if failed:
        raise CliError("部分操作失败")


@click.group(cls=PkgrGroup)
@click.version_option(version=__version__)
@click.option("-y", "--yes", is_flag=True, default=False, help="跳过所有确认提示")
@click.pass_context
def main(ctx: click.Context, yes: bool) -> None:
    """pageos-pkgr - PageOS Web 应用包管理器"""
    setup_logging(
        level=os.getenv("PKGR_LOG_LEVEL", "WARNING"),
        json_output=os.getenv("PKGR_LOG_JSON", "") == "1",
    )
    ctx.ensure_object(dict)
    ctx.obj["yes"] = yes


# 注册各领域子命令
from pkgr.cli.cmd_app import register as _reg_app  # noqa: E402
from pkgr.cli.cmd_repo import register as _reg_repo  # noqa: E402

_reg_repo(main)
_reg_app(main)
