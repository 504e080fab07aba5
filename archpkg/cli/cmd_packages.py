"""CLI — 包安装 / 删除 / 缓存 / 查看命令"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import click

from archpkg.cli import _svc, handle_errors


def register(group: click.Group) -> None:
    group.add_command(install)
    group.add_command(remove)
    group.add_command(clean)
    group.add_command(list_packages)
    group.add_command(graph)


def _project(ctx: click.Context) -> Path:
    return ctx.obj["project"]


def _packages() -> Any:
    with handle_errors():
        return _svc().packages


@click.command()
@click.argument("spec", required=False)
@click.pass_context
def install(ctx: click.Context, spec: str | None) -> None:
    """安装包 (SPEC = 包ID[@版本范围])；不指定时安装项目清单中的全部依赖"""
    pm = _packages()
    pm.begin_install()
    try:
        with handle_errors():
            result = pm.install(_project(ctx), spec)
    finally:
        pm.end_install()
    if spec:
        click.echo(f"已安装: {result['package_id']}@{result['version']}")
    else:
        click.echo(f"项目依赖已安装到: {result['root']}")
    click.echo(f"导入清单: {result['imports_file']}")


@click.command()
@click.argument("package_id")
@click.pass_context
def remove(ctx: click.Context, package_id: str) -> None:
    """删除已安装的包（不处理依赖它的其他包）"""
    pm = _packages()
    pm.begin_install()
    try:
        with handle_errors():
            path = pm.remove(_project(ctx), package_id)
    finally:
        pm.end_install()
    click.echo(f"已删除: {package_id} ({path})")


@click.command()
def clean() -> None:
    """清空下载缓存"""
    pm = _packages()
    with handle_errors():
        pm.clean_cache()
    click.echo(f"缓存已清空: {pm.config.cache_folder}")


@click.command(name="list")
@click.pass_context
def list_packages(ctx: click.Context) -> None:
    """列出项目中已安装的包"""
    pm = _packages()
    pm.begin_install()
    with handle_errors():
        rows = pm.list_installed(pm.install_root(_project(ctx)))
    if not rows:
        click.echo("没有已安装的包。")
        return
    for row in rows:
        deps = ", ".join(f"{k}@{v or '*'}" for k, v in row["dependencies"].items())
        click.echo(
            f"  {row['id']:30s} {row['version']:12s} [{row['folder']}]"
            + (f"  -> {deps}" if deps else "")
        )


@click.command()
@click.pass_context
def graph(ctx: click.Context) -> None:
    """按依赖顺序（被依赖者在前）输出已安装包"""
    pm = _packages()
    pm.begin_install()
    with handle_errors():
        nodes = pm.build_graph(pm.install_root(_project(ctx)))
    for i, node in enumerate(nodes, 1):
        deps = f"  (依赖: {', '.join(node.out)})" if node.out else ""
        click.echo(f"  {i:3d}. {node.id}{deps}")
