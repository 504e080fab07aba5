"""archpkg 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
全局选项在 main 中合并进 Config，并据此构建全局服务容器。
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import click

from archpkg import __version__
from archpkg.core.config import Config
from archpkg.core.exceptions import ArchpkgError, DependencyConflictError
from archpkg.services.container import ServiceContainer, get_container, set_container
from archpkg.utils.logger import setup_logging


def _svc() -> Any:
    """获取全局服务容器的快捷方式"""
    return get_container()


@contextmanager
def handle_errors() -> Iterator[None]:
    """把业务异常转换为 ClickException（stderr 输出 + 退出码 1）"""
    try:
        yield
    except DependencyConflictError as e:
        for line in e.conflicts:
            click.echo(line, err=True)
        raise click.ClickException(e.message) from e
    except ArchpkgError as e:
        raise click.ClickException(f"[{e.code}] {e.message}") from e
    except OSError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default="archpkg.yml", show_default=True,
              help="配置文件路径（不存在则使用默认配置）")
@click.option("--log-level", default=None, help="日志级别（默认读取 ARCHPKG_LOG_LEVEL）")
@click.option("--project", default=".", show_default=True,
              type=click.Path(file_okay=False), help="项目目录")
@click.option("--cache-folder", default=None, help="下载缓存目录")
@click.option("--auto-import/--no-auto-import", default=None,
              help="是否把生成的导入清单登记到项目清单")
@click.option("--clean-cache/--keep-cache", default=None,
              help="命令结束后是否清空下载缓存")
@click.pass_context
def main(
    ctx: click.Context,
    config_path: str,
    log_level: str | None,
    project: str,
    cache_folder: str | None,
    auto_import: bool | None,
    clean_cache: bool | None,
) -> None:
    """archpkg - 架构模型/元数据包管理器"""
    setup_logging(
        level=log_level or os.getenv("ARCHPKG_LOG_LEVEL", "INFO"),
        json_output=os.getenv("ARCHPKG_LOG_JSON", "") == "1",
    )
    with handle_errors():
        cfg = Config.from_file(config_path)
    if cache_folder:
        cfg.cache_folder = cache_folder
    if auto_import is not None:
        cfg.auto_import = auto_import
    if clean_cache is not None:
        cfg.clean_cache = clean_cache
    set_container(ServiceContainer(config=cfg))
    ctx.obj = {"project": Path(project)}


# 注册各领域子命令
from archpkg.cli.cmd_packages import register as _reg_packages  # noqa: E402

_reg_packages(main)
