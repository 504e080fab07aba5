"""服务容器 — 统一依赖注入

依赖关系（→ 表示依赖）:
  packages   → cache, repository, reader, writer
  cache      → downloader, reader

已安装索引表示“本次命令”的状态，由 PackageManager.begin_install() 按命令重建，
不放在容器中。

用法:
    container = ServiceContainer(config=Config.from_file("archpkg.yml"))
    pm = container.packages
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from archpkg.core.manifest import ManifestReader, ManifestWriter

if TYPE_CHECKING:
    from archpkg.core.config import Config
    from archpkg.core.dep.cache import CacheManager
    from archpkg.core.pkg_manager import PackageManager
    from archpkg.services.downloader import Downloader
    from archpkg.services.repository import RepositoryClient

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器"""

    def __init__(self, config: Config | None = None) -> None:
        self._instances: dict[str, object] = {}
        if config is None:
            from archpkg.core.config import get_config
            config = get_config()
        self._config = config

    @property
    def config(self) -> Config:
        return self._config

    # ---- 清单 ----

    @property
    def reader(self) -> ManifestReader:
        if "reader" not in self._instances:
            self._instances["reader"] = ManifestReader(
                manifest_name=self._config.manifest_name,
                metadata_key=self._config.metadata_key,
            )
        return self._instances["reader"]  # type: ignore[return-value]

    @property
    def writer(self) -> ManifestWriter:
        if "writer" not in self._instances:
            self._instances["writer"] = ManifestWriter(
                manifest_name=self._config.manifest_name,
                metadata_key=self._config.metadata_key,
                imports_file=self._config.imports_file,
            )
        return self._instances["writer"]  # type: ignore[return-value]

    # ---- 外部协作方 ----

    @property
    def repository(self) -> RepositoryClient:
        if "repository" not in self._instances:
            from archpkg.services.repository import RepositoryClient
            self._instances["repository"] = RepositoryClient(
                server=self._config.repo_server,
                cafile=self._config.download_cert,
                timeout=int(self._config.timeout),
            )
        return self._instances["repository"]  # type: ignore[return-value]

    @property
    def downloader(self) -> Downloader:
        if "downloader" not in self._instances:
            from archpkg.services.downloader import Downloader
            self._instances["downloader"] = Downloader(
                cafile=self._config.download_cert,
                timeout=int(self._config.timeout),
            )
        return self._instances["downloader"]  # type: ignore[return-value]

    # ---- 依赖引擎 ----

    @property
    def cache(self) -> CacheManager:
        if "cache" not in self._instances:
            from archpkg.core.dep.cache import CacheManager
            self._instances["cache"] = CacheManager(
                cache_root=self._config.cache_folder,
                downloader=self.downloader,
                reader=self.reader,
                policy=self._config.cache_policy,
            )
        return self._instances["cache"]  # type: ignore[return-value]

    # ---- Facade ----

    @property
    def packages(self) -> PackageManager:
        if "packages" not in self._instances:
            from archpkg.core.pkg_manager import PackageManager
            self._instances["packages"] = PackageManager(
                config=self._config,
                cache=self.cache,
                repository=self.repository,
                reader=self.reader,
                writer=self.writer,
            )
        return self._instances["packages"]  # type: ignore[return-value]


# ---- 全局单例 ----

_global: ServiceContainer | None = None
_global_lock = threading.Lock()


def get_container() -> ServiceContainer:
    """获取全局 ServiceContainer 单例（线程安全）"""
    global _global  # noqa: PLW0603
    if _global is not None:
        return _global
    with _global_lock:
        if _global is None:
            _global = ServiceContainer()
        return _global


def set_container(container: ServiceContainer) -> None:
    """替换全局容器（CLI 按命令行参数构建配置后调用）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = container


def reset_container() -> None:
    """重置全局容器（仅用于测试）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = None
