"""包管理器 Facade

一次命令的生命周期:

    begin_install()            创建新的 InstalledIndex + InstallOrchestrator
    install() / remove() ...   共享同一个索引
    end_install(clean_cache)   可选清空下载缓存，丢弃索引

用法:
    from archpkg.services.container import ServiceContainer

    pm = ServiceContainer(config=cfg).packages
    pm.begin_install()
    try:
        pm.install("./project", "archpkg.core@^1.0.0", auto_import=True)
    finally:
        pm.end_install()
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from archpkg.core.dep.graph import build_graph
from archpkg.core.dep.index import InstalledIndex
from archpkg.core.dep.installer import InstallOrchestrator, Repository
from archpkg.core.manifest import ManifestReader, ManifestWriter
from archpkg.core.models import GraphNode, VersionRequest

if TYPE_CHECKING:
    from archpkg.core.config import Config
    from archpkg.core.dep.cache import CacheManager

logger = logging.getLogger(__name__)


def parse_package_spec(spec: str) -> tuple[str, VersionRequest]:
    """解析 id[@range]；开头的 @ 属于包 ID（作用域包名）"""
    spec = spec.strip()
    at = spec.rfind("@")
    if at > 0:
        return spec[:at], VersionRequest.parse(spec[at + 1:])
    return spec, VersionRequest.any()


class PackageManager:
    """包管理器统一入口"""

    def __init__(
        self,
        config: Config,
        cache: CacheManager,
        repository: Repository,
        reader: ManifestReader | None = None,
        writer: ManifestWriter | None = None,
    ) -> None:
        self.config = config
        self.cache = cache
        self.repository = repository
        self.reader = reader or ManifestReader(config.manifest_name, config.metadata_key)
        self.writer = writer or ManifestWriter(
            config.manifest_name, config.metadata_key, config.imports_file,
        )
        self._orchestrator: InstallOrchestrator | None = None

    # ---- 运行上下文 ----

    def begin_install(self) -> InstalledIndex:
        """开始一次命令: 丢弃之前的已安装状态"""
        return self._start().index

    def _start(self) -> InstallOrchestrator:
        self._orchestrator = InstallOrchestrator(
            index=InstalledIndex(reader=self.reader),
            cache=self.cache,
            repository=self.repository,
            reader=self.reader,
        )
        return self._orchestrator

    def end_install(self, clean_cache: bool | None = None) -> None:
        """结束一次命令，按需清空下载缓存"""
        if self.config.clean_cache if clean_cache is None else clean_cache:
            self.clean_cache()
        self._orchestrator = None

    @property
    def index(self) -> InstalledIndex:
        return self.orchestrator.index

    @property
    def orchestrator(self) -> InstallOrchestrator:
        """本次命令的编排器；未调用 begin_install 时隐式开始"""
        return self._orchestrator or self._start()

    def install_root(self, project_dir: Path | str) -> Path:
        return (Path(project_dir) / self.config.install_dir).resolve()

    # ---- 命令 ----

    def install(
        self,
        project_dir: Path | str,
        spec: str | None = None,
        auto_import: bool | None = None,
    ) -> dict[str, Any]:
        """安装单个包（spec 为 id[@range]）或项目清单中的全部依赖

        安装完成后重新生成导入清单；auto_import 时把导入清单登记到项目清单。
        """
        project_dir = Path(project_dir)
        root = self.install_root(project_dir)
        manifest = self.reader.manifest_path(project_dir)
        result: dict[str, Any] = {"root": str(root)}

        if spec:
            package_id, request = parse_package_spec(spec)
            version = self.orchestrator.specific_install(root, package_id, request)
            recorded = request.range or f"^{version}"
            self.writer.add_dependency(manifest, package_id, recorded)
            result.update(package_id=package_id, version=version)
        else:
            self.orchestrator.all_install(project_dir, self.config.install_dir)

        imports_path = self.make_imports_file(root)
        result["imports_file"] = str(imports_path)

        if self.config.auto_import if auto_import is None else auto_import:
            link = f"{self.config.install_dir}/{self.config.imports_file}"
            self.writer.add_import(manifest, link)
        return result

    def remove(self, project_dir: Path | str, package_id: str) -> Path:
        """删除已安装的包，同时从项目清单移除依赖并重新生成导入清单"""
        project_dir = Path(project_dir)
        root = self.install_root(project_dir)
        removed = self.orchestrator.remove_package_from(root, package_id)
        self.writer.remove_dependency(self.reader.manifest_path(project_dir), package_id)
        self.make_imports_file(root)
        return removed

    def build_graph(self, root: Path | str) -> list[GraphNode]:
        return build_graph(self.index, root)

    def make_imports_file(self, root: Path | str) -> Path:
        root = Path(root)
        return self.writer.make_imports_file(root, self.build_graph(root), self.index)

    def list_installed(self, root: Path | str) -> list[dict[str, Any]]:
        """列出安装根目录下每个子包的版本与依赖"""
        rows: list[dict[str, Any]] = []
        for entry in self.index.fetch(root):
            for sub_id, record in entry.metadata.items():
                rows.append({
                    "id": sub_id,
                    "version": record.version,
                    "folder": entry.folder,
                    "dependencies": dict(record.dependencies),
                })
        return rows

    def clean_cache(self) -> None:
        self.cache.clear()
