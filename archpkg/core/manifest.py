"""包清单读写

清单 (dochub.yaml) 结构:

    $package:
      ".":
        version: 1.2.0
        dependencies:
          other.pkg: ^1.0.0
    imports:
      - _metamodel_/packages.yaml

职责:
- ManifestReader: 读取包目录中的清单，校验“这是一个包”的唯一入口
- ManifestWriter: 生成导入清单 (packages.yaml)，维护项目清单的依赖与导入项
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from archpkg.core.exceptions import ManifestMalformedError, ManifestMissingError
from archpkg.core.models import PackageMetadata
from archpkg.utils.yaml_io import load_yaml, load_yaml_any, save_yaml

if TYPE_CHECKING:
    from archpkg.core.dep.index import InstalledIndex
    from archpkg.core.models import GraphNode

logger = logging.getLogger(__name__)

DEFAULT_MANIFEST_NAME = "dochub.yaml"
DEFAULT_METADATA_KEY = "$package"
DEFAULT_IMPORTS_FILE = "packages.yaml"

IMPORTS_HEADER = (
    "This file is generated automatically by archpkg.\n"
    "It is not recommended to make changes to it."
)


class ManifestReader:
    """包清单读取器"""

    def __init__(
        self,
        manifest_name: str = DEFAULT_MANIFEST_NAME,
        metadata_key: str = DEFAULT_METADATA_KEY,
    ) -> None:
        self.manifest_name = manifest_name
        self.metadata_key = metadata_key

    def manifest_path(self, package_dir: Path) -> Path:
        return Path(package_dir) / self.manifest_name

    def has_manifest(self, package_dir: Path) -> bool:
        return self.manifest_path(package_dir).is_file()

    def read_metadata(self, package_dir: Path) -> PackageMetadata:
        """读取包目录的元数据

        异常:
            ManifestMissingError: 清单文件不存在
            ManifestMalformedError: 清单无法解析或缺少包元数据段
        """
        manifest = self.manifest_path(package_dir)
        if not manifest.is_file():
            raise ManifestMissingError(
                f"包结构错误: {package_dir} 中未找到 {self.manifest_name}"
            )
        try:
            content = load_yaml_any(manifest)
        except (yaml.YAMLError, ValueError) as e:
            raise ManifestMalformedError(f"无法解析清单 {manifest}: {e}") from e

        raw = content.get(self.metadata_key) if isinstance(content, dict) else None
        if not raw:
            raise ManifestMalformedError(
                f"清单 {manifest} 中没有可用的 {self.metadata_key} 元数据"
            )
        try:
            return PackageMetadata.from_raw(raw)
        except ManifestMalformedError as e:
            raise ManifestMalformedError(f"{manifest}: {e.message}") from e


class ManifestWriter:
    """导入清单生成 + 项目清单维护"""

    def __init__(
        self,
        manifest_name: str = DEFAULT_MANIFEST_NAME,
        metadata_key: str = DEFAULT_METADATA_KEY,
        imports_file: str = DEFAULT_IMPORTS_FILE,
    ) -> None:
        self.manifest_name = manifest_name
        self.metadata_key = metadata_key
        self.imports_file = imports_file

    # ---- 导入清单 ----

    def build_imports(
        self, root: Path, graph: list[GraphNode], index: InstalledIndex,
    ) -> list[str]:
        """按依赖图顺序列出每个已安装包清单的相对路径

        内置包（图中存在但没有安装目录）被跳过；同一目录声明多个子包时只列一次。
        """
        base = Path(root).resolve()
        imports: list[str] = []
        for node in graph:
            hit = index.find(base, node.id)
            if hit is None:
                continue
            relative = hit.entry.source_path.relative_to(base).as_posix()
            link = f"{relative}/{self.manifest_name}"
            if link not in imports:
                imports.append(link)
        return imports

    def make_imports_file(
        self, root: Path, graph: list[GraphNode], index: InstalledIndex,
    ) -> Path:
        """在安装根目录下生成导入清单，返回文件路径"""
        imports = self.build_imports(root, graph, index)
        path = Path(root) / self.imports_file
        save_yaml(path, {"imports": imports}, header=IMPORTS_HEADER)
        logger.info("已生成导入清单: %s (%d 项)", path, len(imports))
        return path

    # ---- 项目清单 ----

    def _default_manifest(self) -> dict[str, Any]:
        return {self.metadata_key: {".": {"version": "1.0.0"}}}

    def add_dependency(
        self,
        manifest_path: Path,
        package_id: str,
        version_range: str,
        this_package: str | None = None,
    ) -> bool:
        """在项目清单中登记依赖，返回是否发生了写入

        清单不存在时按默认模板创建；缺少包元数据段时以 this_package（默认 "."）创建。
        """
        manifest_path = Path(manifest_path)
        data = load_yaml(manifest_path) if manifest_path.exists() else self._default_manifest()

        packages = data.get(self.metadata_key)
        if not isinstance(packages, dict) or not packages:
            this_package = this_package or "."
            logger.debug("未找到 %s，将以包 ID %s 创建", self.metadata_key, this_package)
            packages = {this_package: {"dependencies": {}}}
            data[self.metadata_key] = packages
        elif not this_package:
            this_package = next(iter(packages))

        record = packages.setdefault(this_package, {})
        if not isinstance(record, dict):
            raise ManifestMalformedError(
                f"清单 {manifest_path} 中 {this_package} 的元数据不是映射类型"
            )
        deps = record.get("dependencies")
        if not isinstance(deps, dict):
            deps = {}
            record["dependencies"] = deps

        if deps.get(package_id) == version_range:
            return False
        deps[package_id] = version_range
        save_yaml(manifest_path, data)
        logger.info("已登记依赖: %s@%s -> %s", package_id, version_range, manifest_path)
        return True

    def remove_dependency(self, manifest_path: Path, package_id: str) -> bool:
        """从项目清单的所有子包中删除对 package_id 的依赖，返回是否发生了写入"""
        manifest_path = Path(manifest_path)
        data = load_yaml(manifest_path)
        packages = data.get(self.metadata_key)
        if not isinstance(packages, dict):
            return False

        changed = False
        for record in packages.values():
            deps = record.get("dependencies") if isinstance(record, dict) else None
            if isinstance(deps, dict) and package_id in deps:
                del deps[package_id]
                changed = True
        if changed:
            save_yaml(manifest_path, data)
            logger.info("已移除依赖: %s <- %s", package_id, manifest_path)
        return changed

    def add_import(self, manifest_path: Path, link: str) -> bool:
        """向项目清单的 imports 追加链接（已存在则跳过），返回是否发生了写入"""
        manifest_path = Path(manifest_path)
        data = load_yaml(manifest_path)
        imports = data.get("imports")
        if not isinstance(imports, list):
            imports = []
        if link in imports:
            return False
        imports.append(link)
        data["imports"] = imports
        save_yaml(manifest_path, data)
        logger.info("已注册导入: %s -> %s", link, manifest_path)
        return True
