"""安装编排器: 依赖解析与安装状态机

每个 (根目录, 包 ID) 解析请求经历:

    CHECK_INSTALLED
      ├─ SATISFIED            已安装版本满足请求 → 重新校验其依赖
      ├─ NEEDS_UPDATE         已安装但不满足 → 冲突检测 → 清缓存 + 删旧版本
      └─ NEEDS_FRESH_INSTALL  未安装
    → FETCH (缓存) → REPLACE (复制到根目录 + 更新索引)
    → RESOLVE_SUBDEPENDENCIES → DONE

顺序保证:
  - 包自身安装（缓存、落盘、索引更新）先于其依赖的递归解析
  - 升级的冲突检测先于任何破坏性操作（清缓存、删旧版本）
  - 严格串行: 一个依赖的子树完全解析后才开始下一个兄弟依赖

失败策略: 任何异常中止当前分支并向上传播；已完成的兄弟分支保持安装状态，不做回滚。
"""

from __future__ import annotations

import logging
import shutil
from enum import Enum
from pathlib import Path
from typing import Protocol

from archpkg.core.dep.cache import CacheManager
from archpkg.core.dep.index import InstalledIndex
from archpkg.core.exceptions import (
    CyclicDependencyError,
    DependencyConflictError,
    PackageNotFoundError,
)
from archpkg.core.manifest import ManifestReader
from archpkg.core.models import (
    IndexHit,
    InstalledEntry,
    PackageMetadata,
    ResolvedPackage,
    VersionRequest,
    package_folder,
)
from archpkg.core.version import satisfies
from archpkg.utils.logger import margin

logger = logging.getLogger(__name__)


class Repository(Protocol):
    """包仓库协议: 将 id[@range] 解析为版本 + 来源"""

    def resolve(self, package_id: str, request: VersionRequest) -> ResolvedPackage: ...


class InstallState(str, Enum):
    CHECK_INSTALLED = "check-installed"
    SATISFIED = "satisfied"
    NEEDS_UPDATE = "needs-update"
    NEEDS_FRESH_INSTALL = "needs-fresh-install"
    CONFLICT_CHECK = "conflict-check"
    FETCH = "fetch"
    REPLACE = "replace"
    RESOLVE_SUBDEPENDENCIES = "resolve-subdependencies"
    DONE = "done"


class InstallOrchestrator:
    """依赖解析与安装编排器

    index 是本次运行的上下文；同一个 InstalledIndex 实例贯穿一次命令中的全部调用。
    """

    def __init__(
        self,
        index: InstalledIndex,
        cache: CacheManager,
        repository: Repository,
        reader: ManifestReader | None = None,
    ) -> None:
        self.index = index
        self.cache = cache
        self.repository = repository
        self.reader = reader or index.reader
        self._in_flight: set[tuple[Path, str]] = set()
        self._resolved: set[tuple[Path, str]] = set()
        self._depth = 0

    def _log(self, level: int, msg: str, *args: object) -> None:
        logger.log(level, "%s " + msg, margin(self._depth), *args)

    # ------------------------------------------------------------------
    # 安装
    # ------------------------------------------------------------------

    def specific_install(
        self,
        root: Path | str,
        package_id: str,
        request: VersionRequest | str | None = None,
    ) -> str:
        """在 root 中安装/校验 package_id，返回最终满足请求的版本"""
        if not isinstance(request, VersionRequest):
            request = VersionRequest.parse(request)
        root = Path(root).resolve()
        # 非法包 ID 在任何磁盘操作之前拒绝
        package_folder(package_id)
        key = (root, package_id)
        if key in self._in_flight:
            raise CyclicDependencyError(
                [package_id],
                f"解析过程中检测到循环依赖: {package_id} 在 {root} 中重复进入",
            )

        self._in_flight.add(key)
        self._log(logging.INFO, "尝试安装 [%s@%s]", package_id, request)
        self._depth += 1
        try:
            version = self._install(root, package_id, request)
        finally:
            self._depth -= 1
            self._in_flight.discard(key)
        self._resolved.add(key)
        self._log(logging.INFO, "完成 [%s@%s]", package_id, version)
        return version

    def _install(self, root: Path, package_id: str, request: VersionRequest) -> str:
        # ---- CHECK_INSTALLED ----
        hit = self.index.find(root, package_id)
        current = hit.record.version if hit else None
        if hit is not None and (request.is_any or satisfies(hit.record.version, request.range)):
            return self._on_satisfied(root, package_id, hit)

        state = InstallState.NEEDS_FRESH_INSTALL if current is None else InstallState.NEEDS_UPDATE
        resolved = self.repository.resolve(package_id, request)
        if resolved.source.is_builtin:
            self._log(logging.INFO, "%s 为内置包 (%s)，无需安装", package_id, resolved.version)
            return resolved.version

        if state is InstallState.NEEDS_UPDATE:
            self._replace_existing(root, package_id, current or "", resolved.version)

        # ---- FETCH / REPLACE ----
        cached = self.cache.fetch_into(resolved.source.locator, package_id, resolved.version)
        destination = self.install_package_to(cached, root, package_id)

        # ---- RESOLVE_SUBDEPENDENCIES ----
        self.resolve_dependencies(self.reader.read_metadata(destination), root)
        return resolved.version

    def _on_satisfied(self, root: Path, package_id: str, hit: IndexHit) -> str:
        current = hit.record.version
        self._log(logging.INFO, "%s@%s 已安装", package_id, current)
        if (root, package_id) in self._resolved:
            self._log(logging.DEBUG, "%s 本次运行中已校验过依赖，跳过", package_id)
            return current
        # 重新读取磁盘上的元数据，不信任索引中可能过期的对象
        self.resolve_dependencies(self.reader.read_metadata(hit.entry.source_path), root)
        return current

    def _replace_existing(self, root: Path, package_id: str, current: str, proposed: str) -> None:
        # ---- CONFLICT_CHECK ----
        conflicts = self.is_available_to_update(package_id, proposed)
        if conflicts:
            for message in conflicts:
                self._log(logging.ERROR, "%s", message)
            raise DependencyConflictError(package_id, conflicts)
        self._log(logging.INFO, "%s 将从 %s 升级到 %s", package_id, current, proposed)
        self.cache.invalidate(package_id)
        self.remove_package_from(root, package_id)

    def install_package_to(self, cached: Path, root: Path | str, package_id: str) -> Path:
        """把缓存目录复制到 root/<package_folder(package_id)> 并登记到索引（缓存目录保持可复用）"""
        root = Path(root).resolve()
        metadata = self.reader.read_metadata(cached)
        self.index.fetch(root)
        root.mkdir(parents=True, exist_ok=True)

        destination = root / package_folder(package_id)
        shutil.rmtree(destination, ignore_errors=True)
        shutil.copytree(cached, destination)
        self.index.record_install(root, InstalledEntry(source_path=destination, metadata=metadata))
        self._log(logging.DEBUG, "包已安装到 %s", destination)
        return destination

    def resolve_dependencies(self, metadata: PackageMetadata, root: Path | str) -> None:
        """按声明顺序逐个解析每个子包的依赖"""
        for sub_id, record in metadata.items():
            if not record.dependencies:
                self._log(logging.DEBUG, "子包 %s 无依赖", sub_id)
                continue
            self._log(logging.INFO, "安装 [%s] 的依赖...", sub_id)
            for dep_id, dep_range in record.dependencies.items():
                self.specific_install(root, dep_id, VersionRequest.parse(dep_range))

    def all_install(self, project_dir: Path | str, install_dir: str = "_metamodel_") -> Path:
        """读取项目自身清单，把声明的全部依赖安装到 project_dir/install_dir"""
        project_dir = Path(project_dir)
        root = (project_dir / install_dir).resolve()
        self._log(logging.INFO, "安装项目依赖: %s -> %s", project_dir, root)
        self.resolve_dependencies(self.reader.read_metadata(project_dir), root)
        return root

    # ------------------------------------------------------------------
    # 冲突检测
    # ------------------------------------------------------------------

    def is_available_to_update(self, package_id: str, proposed_version: str) -> list[str]:
        """检查把 package_id 升级到 proposed_version 是否会破坏已加载索引中任何包的依赖要求

        只检查本次运行中已加载的根目录，返回冲突描述列表（无冲突为空列表）。
        """
        conflicts: list[str] = []
        for _, entries in self.index.items():
            for entry in entries:
                for dependent, required in entry.metadata.dependents_of(package_id).items():
                    if required and not satisfies(proposed_version, required):
                        conflicts.append(
                            f"依赖版本冲突: {package_id} 将被安装为 {proposed_version}，"
                            f"但包 {dependent} 要求 {required}。"
                        )
        return conflicts

    # ------------------------------------------------------------------
    # 删除
    # ------------------------------------------------------------------

    def remove_package_from(self, root: Path | str, package_id: str) -> Path:
        """从 root 删除已安装的包（不级联处理依赖它的包）"""
        root = Path(root).resolve()
        self._log(logging.INFO, "尝试删除包 %s...", package_id)
        hit = self.index.find(root, package_id)
        if hit is None:
            raise PackageNotFoundError(f"无法删除包 {package_id}: 在 {root} 中未找到")
        shutil.rmtree(hit.entry.source_path, ignore_errors=True)
        self.index.record_removal(root, hit.entry)
        self._log(logging.INFO, "已删除: %s", hit.entry.source_path)
        return hit.entry.source_path
