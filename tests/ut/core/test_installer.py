"""安装编排器测试: 状态机、冲突检测、删除"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock
from urllib.parse import quote, unquote

import pytest
import yaml

from archpkg.core.dep.cache import CacheManager
from archpkg.core.dep.index import InstalledIndex
from archpkg.core.dep.installer import InstallOrchestrator
from archpkg.core.exceptions import (
    CyclicDependencyError,
    DependencyConflictError,
    PackageNotFoundError,
    RepositoryError,
    ValidationError,
)
from archpkg.core.models import PackageSource, ResolvedPackage, VersionRequest
from archpkg.core.version import max_satisfying

BUILTIN = "built-in"


def _write_package(folder: Path, packages: dict) -> Path:
    folder.mkdir(parents=True, exist_ok=True)
    (folder / "dochub.yaml").write_text(yaml.safe_dump({"$package": packages}), encoding="utf-8")
    return folder


class FakeRepository:
    """catalog: {包 ID: {版本: 依赖字典 | "built-in"}}"""

    def __init__(self, catalog: dict) -> None:
        self.catalog = catalog
        self.calls: list[str] = []

    def resolve(self, package_id: str, request: VersionRequest) -> ResolvedPackage:
        self.calls.append(request.qualify(package_id))
        versions = self.catalog.get(package_id, {})
        version = max_satisfying(list(versions), request.range)
        if version is None:
            raise RepositoryError(f"仓库中没有 {request.qualify(package_id)}", status=404)
        if versions[version] == BUILTIN:
            source = PackageSource.builtin()
        else:
            source = PackageSource.remote(f"https://repo.test/{quote(package_id, safe='')}/{version}")
        return ResolvedPackage(package_id, version, source)


class FakeDownloader:
    """按 URL 中的包 ID / 版本在目标目录生成清单"""

    def __init__(self, catalog: dict) -> None:
        self.catalog = catalog
        self.calls: list[str] = []

    def fetch(self, source: str, destination: Path) -> Path:
        self.calls.append(source)
        quoted, version = source.rsplit("/", 2)[-2:]
        package_id = unquote(quoted)
        deps = self.catalog[package_id][version]
        _write_package(destination, {package_id: {"version": version, "dependencies": deps}})
        return destination


@pytest.fixture()
def env(tmp_path: Path):
    """构建编排器及其假协作方；catalog 可在测试中修改"""
    catalog: dict = {}
    repo = FakeRepository(catalog)
    downloader = FakeDownloader(catalog)
    index = InstalledIndex()
    cache = CacheManager(tmp_path / "cache", downloader)
    orch = InstallOrchestrator(index, cache, repo)
    root = tmp_path / "_metamodel_"
    return orch, catalog, repo, downloader, root


class TestFreshInstall:
    def test_installs_and_resolves_dependencies(self, env) -> None:
        orch, catalog, repo, downloader, root = env
        catalog.update({
            "A": {"1.0.0": {"B": "^2.0.0"}, "0.9.0": {}},
            "B": {"2.1.0": {}, "3.0.0": {}},
        })
        assert orch.specific_install(root, "A", "^1.0.0") == "1.0.0"

        assert orch.index.installed_version(root, "A") == "1.0.0"
        assert orch.index.installed_version(root, "B") == "2.1.0"
        assert (root / "A" / "dochub.yaml").is_file()
        assert (root / "B" / "dochub.yaml").is_file()
        assert repo.calls == ["A@^1.0.0", "B@^2.0.0"]

    def test_cache_entry_stays_reusable(self, env) -> None:
        """安装是复制，缓存目录保持可用"""
        orch, catalog, _, _, root = env
        catalog["A"] = {"1.0.0": {}}
        orch.specific_install(root, "A")
        assert orch.cache.is_cached("A")

    def test_any_request_takes_latest(self, env) -> None:
        orch, catalog, repo, _, root = env
        catalog["A"] = {"1.0.0": {}, "1.5.0": {}}
        assert orch.specific_install(root, "A", None) == "1.5.0"
        assert repo.calls == ["A"]

    def test_repository_error_propagates(self, env) -> None:
        orch, _, _, _, root = env
        with pytest.raises(RepositoryError):
            orch.specific_install(root, "missing", "^1.0.0")


class TestAlreadySatisfied:
    def test_no_repository_call_and_dependencies_walked(self, env) -> None:
        orch, catalog, repo, downloader, root = env
        _write_package(root / "A", {"A": {"version": "1.3.0", "dependencies": {"B": "^1.0.0"}}})
        catalog["B"] = {"1.0.0": {}}

        assert orch.specific_install(root, "A", "^1.2.0") == "1.3.0"
        # A 本身没有触发仓库查询，但其缺失的依赖 B 被补装
        assert repo.calls == ["B@^1.0.0"]
        assert orch.index.installed_version(root, "B") == "1.0.0"

    def test_fully_installed_tree_has_no_side_effects(self, env) -> None:
        orch, _, repo, downloader, root = env
        _write_package(root / "A", {"A": {"version": "1.3.0", "dependencies": {"B": "^1.0.0"}}})
        _write_package(root / "B", {"B": {"version": "1.1.0"}})
        before = sorted(p.name for p in root.iterdir())

        assert orch.specific_install(root, "A", "^1.2.0") == "1.3.0"
        assert repo.calls == []
        assert downloader.calls == []
        assert sorted(p.name for p in root.iterdir()) == before

    def test_shared_dependency_walked_once(self, env) -> None:
        """同一次运行中已校验过的包不重复遍历其依赖"""
        orch, _, _, _, root = env
        _write_package(root / "A", {"A": {"version": "1.0.0", "dependencies": {"C": "*"}}})
        _write_package(root / "B", {"B": {"version": "1.0.0", "dependencies": {"C": "*"}}})
        _write_package(root / "C", {"C": {"version": "1.0.0"}})
        orch.index.fetch(root)
        spy = MagicMock(wraps=orch.reader.read_metadata)
        orch.reader.read_metadata = spy  # type: ignore[method-assign]

        orch.specific_install(root, "A")
        orch.specific_install(root, "B")
        read_dirs = [Path(c.args[0]).name for c in spy.call_args_list]
        assert read_dirs.count("C") == 1


class TestCacheReuse:
    def test_second_install_uses_cache(self, tmp_path: Path) -> None:
        catalog = {"A": {"1.0.0": {}}}
        repo = FakeRepository(catalog)
        downloader = FakeDownloader(catalog)
        cache = CacheManager(tmp_path / "cache", downloader)

        first = InstallOrchestrator(InstalledIndex(), cache, repo)
        first.specific_install(tmp_path / "root1", "A", "1.0.0")
        second = InstallOrchestrator(InstalledIndex(), cache, repo)
        second.specific_install(tmp_path / "root2", "A", "1.0.0")

        assert len(downloader.calls) == 1
        assert (tmp_path / "root2" / "A" / "dochub.yaml").is_file()

    def test_cached_copy_of_other_version_refetched(self, tmp_path: Path) -> None:
        """保留下来的缓存是旧版本时，新安装得到的是仓库解析出的版本"""
        catalog = {"X": {"1.0.0": {}}}
        repo = FakeRepository(catalog)
        downloader = FakeDownloader(catalog)
        cache = CacheManager(tmp_path / "cache", downloader)
        InstallOrchestrator(InstalledIndex(), cache, repo).specific_install(tmp_path / "root1", "X")

        catalog["X"]["2.0.0"] = {}
        second = InstallOrchestrator(InstalledIndex(), cache, repo)
        root2 = tmp_path / "root2"
        assert second.specific_install(root2, "X", "^2.0.0") == "2.0.0"

        assert second.index.installed_version(root2, "X") == "2.0.0"
        assert InstalledIndex().installed_version(root2, "X") == "2.0.0"
        assert len(downloader.calls) == 2


class TestPackageFolders:
    def test_scoped_id_readable_by_new_index(self, env) -> None:
        orch, catalog, _, _, root = env
        catalog["@scope/pkg"] = {"1.0.0": {}}
        assert orch.specific_install(root, "@scope/pkg", "^1.0.0") == "1.0.0"

        assert InstalledIndex.scan(root) == ["@scope%2Fpkg"]
        assert InstalledIndex().installed_version(root, "@scope/pkg") == "1.0.0"

    def test_parent_segments_stay_inside_root(self, env) -> None:
        orch, catalog, _, _, root = env
        victim = root.parent / "victim"
        victim.mkdir()
        (victim / "keep.txt").write_text("keep")
        catalog["../victim"] = {"1.0.0": {}}

        orch.specific_install(root, "../victim", "^1.0.0")

        assert sorted(p.name for p in victim.iterdir()) == ["keep.txt"]
        assert InstalledIndex.scan(root) == ["..%2Fvictim"]
        assert InstalledIndex().installed_version(root, "../victim") == "1.0.0"

    @pytest.mark.parametrize("package_id", ["", ".", ".."])
    def test_unusable_ids_rejected_before_disk_work(self, env, package_id: str) -> None:
        orch, _, repo, downloader, root = env
        with pytest.raises(ValidationError, match="无效的包 ID"):
            orch.specific_install(root, package_id)
        assert repo.calls == []
        assert downloader.calls == []
        assert not root.exists()


class TestUpgrade:
    def test_conflict_aborts_without_mutation(self, env) -> None:
        orch, catalog, _, downloader, root = env
        _write_package(root / "X", {"X": {"version": "1.0.0"}})
        _write_package(root / "Y", {"Y": {"version": "1.0.0", "dependencies": {"X": "^1.0.0"}}})
        catalog["X"] = {"1.0.0": {}, "2.0.0": {}}

        with pytest.raises(DependencyConflictError) as exc_info:
            orch.specific_install(root, "X", "2.0.0")

        assert exc_info.value.package_id == "X"
        assert len(exc_info.value.conflicts) == 1
        assert "Y" in exc_info.value.conflicts[0]
        assert "^1.0.0" in exc_info.value.conflicts[0]
        assert "2.0.0" in exc_info.value.conflicts[0]
        assert orch.index.installed_version(root, "X") == "1.0.0"
        assert yaml.safe_load((root / "X" / "dochub.yaml").read_text())["$package"]["X"]["version"] == "1.0.0"
        assert downloader.calls == []

    def test_upgrade_replaces_installed_copy(self, env) -> None:
        orch, catalog, _, _, root = env
        _write_package(root / "X", {"X": {"version": "1.0.0"}})
        (root / "X" / "stale.txt").write_text("old")
        _write_package(root / "Y", {"Y": {"version": "1.0.0", "dependencies": {"X": ">=1.0.0"}}})
        catalog["X"] = {"2.0.0": {}}
        # 旧版本的缓存必须失效
        stale_cache = orch.cache.location_for("X")
        _write_package(stale_cache, {"X": {"version": "1.0.0"}})

        assert orch.specific_install(root, "X", "^2.0.0") == "2.0.0"
        assert orch.index.installed_version(root, "X") == "2.0.0"
        assert not (root / "X" / "stale.txt").exists()
        entries = [e for e in orch.index.fetch(root) if "X" in e.metadata]
        assert len(entries) == 1

    def test_is_available_to_update_scans_all_loaded_roots(self, env, tmp_path: Path) -> None:
        orch, _, _, _, root = env
        other = tmp_path / "other"
        _write_package(other / "Z", {"Z": {"version": "1.0.0", "dependencies": {"X": "~1.0.0"}}})
        _write_package(root / "Y", {"Y": {"version": "1.0.0", "dependencies": {"X": "^1.0.0"}}})
        orch.index.fetch(root)
        assert orch.is_available_to_update("X", "1.1.0") == []

        orch.index.fetch(other)
        conflicts = orch.is_available_to_update("X", "1.1.0")
        assert len(conflicts) == 1
        assert "Z" in conflicts[0]
        assert len(orch.is_available_to_update("X", "2.0.0")) == 2


class TestBuiltin:
    def test_builtin_short_circuit(self, env) -> None:
        orch, catalog, _, downloader, root = env
        catalog["core"] = {"3.2.0": BUILTIN}
        assert orch.specific_install(root, "core", "^3.0.0") == "3.2.0"
        assert downloader.calls == []
        assert orch.index.fetch(root) == []
        assert not (root / "core").exists()
        assert not orch.cache.is_cached("core")


class TestCycles:
    def test_runtime_cycle_raises(self, env) -> None:
        orch, catalog, _, _, root = env
        catalog.update({
            "A": {"1.0.0": {"B": "*"}},
            "B": {"1.0.0": {"A": "*"}},
        })
        with pytest.raises(CyclicDependencyError, match="A"):
            orch.specific_install(root, "A", "1.0.0")


class TestAllInstall:
    def test_installs_project_dependencies(self, env, tmp_path: Path) -> None:
        orch, catalog, _, _, _ = env
        project = tmp_path / "project"
        _write_package(project, {".": {"version": "1.0.0", "dependencies": {"A": "^1.0.0", "B": "*"}}})
        catalog.update({"A": {"1.0.0": {}}, "B": {"0.1.0": {}}})

        root = orch.all_install(project)
        assert root == (project / "_metamodel_").resolve()
        assert orch.index.installed_version(root, "A") == "1.0.0"
        assert orch.index.installed_version(root, "B") == "0.1.0"


class TestRemove:
    def test_remove_installed(self, env) -> None:
        orch, _, _, _, root = env
        _write_package(root / "A", {"A": {"version": "1.0.0"}})
        removed = orch.remove_package_from(root, "A")
        assert removed.name == "A"
        assert not (root / "A").exists()
        assert orch.index.find(root, "A") is None

    def test_remove_unknown(self, env) -> None:
        orch, _, _, _, root = env
        _write_package(root / "A", {"A": {"version": "1.0.0"}})
        with pytest.raises(PackageNotFoundError):
            orch.remove_package_from(root, "B")
        assert (root / "A" / "dochub.yaml").is_file()

    def test_remove_does_not_cascade(self, env) -> None:
        orch, _, _, _, root = env
        _write_package(root / "A", {"A": {"version": "1.0.0"}})
        _write_package(root / "B", {"B": {"version": "1.0.0", "dependencies": {"A": "*"}}})
        orch.remove_package_from(root, "A")
        assert orch.index.installed_version(root, "B") == "1.0.0"
