"""核心数据模型

所有核心数据类集中定义，安装索引、依赖图、缓存与安装编排统一从此处导入。

  - VersionRequest: 版本请求（任意版本 / 指定范围）
  - PackageSource:  包来源（远程可下载 / 内置）
  - PackageRecord / PackageMetadata: 清单中声明的子包元数据
  - InstalledEntry: 安装目录下的一个已安装包
  - GraphNode:      依赖图节点（每次构图临时生成）
  - ResolvedPackage: 仓库解析结果
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import quote

from archpkg.core.exceptions import ManifestMalformedError, ValidationError

BUILTIN_MARKER = "built-in"


# =========================================================================
# 版本请求与包来源
# =========================================================================


@dataclass(frozen=True)
class VersionRequest:
    """版本请求：range 为 None 表示任意版本（已安装即满足，否则取最新）"""

    range: str | None = None

    @classmethod
    def any(cls) -> VersionRequest:
        return cls(None)

    @classmethod
    def of_range(cls, version_range: str) -> VersionRequest:
        return cls(version_range.strip() or None)

    @classmethod
    def parse(cls, raw: str | None) -> VersionRequest:
        if raw is None:
            return cls.any()
        return cls.of_range(str(raw))

    @property
    def is_any(self) -> bool:
        return self.range is None

    def qualify(self, package_id: str) -> str:
        """拼接仓库查询串: id 或 id@range"""
        return package_id if self.is_any else f"{package_id}@{self.range}"

    def __str__(self) -> str:
        return "latest" if self.range is None else self.range


class SourceKind(str, Enum):
    REMOTE = "remote"
    BUILTIN = "built-in"


@dataclass(frozen=True)
class PackageSource:
    """包来源：REMOTE 携带可下载地址；BUILTIN 表示能力内置，无需下载安装"""

    kind: SourceKind
    locator: str = ""

    @classmethod
    def remote(cls, locator: str) -> PackageSource:
        return cls(SourceKind.REMOTE, locator)

    @classmethod
    def builtin(cls) -> PackageSource:
        return cls(SourceKind.BUILTIN)

    @classmethod
    def parse(cls, raw: str) -> PackageSource:
        if raw == BUILTIN_MARKER:
            return cls.builtin()
        return cls.remote(raw)

    @property
    def is_builtin(self) -> bool:
        return self.kind is SourceKind.BUILTIN

    def __str__(self) -> str:
        return BUILTIN_MARKER if self.is_builtin else self.locator


@dataclass(frozen=True)
class ResolvedPackage:
    """仓库对 id[@range] 的解析结果"""

    package_id: str
    version: str
    source: PackageSource


# =========================================================================
# 清单元数据
# =========================================================================


@dataclass(frozen=True)
class PackageRecord:
    """清单中一个子包的声明: 版本 + 依赖 {包 ID: 版本范围}"""

    version: str
    dependencies: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, sub_id: str, data: Any) -> PackageRecord:
        if not isinstance(data, dict):
            raise ManifestMalformedError(f"子包 '{sub_id}' 的元数据不是映射类型")
        version = data.get("version")
        if version is None or str(version).strip() == "":
            raise ManifestMalformedError(f"子包 '{sub_id}' 未声明 version")
        deps = data.get("dependencies") or {}
        if not isinstance(deps, dict):
            raise ManifestMalformedError(f"子包 '{sub_id}' 的 dependencies 不是映射类型")
        return cls(
            version=str(version).strip(),
            dependencies={str(k): "" if v is None else str(v) for k, v in deps.items()},
        )


class PackageMetadata(Mapping[str, PackageRecord]):
    """子包 ID -> PackageRecord 的只读映射，保持清单中的声明顺序"""

    def __init__(self, records: Mapping[str, PackageRecord] | None = None) -> None:
        self._records: dict[str, PackageRecord] = dict(records or {})

    @classmethod
    def from_raw(cls, raw: Any) -> PackageMetadata:
        if not isinstance(raw, dict):
            raise ManifestMalformedError("包元数据段不是映射类型")
        return cls({str(k): PackageRecord.from_dict(str(k), v) for k, v in raw.items()})

    def __getitem__(self, sub_id: str) -> PackageRecord:
        return self._records[sub_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __repr__(self) -> str:
        return f"PackageMetadata({self._records!r})"

    def dependents_of(self, package_id: str) -> dict[str, str]:
        """返回声明依赖 package_id 的子包 {子包 ID: 要求范围}"""
        return {
            sub_id: rec.dependencies[package_id]
            for sub_id, rec in self._records.items()
            if package_id in rec.dependencies
        }


# =========================================================================
# 安装状态与依赖图
# =========================================================================


def package_folder(package_id: str) -> str:
    """包 ID 到单级目录名的映射（安装目录与缓存目录共用）

    路径分隔符等字符按百分号编码，@ 保留以便作用域包名可读；
    空 ID 与 . / .. 无法成为安装根目录下的子目录，直接拒绝。
    """
    folder = quote(package_id, safe="@")
    if folder in ("", ".", ".."):
        raise ValidationError(f"无效的包 ID: {package_id!r}")
    return folder


@dataclass
class InstalledEntry:
    """安装根目录下的一个已安装包（一个含合法清单的子目录）"""

    source_path: Path
    metadata: PackageMetadata

    @property
    def folder(self) -> str:
        return self.source_path.name


@dataclass(frozen=True)
class IndexHit:
    """InstalledIndex.find 的结果: 所属条目 + 命中的子包记录"""

    entry: InstalledEntry
    record: PackageRecord


@dataclass
class GraphNode:
    """依赖图节点: in_ 为依赖它的包，out 为它依赖的包"""

    id: str
    in_: set[str] = field(default_factory=set)
    out: list[str] = field(default_factory=list)
