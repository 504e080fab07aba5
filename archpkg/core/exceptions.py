"""统一异常体系

所有业务异常继承 ArchpkgError，替代散落的 ValueError / RuntimeError。
CLI 层据此输出友好提示并以非零退出码结束。

分类:
  - 清单: ManifestMissingError / ManifestMalformedError
  - 版本: MalformedVersionError
  - 依赖: CyclicDependencyError / DependencyConflictError
  - 安装状态: PackageNotFoundError / PackageStructureError / IndexNotPrimedError
  - 外部协作方: RepositoryError / DownloadError（原样向上传播）
"""

from __future__ import annotations


class ArchpkgError(Exception):
    """基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigError(ArchpkgError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(ArchpkgError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class ManifestMissingError(ArchpkgError):
    """包目录中不存在清单文件"""

    code = "MANIFEST_MISSING"


class ManifestMalformedError(ArchpkgError):
    """清单文件存在，但缺少包元数据段或结构无效"""

    code = "MANIFEST_MALFORMED"


class MalformedVersionError(ArchpkgError):
    """版本号或版本范围无法解析"""

    code = "MALFORMED_VERSION"


class CyclicDependencyError(ArchpkgError):
    """依赖图存在环"""

    code = "CYCLIC_DEPENDENCY"

    def __init__(self, package_ids: list[str], message: str = "") -> None:
        self.package_ids = list(package_ids)
        super().__init__(
            message
            or "检测到循环依赖，无法解析以下包的依赖关系: "
            f"[{';'.join(self.package_ids)}]"
        )


class DependencyConflictError(ArchpkgError):
    """升级会破坏已安装包声明的版本范围"""

    code = "DEPENDENCY_CONFLICT"

    def __init__(self, package_id: str, conflicts: list[str]) -> None:
        self.package_id = package_id
        self.conflicts = list(conflicts)
        super().__init__(
            f"无法解析 {package_id} 的依赖: 存在 {len(self.conflicts)} 处版本冲突"
        )


class PackageNotFoundError(ArchpkgError):
    """指定的包未安装"""

    code = "PACKAGE_NOT_FOUND"


class PackageStructureError(ArchpkgError):
    """下载/暂存的归档不包含可安装的包"""

    code = "PACKAGE_STRUCTURE_INVALID"


class IndexNotPrimedError(ArchpkgError):
    """安装索引尚未加载该根目录就尝试写入"""

    code = "INDEX_NOT_PRIMED"


class RepositoryError(ArchpkgError):
    """包仓库访问失败（令牌、元数据查询）"""

    code = "REPOSITORY_ERROR"

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class DownloadError(ArchpkgError):
    """包归档下载或解压失败"""

    code = "DOWNLOAD_ERROR"
