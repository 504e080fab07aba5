"""集中配置管理

替代各模块散落的默认常量，提供统一的配置入口。
支持从 YAML 文件加载 + 环境变量覆盖 + 编程式覆盖。

环境变量:
  - ARCHPKG_REPO_SERVER:   包仓库地址
  - ARCHPKG_CACHE_FOLDER:  下载缓存目录
  - ARCHPKG_DOWNLOAD_CERT: 下载/仓库访问使用的 CA 证书文件
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import asdict, dataclass, field
from pathlib import Path

from archpkg.core.exceptions import ConfigError
from archpkg.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_REPO_SERVER = "https://registry.dochub.info/"

_ENV_OVERRIDES = {
    "ARCHPKG_REPO_SERVER": "repo_server",
    "ARCHPKG_CACHE_FOLDER": "cache_folder",
    "ARCHPKG_DOWNLOAD_CERT": "download_cert",
}

_CACHE_POLICIES = ("package", "url")


def _default_cache_folder() -> str:
    return str(Path(tempfile.gettempdir()) / "archpkg-cache")


@dataclass
class Config:
    """包管理器全局配置"""

    # 仓库
    repo_server: str = DEFAULT_REPO_SERVER
    download_cert: str = ""
    timeout: int = 60

    # 目录与文件名
    cache_folder: str = field(default_factory=_default_cache_folder)
    cache_policy: str = "package"   # package: 按包 ID 缓存; url: 按源 URL 哈希缓存
    install_dir: str = "_metamodel_"
    manifest_name: str = "dochub.yaml"
    metadata_key: str = "$package"
    imports_file: str = "packages.yaml"

    # 行为开关
    auto_import: bool = False
    clean_cache: bool = True

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.cache_policy not in _CACHE_POLICIES:
            raise ConfigError(
                f"不支持的缓存策略: {self.cache_policy}，"
                f"可选: {', '.join(_CACHE_POLICIES)}"
            )

    @classmethod
    def from_file(cls, path: str | Path = "archpkg.yml") -> Config:
        """从 YAML 文件加载配置，不存在则返回默认；环境变量优先于文件"""
        data = load_yaml(path)
        known = {f.name for f in cls.__dataclass_fields__.values()}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}
        for env_name, attr in _ENV_OVERRIDES.items():
            value = os.getenv(env_name, "")
            if value:
                matched[attr] = value
        cfg = cls(**matched)
        cfg.extra = extra
        return cfg

    def to_dict(self) -> dict:
        return asdict(self)


# 全局单例，首次 import 时不加载文件；由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str | Path = "archpkg.yml") -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current
