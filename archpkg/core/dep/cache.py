"""下载缓存管理

职责:
- 包 ID（或源 URL）到缓存目录的确定性映射
- 缓存命中检查: 目录存在即视为完整可用，不触发网络请求；
  给出期望版本时，缓存清单中该包的版本不一致视为过期，删除后重新下载
- 缓存未命中: 下载到同级暂存目录 (<location>__)，校验通过后原子 rename 到位
- 缓存失效: 升级前删除旧缓存，避免把旧版本当作新版本使用

缓存策略:
  - package: <cache_root>/<package_folder(包 ID)>
  - url:     <cache_root>/<sha256(源 URL)>
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
from pathlib import Path
from typing import Protocol

from archpkg.core.exceptions import (
    ArchpkgError,
    ManifestMalformedError,
    ManifestMissingError,
    PackageStructureError,
)
from archpkg.core.manifest import ManifestReader
from archpkg.core.models import package_folder

logger = logging.getLogger(__name__)

STAGING_SUFFIX = "__"


class Downloader(Protocol):
    """下载器协议: 拉取并解压归档到目标目录，失败时目标目录不留任何内容"""

    def fetch(self, source: str, destination: Path) -> Path: ...


class CacheManager:
    """包下载缓存管理器"""

    def __init__(
        self,
        cache_root: Path | str,
        downloader: Downloader,
        reader: ManifestReader | None = None,
        policy: str = "package",
    ) -> None:
        self.cache_root = Path(cache_root)
        self.downloader = downloader
        self.reader = reader or ManifestReader()
        self.policy = policy
        self._sources: dict[str, str] = {}

    # ---- 路径映射 ----

    def location_for(self, package_id: str, source: str = "") -> Path:
        """计算缓存目录

        url 策略下需要源 URL；未传入时使用本次运行中该包最近一次 fetch_into 的 URL。
        """
        if self.policy == "url":
            url = source or self._sources.get(package_id, "")
            if not url:
                raise ArchpkgError(f"url 缓存策略下缺少 {package_id} 的源地址")
            key = hashlib.sha256(url.encode("utf-8")).hexdigest()
        else:
            key = package_folder(package_id)
        return self.cache_root / key

    def is_cached(self, package_id: str, source: str = "") -> bool:
        return self.location_for(package_id, source).is_dir()

    # ---- 拉取 ----

    def fetch_into(self, source: str, package_id: str, version: str | None = None) -> Path:
        """确保包已缓存并返回缓存目录；下载失败原样抛出

        version 非空时，命中的缓存必须声明 package_id@version，否则重新下载。
        """
        self._sources[package_id] = source
        target = self.location_for(package_id, source)
        if target.exists():
            cached_version = None if version is None else self.cached_version(target, package_id)
            if cached_version == version:
                logger.info("使用缓存 [%s] -> %s", target, source)
                return target
            logger.info("缓存版本不一致 (%s != %s)，重新下载: %s", cached_version, version, target)
            shutil.rmtree(target)

        staging = target.with_name(target.name + STAGING_SUFFIX)
        if staging.exists():
            shutil.rmtree(staging)
        staging.parent.mkdir(parents=True, exist_ok=True)

        try:
            self.downloader.fetch(source, staging)
            if not self.reader.has_manifest(staging):
                raise PackageStructureError(
                    f"包结构不正确: {source} 解压后未找到 {self.reader.manifest_name}"
                )
            os.replace(staging, target)
        except Exception:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        logger.info("已缓存: %s -> %s", package_id, target)
        return target

    def cached_version(self, target: Path, package_id: str) -> str | None:
        """缓存目录中 package_id 的版本；清单缺失、无效或未声明该包时返回 None"""
        try:
            record = self.reader.read_metadata(target).get(package_id)
        except (ManifestMissingError, ManifestMalformedError) as e:
            logger.warning("缓存清单不可用 [%s]: %s", target, e.message)
            return None
        return record.version if record else None

    # ---- 失效 ----

    def invalidate(self, package_id: str) -> None:
        """强制删除包的缓存目录（不存在时忽略）"""
        if self.policy == "url" and package_id not in self._sources:
            logger.debug("无 %s 的缓存记录，跳过清理", package_id)
            return
        target = self.location_for(package_id)
        logger.info("清理缓存: %s", target)
        shutil.rmtree(target, ignore_errors=True)
        self._sources.pop(package_id, None)

    def clear(self) -> None:
        """删除整个缓存根目录"""
        logger.info("清理全部缓存: %s", self.cache_root)
        shutil.rmtree(self.cache_root, ignore_errors=True)
        self._sources.clear()
