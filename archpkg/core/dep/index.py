"""已安装包索引

职责:
- 扫描安装根目录（仅一层子目录）
- 每个根目录首次查询时读取全部清单并缓存，本次命令内不再重新扫描磁盘
- 安装 / 删除时原地更新缓存，后续查询无需重扫即可看到变化

索引对象本身即“本次运行的上下文”: 命令开始时创建，命令结束时丢弃，
通过参数显式传给图构建器和安装编排器，不作为模块级全局状态存在。
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

from archpkg.core.exceptions import IndexNotPrimedError
from archpkg.core.manifest import ManifestReader
from archpkg.core.models import IndexHit, InstalledEntry

logger = logging.getLogger(__name__)


class InstalledIndex:
    """安装根目录 -> 已安装条目列表 的记忆化映射"""

    def __init__(self, reader: ManifestReader | None = None) -> None:
        self.reader = reader or ManifestReader()
        self._installed: dict[Path, list[InstalledEntry]] = {}

    @staticmethod
    def _key(root: Path | str) -> Path:
        return Path(root).resolve()

    # ---- 扫描 / 加载 ----

    @staticmethod
    def scan(root: Path | str) -> list[str]:
        """列出根目录下的直接子目录名；根目录不存在时返回空列表"""
        base = Path(root)
        if not base.is_dir():
            return []
        return sorted(d.name for d in base.iterdir() if d.is_dir())

    def fetch(self, root: Path | str) -> list[InstalledEntry]:
        """获取根目录下的已安装条目（记忆化）

        任一子目录的清单缺失或无效都会中止整个加载，并原样抛出
        ManifestMissingError / ManifestMalformedError。
        """
        key = self._key(root)
        cached = self._installed.get(key)
        if cached is not None:
            return cached

        logger.info("加载已安装包: %s", key)
        entries: list[InstalledEntry] = []
        for folder in self.scan(key):
            logger.debug("  扫描 %s", folder)
            source = key / folder
            entries.append(InstalledEntry(
                source_path=source,
                metadata=self.reader.read_metadata(source),
            ))
        self._installed[key] = entries
        logger.info("已加载 %d 个已安装包: %s", len(entries), key)
        return entries

    def is_primed(self, root: Path | str) -> bool:
        return self._key(root) in self._installed

    # ---- 查询 ----

    def find(self, root: Path | str, sub_id: str) -> IndexHit | None:
        """查找声明了 sub_id 子包的已安装条目"""
        for entry in self.fetch(root):
            record = entry.metadata.get(sub_id)
            if record is not None:
                return IndexHit(entry=entry, record=record)
        return None

    def installed_version(self, root: Path | str, sub_id: str) -> str | None:
        hit = self.find(root, sub_id)
        return hit.record.version if hit else None

    def items(self) -> Iterator[tuple[Path, list[InstalledEntry]]]:
        """遍历本次运行中已加载过的全部根目录"""
        return iter(list(self._installed.items()))

    def roots(self) -> list[Path]:
        return list(self._installed)

    # ---- 变更 ----

    def record_install(self, root: Path | str, entry: InstalledEntry) -> None:
        """登记新安装的条目；根目录必须已通过 fetch 加载"""
        key = self._key(root)
        entries = self._installed.get(key)
        if entries is None:
            raise IndexNotPrimedError(f"安装索引尚未加载根目录: {key}")
        entries.append(entry)
        logger.debug("索引登记: %s", entry.source_path)

    def record_removal(self, root: Path | str, entry: InstalledEntry) -> bool:
        """按 source_path 删除条目，返回是否找到"""
        entries = self._installed.get(self._key(root))
        if not entries:
            return False
        for i, item in enumerate(entries):
            if item.source_path == entry.source_path:
                del entries[i]
                logger.debug("索引移除: %s", entry.source_path)
                return True
        return False

    def reset(self) -> None:
        """丢弃全部缓存（新命令开始时调用）"""
        self._installed.clear()
