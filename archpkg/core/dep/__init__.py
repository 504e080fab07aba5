"""依赖解析与安装状态管理

模块划分:
- index.py: 已安装包索引（每次命令一个实例）
- graph.py: 依赖图构建与拓扑排序
- cache.py: 下载缓存（暂存 + 原子 rename）
- installer.py: 安装编排（状态机、冲突检测、删除）
"""

from archpkg.core.dep.cache import CacheManager
from archpkg.core.dep.graph import build_graph, import_order
from archpkg.core.dep.index import InstalledIndex
from archpkg.core.dep.installer import InstallOrchestrator

__all__ = [
    "CacheManager",
    "InstalledIndex",
    "InstallOrchestrator",
    "build_graph",
    "import_order",
]
