"""依赖图构建与拓扑排序

以安装根目录的索引为输入，构建包 ID 之间的有向依赖图，按 Kahn 算法分轮提取，
得到“被依赖者在前”的顺序，用于生成导入清单和检测循环依赖。

例: A -> B -> C（A 依赖 B，B 依赖 C）得到 [C, B, A]。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from archpkg.core.exceptions import CyclicDependencyError
from archpkg.core.models import GraphNode

if TYPE_CHECKING:
    from archpkg.core.dep.index import InstalledIndex

logger = logging.getLogger(__name__)


def _link(tree: dict[str, GraphNode], node_id: str) -> GraphNode:
    node = tree.get(node_id)
    if node is None:
        node = tree[node_id] = GraphNode(id=node_id)
    return node


def build_graph(index: InstalledIndex, root: Path | str) -> list[GraphNode]:
    """构建依赖图并返回拓扑序（依赖叶子在前）

    异常:
        CyclicDependencyError: 提取结束后仍有剩余节点，异常中列出全部剩余 ID
    """
    logger.info("构建依赖图: %s", root)
    tree: dict[str, GraphNode] = {}
    for entry in index.fetch(root):
        for sub_id, record in entry.metadata.items():
            node = _link(tree, sub_id)
            for dep_id in record.dependencies:
                if dep_id not in node.out:
                    node.out.append(dep_id)
                _link(tree, dep_id).in_.add(sub_id)

    # 每轮提取所有依赖均已提取的节点；轮内保持插入顺序
    pending = {node_id: set(node.out) for node_id, node in tree.items()}
    result: list[GraphNode] = []
    while True:
        ready = [node_id for node_id, deps in pending.items() if not deps]
        if not ready:
            break
        for node_id in ready:
            del pending[node_id]
            for dependent in tree[node_id].in_:
                if dependent in pending:
                    pending[dependent].discard(node_id)
            result.append(tree[node_id])

    if pending:
        raise CyclicDependencyError(list(pending))

    logger.info("依赖图完成: %d 个节点", len(result))
    return result


def import_order(index: InstalledIndex, root: Path | str) -> list[str]:
    """仅返回拓扑序的包 ID 列表"""
    return [node.id for node in build_graph(index, root)]
