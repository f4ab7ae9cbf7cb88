"""
TaskDAG - Directed graph of named steps compiled from step descriptors.
TaskDAG —— 由步骤描述编译而成的命名步骤有向图。

The compiler is purely structural: it derives one edge per
(dependency, node_id) pair and checks that every edge endpoint exists.
It does NOT reject cycles. Cycle detection belongs to the
ExecutionPlanner traversal, so building a graph always succeeds while
planning may fail.

编译器只做结构性工作：为每个 (依赖, 节点) 对推导一条边，并检查所有边的
端点都存在。它不拒绝环。环检测属于 ExecutionPlanner 的遍历过程，
因此构图总能成功，而规划可能失败。

Key operations:
  - compile_graph():   descriptors -> TaskGraph (edges derived deterministically)
  - TaskDAG:           validated adjacency view used by the planner and the
                       concurrent executor

核心操作：
  - compile_graph():   步骤描述 -> TaskGraph（确定性地推导边）
  - TaskDAG:           经过校验的邻接视图，供规划器与并发执行器使用
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from dag.errors import StructuralError
from schema import GraphEdge, NodeKind, StepDescriptor, TaskGraph

logger = logging.getLogger(__name__)


def compile_graph(steps: Iterable[StepDescriptor]) -> TaskGraph:
    """
    Compile step descriptors into a TaskGraph.
    将步骤描述编译为 TaskGraph。

    Edges are emitted in node declaration order, then dependency declaration
    order, so the same input always yields the same edge list.
    边按节点声明顺序、再按依赖声明顺序输出，同样的输入总得到同样的边列表。

    Raises StructuralError on duplicate ids, self-references or dependencies
    on undeclared ids. Cycles are accepted here.
    遇到重复 ID、自引用或依赖未声明的 ID 时抛出 StructuralError；环在此处不报错。
    """
    nodes = list(steps)
    declared: set[str] = set()
    for node in nodes:
        if node.id in declared:
            raise StructuralError(f"Duplicate step id '{node.id}'")
        declared.add(node.id)

    edges: list[GraphEdge] = []
    seen: set[tuple[str, str]] = set()
    for node in nodes:
        for dep_id in node.dependencies:
            if dep_id == node.id:
                raise StructuralError(f"Step '{node.id}' depends on itself")
            if dep_id not in declared:
                raise StructuralError(f"Step '{node.id}' depends on undeclared step '{dep_id}'")
            key = (dep_id, node.id)
            if key in seen:
                continue
            seen.add(key)
            edges.append(GraphEdge(source=dep_id, target=node.id))

    logger.debug("[DAG] Compiled %d nodes, %d edges", len(nodes), len(edges))
    return TaskGraph(nodes=nodes, edges=edges)


class TaskDAG:
    """
    Query wrapper around a compiled TaskGraph.
    编译后 TaskGraph 的查询封装。

    Nodes are kept in declaration order; adjacency maps are built once so
    that repeated queries do not rescan the edge list.
    节点保持声明顺序；邻接表只构建一次，避免每次查询都扫描整张边表。
    """

    def __init__(self, nodes: dict[str, StepDescriptor], edges: list[GraphEdge]):
        self.nodes = nodes    # 所有节点，key 为节点 ID（保持声明顺序）
        self.edges = edges    # 所有边
        self._parents: dict[str, list[str]] = {nid: [] for nid in nodes}
        self._children: dict[str, list[str]] = {nid: [] for nid in nodes}
        self._validate_dag()
        for e in edges:
            self._parents[e.target].append(e.source)
            self._children[e.source].append(e.target)

    @classmethod
    def from_graph(cls, graph: TaskGraph) -> TaskDAG:
        """
        Wrap a TaskGraph, rejecting duplicate node ids as well as the edge
        problems checked by `_validate_dag()`.
        封装 TaskGraph：拒绝重复的节点 ID，以及 `_validate_dag()` 检查的边问题。
        """
        nodes: dict[str, StepDescriptor] = {}
        for n in graph.nodes:
            if n.id in nodes:
                raise StructuralError(f"Duplicate node id '{n.id}' in task graph")
            nodes[n.id] = n
        return cls(nodes=nodes, edges=list(graph.edges))

    # ------------------------------------------------------------------
    # Node queries
    # 节点查询方法
    # ------------------------------------------------------------------

    def get_dependency_ids(self, node_id: str) -> list[str]:
        """
        Return IDs of nodes that `node_id` directly depends on.
        返回 `node_id` 直接依赖的节点 ID。
        """
        return list(self._parents.get(node_id, []))

    def get_dependents(self, node_id: str) -> list[str]:
        """Return IDs of nodes that directly depend on `node_id`. / 返回直接依赖 `node_id` 的节点。"""
        return list(self._children.get(node_id, []))

    def start_nodes(self) -> list[str]:
        return [nid for nid, n in self.nodes.items() if n.kind == NodeKind.START]

    # ------------------------------------------------------------------
    # Serialization
    # 序列化
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize the graph structure to a plain dict (for checkpoints).
        将图结构序列化为普通 dict（用于写入 checkpoint）。
        """
        return {
            "nodes": [n.model_dump(mode="json") for n in self.nodes.values()],
            "edges": [e.model_dump(mode="json") for e in self.edges],
        }

    # ------------------------------------------------------------------
    # Validation
    # 校验
    # ------------------------------------------------------------------

    def _validate_dag(self) -> None:
        """
        Every edge endpoint must exist and no edge may repeat.
        所有边的端点必须存在，且不得有重复边。
        """
        seen: set[tuple[str, str]] = set()
        for e in self.edges:
            if e.source not in self.nodes:
                raise StructuralError(f"Edge source '{e.source}' not found in nodes")
            if e.target not in self.nodes:
                raise StructuralError(f"Edge target '{e.target}' not found in nodes")
            key = (e.source, e.target)
            if key in seen:
                raise StructuralError(f"Duplicate edge {e.source} -> {e.target}")
            seen.add(key)

    # ------------------------------------------------------------------
    # Display helpers
    # 展示辅助方法
    # ------------------------------------------------------------------

    def summary(self) -> str:
        """
        One-line summary for logging, e.g. DAG[6 nodes, 5 edges: 1 start, 4 process, 1 end]
        生成单行摘要，用于日志输出。
        """
        kind_counts: dict[str, int] = {}
        for n in self.nodes.values():
            kind_counts[n.kind.value] = kind_counts.get(n.kind.value, 0) + 1
        parts = [f"{v} {k}" for k, v in kind_counts.items()]
        return f"DAG[{len(self.nodes)} nodes, {len(self.edges)} edges: {', '.join(parts)}]"
