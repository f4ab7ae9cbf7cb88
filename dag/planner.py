"""
ExecutionPlanner - Orders a compiled TaskGraph and groups parallel steps.
ExecutionPlanner —— 对编译后的 TaskGraph 排序并划分可并行步骤组。

Three passes over the graph:
  1. Topological order: depth-first traversal with a "temporary" marker set
     for the nodes currently on the traversal stack. Meeting a
     temporarily-marked node means a cycle, and planning fails right there.
     Finished nodes are prepended, giving a dependency-respecting order.
  2. Cost estimate: a pluggable weight per step (PROCESS steps get a fixed
     non-zero duration by default). A placeholder for visualization only.
  3. Level assignment: longest-path distance from a START node, computed by
     Bellman-Ford style edge relaxation, capped at node count passes.
     Steps sharing a level > 0 with at least one sibling form a parallel group.

对任务图做三遍处理：
  1. 拓扑排序：深度优先遍历，用「临时标记」集合记录当前遍历栈上的节点。
     再次遇到临时标记节点即说明存在环，立即失败。
     完成的节点插入结果头部，得到满足依赖的顺序。
  2. 代价估计：可插拔的步骤权重（默认 PROCESS 步骤为固定非零耗时），仅用于可视化。
  3. 层级计算：从 START 节点出发的最长路径距离，采用 Bellman-Ford 式的边松弛，
     迭代轮数以节点数为上限。层级 > 0 且同层至少两个节点时组成一个并行组。
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable

import config
from dag.errors import CyclicDependencyError
from dag.graph import TaskDAG
from schema import ExecutionPlan, NodeKind, ParallelGroup, PlanStep, StepDescriptor, TaskGraph

logger = logging.getLogger(__name__)

CostFunction = Callable[[StepDescriptor], int]

UNASSIGNED = -1


def default_cost(node: StepDescriptor) -> int:
    """PROCESS steps weigh PROCESS_STEP_COST_MS, every other kind weighs 0."""
    return config.PROCESS_STEP_COST_MS if node.kind == NodeKind.PROCESS else 0


class ExecutionPlanner:
    """
    Turns a TaskGraph into an ExecutionPlan.
    将 TaskGraph 转换为 ExecutionPlan。

    The planner never mutates the graph it is given; on failure no partial
    plan is returned.
    规划器从不修改传入的图；失败时不返回任何部分计划。
    """

    def __init__(self, cost_fn: CostFunction | None = None):
        self._cost_fn = cost_fn or default_cost

    def plan(self, graph: TaskGraph) -> ExecutionPlan:
        """
        Build the ordered, grouped execution plan.
        构建有序且分组的执行计划。

        Raises StructuralError when an edge points at an unknown node, and
        CyclicDependencyError naming a node on the cycle.
        边指向未知节点时抛出 StructuralError；存在环时抛出
        CyclicDependencyError，并指出环上的某个节点。
        """
        dag = TaskDAG.from_graph(graph)
        order = self.topological_order(graph)
        nodes = {n.id: n for n in graph.nodes}

        steps = [
            PlanStep(
                node_id=nid,
                name=nodes[nid].name,
                kind=nodes[nid].kind,
                estimated_cost=self._cost_fn(nodes[nid]),
            )
            for nid in order
        ]

        levels = self.assign_levels(graph)
        groups = self._group_by_level(order, levels)

        logger.info(
            "[Planner] Planned %s -> %d steps, %d parallel groups",
            dag.summary(), len(steps), len(groups),
        )
        return ExecutionPlan(steps=steps, parallel_groups=groups, levels=levels)

    # ------------------------------------------------------------------
    # Topological order
    # 拓扑排序
    # ------------------------------------------------------------------

    @staticmethod
    def topological_order(graph: TaskGraph) -> list[str]:
        """
        Depth-first topological sort with temporary markers.
        带临时标记的深度优先拓扑排序。

        Roots are tried in declaration order and children in edge order. The
        traversal keeps an explicit stack, so long chains do not run into the
        interpreter's recursion limit; the visiting order is the same as the
        recursive formulation.
        按声明顺序尝试起点、按边顺序访问子节点。使用显式栈，长链不会触及
        解释器的递归深度上限；访问顺序与递归写法完全一致。
        """
        dag = TaskDAG.from_graph(graph)
        children = {nid: dag.get_dependents(nid) for nid in dag.nodes}

        visited: set[str] = set()
        temp: set[str] = set()          # 当前遍历栈上的节点
        order: deque[str] = deque()

        for root in children:
            if root in visited:
                continue
            temp.add(root)
            stack = [(root, iter(children[root]))]
            while stack:
                nid, pending = stack[-1]
                descended = False
                for child in pending:
                    if child in temp:
                        logger.warning("[Planner] Cycle detected at node '%s'", child)
                        raise CyclicDependencyError(child)
                    if child in visited:
                        continue
                    temp.add(child)
                    stack.append((child, iter(children[child])))
                    descended = True
                    break
                if not descended:
                    stack.pop()
                    temp.discard(nid)
                    visited.add(nid)
                    order.appendleft(nid)   # 完成的节点插入头部

        return list(order)

    # ------------------------------------------------------------------
    # Level assignment
    # 层级计算
    # ------------------------------------------------------------------

    @staticmethod
    def assign_levels(graph: TaskGraph) -> dict[str, int]:
        """
        Longest-path level of every node from a START node (-1 if unreachable).
        计算每个节点距 START 节点的最长路径层级（不可达为 -1）。

        Relaxes every edge until a full pass changes nothing. On an acyclic
        graph that takes at most node-count passes plus one quiet pass, so
        the loop is bounded there instead of trusting convergence.
        反复松弛所有边，直到某一轮无变化。无环图最多需要「节点数」轮外加一轮
        确认，因此循环以此为上限，而不是无条件等待收敛。
        """
        dag = TaskDAG.from_graph(graph)
        levels: dict[str, int] = {nid: UNASSIGNED for nid in dag.nodes}
        for nid in dag.start_nodes():
            levels[nid] = 0

        max_passes = len(graph.nodes) + 1
        for _ in range(max_passes):
            changed = False
            for e in graph.edges:
                from_level = levels[e.source]
                to_level = levels[e.target]
                if from_level != UNASSIGNED and (to_level == UNASSIGNED or to_level < from_level + 1):
                    levels[e.target] = from_level + 1
                    changed = True
            if not changed:
                break
        else:
            # Only reachable when a START node sits on a cycle.
            # 仅当 START 节点位于环上时才会到达这里。
            stuck = next(e.target for e in graph.edges if levels[e.source] != UNASSIGNED)
            raise CyclicDependencyError(stuck, f"Level assignment did not converge at node '{stuck}'")

        return levels

    @staticmethod
    def _group_by_level(order: list[str], levels: dict[str, int]) -> list[ParallelGroup]:
        """
        Group same-level nodes (level > 0, at least two members).
        Member order follows the topological order, never relaxation order.

        将同层节点分组（层级 > 0 且至少两个成员）。
        组内顺序沿用拓扑顺序，而非松弛计算的顺序。
        """
        by_level: dict[int, list[str]] = {}
        for nid in order:
            level = levels.get(nid, UNASSIGNED)
            if level > 0:  # 跳过起始节点与不可达节点
                by_level.setdefault(level, []).append(nid)

        return [
            ParallelGroup(group_id=f"parallel_group_{level}", level=level, node_ids=node_ids)
            for level, node_ids in sorted(by_level.items())
            if len(node_ids) > 1
        ]
