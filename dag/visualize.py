"""
Diagnostic renderings of a TaskGraph / ExecutionPlan.
TaskGraph / ExecutionPlan 的诊断用文本渲染。

All functions here are pure: the same input always renders to the same
text, byte for byte. Nothing is printed or logged.
本模块所有函数都是纯函数：同样的输入总是逐字节渲染出同样的文本，不做任何输出或日志。

Mermaid layout:
    graph TD;
      <one line per node, shape keyed by kind>
      <one line per edge: from --> to>
"""

from __future__ import annotations

from schema import ExecutionPlan, NodeKind, StepDescriptor, TaskGraph

# kind -> (open, close) Mermaid shape delimiters
# 节点类型 -> Mermaid 形状定界符
_SHAPES: dict[NodeKind, tuple[str, str]] = {
    NodeKind.START: ("((", "))"),       # circle / 圆形
    NodeKind.END: ("(((", ")))"),       # double circle / 双圆
    NodeKind.PROCESS: ("[", "]"),       # rectangle / 矩形
    NodeKind.DECISION: ("{", "}"),      # rhombus / 菱形
    NodeKind.PARALLEL: ("{{", "}}"),    # hexagon / 六边形
}
_DEFAULT_SHAPE = ("([", "])")           # stadium / 跑道形


def _label(text: str) -> str:
    return text.replace('"', "#quot;")


def _node_line(node: StepDescriptor) -> str:
    open_, close = _SHAPES.get(node.kind, _DEFAULT_SHAPE)
    return f'  {node.id}{open_}"{_label(node.name)}"{close};'


def render_mermaid(graph: TaskGraph) -> str:
    """
    Render a graph as Mermaid: nodes in declaration order, then edges.
    将任务图渲染为 Mermaid：先按声明顺序输出节点，再输出边。
    """
    lines = ["graph TD;"]
    lines.extend(_node_line(n) for n in graph.nodes)
    lines.extend(f"  {e.source} --> {e.target};" for e in graph.edges)
    return "\n".join(lines) + "\n"


def render_plan_mermaid(graph: TaskGraph, plan: ExecutionPlan) -> str:
    """
    Render the graph with each parallel group wrapped in a subgraph block.
    渲染任务图，并将每个并行组包裹在 subgraph 块中。

    Nodes follow plan order here (execution view) rather than declaration order.
    此处节点按计划顺序输出（执行视角），而不是声明顺序。
    """
    nodes = {n.id: n for n in graph.nodes}
    grouped = {nid: g for g in plan.parallel_groups for nid in g.node_ids}

    lines = ["graph TD;"]
    emitted: set[str] = set()
    for step in plan.steps:
        if step.node_id in emitted:
            continue
        group = grouped.get(step.node_id)
        if group is None:
            lines.append(_node_line(nodes[step.node_id]))
            emitted.add(step.node_id)
            continue
        lines.append(f'  subgraph {group.group_id}["level {group.level}"]')
        for nid in group.node_ids:
            lines.append("  " + _node_line(nodes[nid]))
            emitted.add(nid)
        lines.append("  end")
    lines.extend(f"  {e.source} --> {e.target};" for e in graph.edges)
    return "\n".join(lines) + "\n"


def render_plan_text(plan: ExecutionPlan) -> str:
    """
    Plain-text plan listing, one step per line.
    纯文本计划列表，每行一个步骤，例如：

        1. start            start    level=0  cost=0
        2. analyze_brief    process  level=1  cost=1000
    """
    if not plan.steps:
        return "(empty plan)\n"
    width = max(len(s.node_id) for s in plan.steps)
    lines = []
    for i, step in enumerate(plan.steps, start=1):
        level = plan.levels.get(step.node_id, -1)
        lines.append(
            f"{i:>3}. {step.node_id:<{width}}  {step.kind.value:<8} "
            f"level={level:<3} cost={step.estimated_cost}"
        )
    for group in plan.parallel_groups:
        lines.append(f"  {group.group_id}: {', '.join(group.node_ids)}")
    return "\n".join(lines) + "\n"
