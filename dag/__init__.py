"""
DAG module - Compiles briefs into task graphs and execution plans.
DAG 模块 —— 将 brief 编译为任务图和执行计划。

Components:
  - builder.py:    GraphBuilder, brief -> step descriptors
  - graph.py:      compile_graph / TaskDAG, descriptors -> graph
  - planner.py:    ExecutionPlanner, graph -> ordered + grouped plan
  - visualize.py:  Mermaid / text renderings (pure functions)
  - errors.py:     StructuralError, CyclicDependencyError, StepExecutionError

模块组成：
  - builder.py:    GraphBuilder，brief -> 步骤描述
  - graph.py:      compile_graph / TaskDAG，步骤描述 -> 任务图
  - planner.py:    ExecutionPlanner，任务图 -> 有序且分组的执行计划
  - visualize.py:  Mermaid / 文本渲染（纯函数）
  - errors.py:     错误分类
"""

from dag.builder import GraphBuilder                  # brief -> 步骤描述
from dag.errors import CyclicDependencyError, PlanningError, StepExecutionError, StructuralError
from dag.graph import TaskDAG, compile_graph          # 任务图编译
from dag.planner import ExecutionPlanner              # 执行规划器
from dag.visualize import render_mermaid, render_plan_mermaid, render_plan_text

__all__ = [
    "GraphBuilder",
    "TaskDAG",
    "compile_graph",
    "ExecutionPlanner",
    "render_mermaid",
    "render_plan_mermaid",
    "render_plan_text",
    "PlanningError",
    "StructuralError",
    "CyclicDependencyError",
    "StepExecutionError",
]
