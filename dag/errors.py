"""
Error taxonomy for planning and execution.
规划与执行的错误分类。

  - StructuralError:        malformed brief / graph input (caller may resubmit)
  - CyclicDependencyError:  planner could not order the graph
  - StepExecutionError:     a Step Executor call failed (contained per task)

  - StructuralError:        brief 或任务图结构不合法（调用方修正后可重新提交）
  - CyclicDependencyError:  规划器无法对任务图排序（存在环）
  - StepExecutionError:     单个步骤执行失败（仅影响所属任务）

Unknown task ids are not errors: the TaskStore returns None instead.
未知任务 ID 不是异常：TaskStore 直接返回 None。
"""

from __future__ import annotations


class PlanningError(Exception):
    """Base class for errors that abort planning. / 终止规划的错误基类。"""
    pass


class StructuralError(PlanningError):
    """
    Raised when a brief or a set of step descriptors is malformed.
    当 brief 或步骤描述集合结构不合法时抛出。
    """
    pass


class CyclicDependencyError(PlanningError):
    """
    Raised by the ExecutionPlanner when the graph cannot be fully ordered.
    当执行规划器无法完成拓扑排序（存在循环依赖）时抛出。

    `node_id` names a node that lies on the detected cycle.
    `node_id` 为检测到的环上的某个节点。
    """

    def __init__(self, node_id: str, message: str | None = None):
        self.node_id = node_id
        super().__init__(message or f"Cyclic dependency detected in task graph at node '{node_id}'")


class StepExecutionError(Exception):
    """
    A single step failed. Caught by the WorkflowExecutor and turned into a
    FAILED task transition; never propagated as a crash.

    单个步骤执行失败。由 WorkflowExecutor 捕获并转换为任务 FAILED 状态，
    不会作为崩溃向外传播。
    """

    def __init__(self, node_id: str, message: str):
        self.node_id = node_id
        self.message = message
        super().__init__(f"Step '{node_id}' failed: {message}")
