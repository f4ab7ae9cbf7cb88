"""
Pydantic data models for the task-graph planner.
Defines the core data structures shared by the DAG compiler, the planner,
the task store and the workflow executor.
任务图规划器的 Pydantic 数据模型。
定义了贯穿 dag、tasks、workflow 各层的核心数据结构。
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ======================================================================
# Task graph
# 任务图模型
# ======================================================================

class NodeKind(str, Enum):
    """
    Kind of a node in the task graph.
    任务图中节点的类型。
    """
    START = "start"         # 起始节点（无依赖）
    PROCESS = "process"     # 处理节点（实际工作）
    DECISION = "decision"   # 决策节点
    PARALLEL = "parallel"   # 并行汇聚节点
    END = "end"             # 结束节点


class StepDescriptor(BaseModel):
    """
    A single named step with its declared dependencies.
    Immutable once produced by the GraphBuilder.

    单个命名步骤及其声明的依赖。
    由 GraphBuilder 产出后不可变。
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Unique step ID, e.g. 'analyze_brief'")  # 步骤唯一 ID
    kind: NodeKind                                                                      # 节点类型
    name: str                                                                           # 展示名称
    description: str | None = None                                                      # 可选描述
    dependencies: tuple[str, ...] = Field(default_factory=tuple)                        # 依赖的步骤 ID（集合语义，保留声明顺序）
    params: dict[str, Any] = Field(default_factory=dict)                                # 透传参数（不透明）

    @field_validator("dependencies", mode="before")
    @classmethod
    def _dedupe_dependencies(cls, value: Any) -> tuple[str, ...]:
        # Set semantics, but declaration order stays stable for edge derivation.
        # 集合语义：去重但保留声明顺序，保证边的推导是确定的。
        if value is None:
            return ()
        if isinstance(value, str):
            raise ValueError("dependencies must be a list of step ids, not a single string")
        return tuple(dict.fromkeys(value))


class GraphEdge(BaseModel):
    """
    A directed dependency edge: `source` must finish before `target` starts.
    有向依赖边：`source` 必须先于 `target` 完成。
    """
    model_config = ConfigDict(frozen=True)

    source: str = Field(description="Dependency node ID")   # 起点（被依赖方）
    target: str = Field(description="Dependent node ID")    # 终点（依赖方）


class TaskGraph(BaseModel):
    """
    Compiled task graph. `nodes` keeps declaration order (not execution order).
    编译后的任务图。`nodes` 保持声明顺序（不是执行顺序）。
    """
    nodes: list[StepDescriptor] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)

    def node_ids(self) -> list[str]:
        return [n.id for n in self.nodes]

    def get_node(self, node_id: str) -> StepDescriptor | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None


# ======================================================================
# Execution plan
# 执行计划模型
# ======================================================================

class PlanStep(BaseModel):
    """One entry in the topologically ordered plan. / 拓扑有序计划中的一项。"""
    node_id: str
    name: str
    kind: NodeKind
    estimated_cost: int = 0   # 预估耗时（毫秒），仅作可视化权重


class ParallelGroup(BaseModel):
    """
    Steps sharing the same dependency level (> 0) that may run concurrently.
    处于同一依赖层级（> 0）、可以并发执行的一组步骤。
    """
    group_id: str
    level: int
    node_ids: list[str]


class ExecutionPlan(BaseModel):
    """
    Compiled, ordered and grouped representation of a graph ready for execution.
    编译完成、排好序并分好组的执行计划。
    """
    steps: list[PlanStep] = Field(default_factory=list)
    parallel_groups: list[ParallelGroup] = Field(default_factory=list)
    levels: dict[str, int] = Field(default_factory=dict)   # node_id -> 层级（-1 表示无法从 START 到达）

    def step_ids(self) -> list[str]:
        return [s.node_id for s in self.steps]

    @property
    def total_estimated_cost(self) -> int:
        return sum(s.estimated_cost for s in self.steps)


class TaskPlan(BaseModel):
    """
    Everything planned for one brief: descriptors, graph and plan.
    一个 brief 的完整规划产物：步骤描述、任务图和执行计划。
    """
    nodes: list[StepDescriptor]
    graph: TaskGraph
    plan: ExecutionPlan


# ======================================================================
# Task lifecycle
# 任务生命周期模型
# ======================================================================

class TaskStatus(str, Enum):
    """
    Task lifecycle states. COMPLETED / FAILED / CANCELLED are terminal.
    任务生命周期状态。COMPLETED / FAILED / CANCELLED 为终态。
    """
    PENDING = "pending"           # 已提交，等待执行
    PROCESSING = "processing"     # 执行中
    COMPLETED = "completed"       # 已完成
    FAILED = "failed"             # 失败
    CANCELLED = "cancelled"       # 已取消


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED})


class TaskType(str, Enum):
    """Kinds of work accepted by the submission surface. / 可提交的任务类型。"""
    GENERATE_LOGO = "generate_logo"
    GENERATE_COLOR = "generate_color"
    GENERATE_IMAGE = "generate_image"
    GENERATE_AUDIO = "generate_audio"
    GENERATE_CODE = "generate_code"
    DEBUG_FLOW = "debug_flow"


class Checkpoint(BaseModel):
    """
    Immutable, timestamped audit record of task progress.
    不可变的、带时间戳的任务进度审计记录。
    """
    model_config = ConfigDict(frozen=True)

    step: str                                              # 检查点名称，如 'create_logo' / 'create_logo_completed'
    timestamp: float = Field(default_factory=time.time)   # 记录时间戳
    data: dict[str, Any] = Field(default_factory=dict)    # 检查点数据


class Task(BaseModel):
    """
    A submitted unit of work. Owned exclusively by the TaskStore.
    一次提交的任务。只能由 TaskStore 修改。
    """
    id: str
    type: TaskType
    params: dict[str, Any] = Field(default_factory=dict)
    status: TaskStatus = TaskStatus.PENDING
    result: dict[str, Any] | None = None       # 仅在 COMPLETED 时设置
    error: str | None = None                   # 仅在 FAILED 时设置
    session_id: str | None = None              # 会话关联键
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)
    checkpoints: list[Checkpoint] = Field(default_factory=list)   # 只追加的审计日志

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


# ======================================================================
# Step execution / submission
# 步骤执行与任务提交
# ======================================================================

class StepOutcome(BaseModel):
    """
    What a Step Executor returns: a partial-state update, or an error.
    Step Executor 的返回值：局部状态增量，或错误信息。
    """
    delta: dict[str, Any] = Field(default_factory=dict)   # 合并进运行状态的增量（同名 key 后写者胜）
    error: str | None = None                              # 非空表示该步骤失败

    @property
    def ok(self) -> bool:
        return self.error is None


class TaskRunResult(BaseModel):
    """Final outcome of one workflow execution. / 一次工作流执行的最终结果。"""
    task_id: str
    status: TaskStatus
    result: dict[str, Any] | None = None
    error: str | None = None
    executed_steps: list[str] = Field(default_factory=list)


class SubmitRequest(BaseModel):
    """
    Submission payload: `{task, params, sessionId?}`.
    提交请求体：`{task, params, sessionId?}`。
    """
    model_config = ConfigDict(populate_by_name=True)

    task: TaskType
    params: dict[str, Any] = Field(default_factory=dict)
    session_id: str | None = Field(default=None, alias="sessionId")


class SubmitResult(BaseModel):
    """Returned synchronously before execution finishes. / 执行完成前同步返回。"""
    task_id: str
    status: TaskStatus
