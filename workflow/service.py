"""
Workflow Service - Submission surface for briefs.
工作流服务 —— brief 的提交入口。

Ties the pipeline together:
    brief -> GraphBuilder -> compile_graph -> ExecutionPlanner
          -> TaskStore.create_task -> spawn WorkflowExecutor.execute

`submit()` returns {task_id, status} as soon as the task exists; the plan
runs in its own asyncio task, so submission and completion are never on the
same call stack. Each runner gets its own cancellation token (asyncio.Event)
that the executor checks between steps.

串联整个流水线：
    brief -> GraphBuilder -> compile_graph -> ExecutionPlanner
          -> TaskStore.create_task -> 启动 WorkflowExecutor.execute

`submit()` 在任务创建后立即返回 {task_id, status}；计划在独立的 asyncio 任务中运行，
因此提交与完成从不在同一调用栈上。每个执行协程都有自己的取消令牌（asyncio.Event），
执行器在步骤之间检查它。
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from pydantic import ValidationError

from dag.builder import FAMILY_KEYS, GraphBuilder
from dag.errors import StructuralError
from dag.graph import TaskDAG, compile_graph
from dag.planner import ExecutionPlanner
from schema import SubmitRequest, SubmitResult, Task, TaskPlan, TaskRunResult, TaskType
from tasks.store import TaskStore
from workflow.executor import WorkflowExecutor
from workflow.notifier import Notifier
from workflow.steps import StepExecutor

logger = logging.getLogger(__name__)

# Task type -> brief family used when params carry no explicit family.
# 当 params 未显式给出 family 时，由任务类型推导 family。
TYPE_FAMILIES: dict[TaskType, str] = {
    TaskType.GENERATE_LOGO: "logo",
    TaskType.GENERATE_CODE: "code",
}


class WorkflowService:
    """
    Plans briefs, creates tasks and runs them in the background.
    规划 brief、创建任务并在后台执行。
    """

    def __init__(
        self,
        store: TaskStore,
        step_executor: StepExecutor,
        notifier: Notifier | None = None,
        builder: GraphBuilder | None = None,
        planner: ExecutionPlanner | None = None,
        parallel: bool | None = None,
        on_event: Callable[[str, Any], None] | None = None,
    ):
        self.store = store
        self.builder = builder or GraphBuilder()
        self.planner = planner or ExecutionPlanner()
        self.executor = WorkflowExecutor(
            store=store,
            step_executor=step_executor,
            notifier=notifier,
            parallel=parallel,
            on_event=on_event,
        )
        self._runners: dict[str, asyncio.Task[TaskRunResult]] = {}
        self._tokens: dict[str, asyncio.Event] = {}

    # ------------------------------------------------------------------
    # Planning
    # 规划
    # ------------------------------------------------------------------

    def plan_brief(self, brief: dict[str, Any]) -> TaskPlan:
        """
        Build, compile and plan a brief. Raises StructuralError or
        CyclicDependencyError; nothing is created on failure.

        构建、编译并规划 brief。可能抛出 StructuralError 或 CyclicDependencyError；
        失败时不会创建任何任务。
        """
        nodes = self.builder.build(brief)
        graph = compile_graph(nodes)
        plan = self.planner.plan(graph)
        return TaskPlan(nodes=nodes, graph=graph, plan=plan)

    @staticmethod
    def brief_for(task_type: TaskType, params: dict[str, Any]) -> dict[str, Any]:
        """The brief planned for a request: params plus a family when missing."""
        brief = dict(params)
        family = TYPE_FAMILIES.get(task_type)
        if family is not None and not any(key in brief for key in FAMILY_KEYS):
            brief["taskFamily"] = family
        return brief

    # ------------------------------------------------------------------
    # Submission
    # 提交
    # ------------------------------------------------------------------

    async def submit(
        self,
        task: TaskType | str,
        params: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> SubmitResult:
        """
        Plan the request, create the task and spawn its execution.
        Returns before the plan has run.

        规划请求、创建任务并启动执行。在计划执行完成之前即返回。
        """
        try:
            request = SubmitRequest(task=task, params=params or {}, session_id=session_id)
        except ValidationError as exc:
            raise StructuralError(f"Invalid submission: {exc}") from exc
        brief = self.brief_for(request.task, request.params)
        task_plan = self.plan_brief(brief)

        created = self.store.create_task(request.task, request.params, request.session_id)
        self.store.add_checkpoint(created.id, "task_planning", {
            "nodes": [n.model_dump(mode="json") for n in task_plan.nodes],
            "graph": TaskDAG.from_graph(task_plan.graph).to_dict(),
            "execution_plan": task_plan.plan.model_dump(mode="json"),
        })

        self._prune_runners()
        token = asyncio.Event()
        self._tokens[created.id] = token
        runner = asyncio.create_task(
            self._run(created, task_plan, token),
            name=f"workflow-{created.id}",
        )
        self._runners[created.id] = runner

        logger.info("[Service] Submitted task %s (%s, %d steps)", created.id, request.task.value, len(task_plan.plan.steps))
        return SubmitResult(task_id=created.id, status=created.status)

    async def _run(self, task: Task, task_plan: TaskPlan, token: asyncio.Event) -> TaskRunResult:
        try:
            return await self.executor.execute(task, task_plan.plan, graph=task_plan.graph, cancel_event=token)
        finally:
            self._tokens.pop(task.id, None)

    # ------------------------------------------------------------------
    # Control / queries
    # 控制与查询
    # ------------------------------------------------------------------

    def cancel(self, task_id: str) -> Task | None:
        """
        Request cancellation; the runner stops at the next step boundary.
        请求取消；执行协程会在下一个步骤边界停止。
        """
        token = self._tokens.get(task_id)
        if token is not None:
            token.set()
        return self.store.cancel_task(task_id)

    def get_task(self, task_id: str) -> Task | None:
        return self.store.get_task(task_id)

    async def wait(self, task_id: str) -> TaskRunResult | None:
        """
        Await a spawned runner and release it. Returns None if no runner is
        held for the id (never submitted, already waited on, or pruned).

        等待执行协程结束并释放它。若该 ID 没有对应的执行协程（从未提交、
        已被 wait 过或已被清理）则返回 None。
        """
        runner = self._runners.get(task_id)
        if runner is None:
            return None
        try:
            return await runner
        finally:
            self._runners.pop(task_id, None)

    def cleanup_tasks(self, max_age: float | None = None) -> int:
        """
        Sweep expired tasks from the store and drop the finished runners
        whose task is gone. Returns the number of tasks removed.

        从存储中清理过期任务，并丢弃其任务已不存在的已结束执行协程。
        返回删除的任务数量。
        """
        removed = self.store.cleanup_tasks(max_age)
        self._prune_runners()
        return removed

    def _prune_runners(self) -> None:
        stale = [tid for tid, r in self._runners.items() if r.done() and tid not in self.store]
        for tid in stale:
            del self._runners[tid]
        if stale:
            logger.debug("[Service] Pruned %d finished runners", len(stale))

    async def shutdown(self) -> None:
        """
        Cancel every in-flight runner and wait for them to unwind.
        取消所有仍在运行的执行协程，并等待其退出。
        """
        pending = [r for r in self._runners.values() if not r.done()]
        for runner in pending:
            runner.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("[Service] Shut down (%d runners cancelled)", len(pending))
