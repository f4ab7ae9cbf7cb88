"""
Workflow Executor - Runs a compiled ExecutionPlan against a Step Executor.
工作流执行器 —— 针对 Step Executor 运行编译好的 ExecutionPlan。

Protocol for one task:
  1. PENDING -> PROCESSING
  2. For each plan step, in order:
       a. check for cancellation (between steps, never mid-step)
       b. checkpoint '<node_id>' with the pre-step state
       c. invoke the Step Executor with the accumulated state
       d. checkpoint '<node_id>_completed' with the returned delta
       e. shallow-merge the delta into the state (last writer wins per key)
  3. PROCESSING -> COMPLETED with the accumulated state as result
  4. Notifier called exactly once with the final status

On a step failure the task moves to FAILED with the error message, a
'task_failed' checkpoint records which step failed, and the remaining steps
are not run. On cancellation the loop stops without COMPLETED / FAILED.

单个任务的执行协议：
  1. PENDING -> PROCESSING
  2. 按顺序处理每个计划步骤：
       a. 检查是否已取消（只在步骤之间检查，不会中断正在执行的步骤）
       b. 写入检查点 '<node_id>'，记录执行前状态
       c. 以累计状态调用 Step Executor
       d. 写入检查点 '<node_id>_completed'，记录返回的增量
       e. 将增量浅合并进状态（同名 key 后写者胜）
  3. PROCESSING -> COMPLETED，结果为累计状态
  4. Notifier 恰好被调用一次，告知最终状态

步骤失败时任务转为 FAILED 并记录错误信息，'task_failed' 检查点记录失败步骤，
剩余步骤不再执行。任务被取消时循环停止，不会进入 COMPLETED / FAILED。

Concurrent mode (parallel=True) runs each dependency frontier as a wave via
asyncio.gather. Deltas of a wave are merged in node-id order before the next
wave starts, so no step starts before every one of its ancestors finished.
并发模式（parallel=True）把每个依赖前沿作为一个波次，通过 asyncio.gather 并发执行。
同一波次的增量按节点 ID 顺序合并后才开始下一波次，保证任何步骤都在其所有祖先完成之后才启动。
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Callable

import config
from dag.errors import StepExecutionError
from dag.graph import TaskDAG
from schema import ExecutionPlan, PlanStep, StepOutcome, Task, TaskGraph, TaskRunResult, TaskStatus
from tasks.store import TaskStore
from workflow.notifier import Notifier
from workflow.steps import StepExecutor

logger = logging.getLogger(__name__)


class _Cancelled(Exception):
    """Internal signal: cancellation observed between steps."""


class WorkflowExecutor:
    """
    Drives one task through its plan, advancing status and appending
    checkpoints at every step boundary.

    驱动单个任务按计划执行，在每个步骤边界推进状态并追加检查点。
    """

    def __init__(
        self,
        store: TaskStore,
        step_executor: StepExecutor,
        notifier: Notifier | None = None,
        parallel: bool | None = None,
        max_parallel: int | None = None,
        on_event: Callable[[str, Any], None] | None = None,
    ):
        self._store = store
        self._steps = step_executor
        self._notifier = notifier
        self._parallel = config.PARALLEL_EXECUTION if parallel is None else parallel
        self._max_parallel = max_parallel or config.MAX_PARALLEL_NODES
        self._on_event = on_event   # 事件回调（用于 UI 实时更新）

    # ------------------------------------------------------------------
    # Main entry point
    # 主入口
    # ------------------------------------------------------------------

    async def execute(
        self,
        task: Task,
        plan: ExecutionPlan,
        graph: TaskGraph | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> TaskRunResult:
        """
        Execute `plan` for `task` and return the final outcome.
        Step failures are contained here and never raised.

        为 `task` 执行 `plan` 并返回最终结果。步骤失败在此处被消化，不会向外抛出。
        """
        started = self._store.update_status(task.id, TaskStatus.PROCESSING)
        if started is None:
            # Unknown id, or cancelled before it ever started.
            # 未知任务，或在开始前已被取消。
            current = self._store.get_task(task.id)
            if current is None:
                logger.warning("[Workflow] Task %s not found, nothing to execute", task.id)
                return TaskRunResult(task_id=task.id, status=task.status)
            logger.info("[Workflow] Task %s not started (status=%s)", task.id, current.status.value)
            if current.status == TaskStatus.CANCELLED:
                await self._notify(task.id, TaskStatus.CANCELLED)
            return TaskRunResult(task_id=task.id, status=current.status)

        self._emit("task_started", {"task_id": task.id, "steps": plan.step_ids()})
        state: dict[str, Any] = {"brief": copy.deepcopy(task.params), "task_id": task.id}
        executed: list[str] = []

        try:
            if self._parallel and graph is not None:
                await self._run_waves(task.id, plan, graph, state, executed, cancel_event)
            else:
                if self._parallel:
                    logger.debug("[Workflow] No graph given, running %s sequentially", task.id)
                await self._run_sequential(task.id, plan, state, executed, cancel_event)

        except _Cancelled:
            return await self._finish_cancelled(task.id, executed)

        except StepExecutionError as exc:
            return await self._finish_failed(task.id, exc.node_id, exc.message, executed)

        except asyncio.CancelledError:
            # The runner itself was cancelled (e.g. service shutdown).
            # 执行协程本身被取消（例如服务关闭）。
            self._store.cancel_task(task.id)
            await self._notify(task.id, TaskStatus.CANCELLED)
            raise

        except Exception as exc:
            # Never leave a task in PROCESSING because of an unexpected error.
            # 任何意外错误都不能让任务停留在 PROCESSING。
            logger.exception("[Workflow] Unexpected error while executing %s", task.id)
            return await self._finish_failed(task.id, None, str(exc) or type(exc).__name__, executed)

        return await self._finish_completed(task.id, state, executed)

    # ------------------------------------------------------------------
    # Sequential mode
    # 顺序模式
    # ------------------------------------------------------------------

    async def _run_sequential(
        self,
        task_id: str,
        plan: ExecutionPlan,
        state: dict[str, Any],
        executed: list[str],
        cancel_event: asyncio.Event | None,
    ) -> None:
        for step in plan.steps:
            self._check_cancelled(task_id, cancel_event)
            delta = await self._run_step(task_id, step, state)
            state.update(delta)
            executed.append(step.node_id)

    # ------------------------------------------------------------------
    # Concurrent mode
    # 并发模式（按依赖波次执行）
    # ------------------------------------------------------------------

    async def _run_waves(
        self,
        task_id: str,
        plan: ExecutionPlan,
        graph: TaskGraph,
        state: dict[str, Any],
        executed: list[str],
        cancel_event: asyncio.Event | None,
    ) -> None:
        dag = TaskDAG.from_graph(graph)
        parents = {s.node_id: set(dag.get_dependency_ids(s.node_id)) for s in plan.steps}

        done: set[str] = set()
        remaining = list(plan.steps)
        wave_no = 0
        while remaining:
            self._check_cancelled(task_id, cancel_event)

            # Frontier in plan order, capped at max_parallel.
            # 依赖已全部完成的步骤（保持计划顺序），数量不超过 max_parallel。
            ready = [s for s in remaining if parents[s.node_id] <= done][: self._max_parallel]
            if not ready:
                raise StepExecutionError(remaining[0].node_id, "Plan step has unsatisfiable dependencies")
            wave_no += 1
            self._emit("wave", {"task_id": task_id, "wave": wave_no, "nodes": [s.node_id for s in ready]})

            snapshot = dict(state)
            results = await asyncio.gather(
                *[self._run_step(task_id, step, snapshot) for step in ready],
                return_exceptions=True,
            )

            # Merge deterministically by node id; first failure (by node id) wins.
            # 按节点 ID 确定性地合并；若有多个失败，取节点 ID 最小的那个。
            failure: StepExecutionError | None = None
            for step, outcome in sorted(zip(ready, results), key=lambda pair: pair[0].node_id):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                if isinstance(outcome, BaseException):
                    if failure is None:
                        failure = (
                            outcome if isinstance(outcome, StepExecutionError)
                            else StepExecutionError(step.node_id, str(outcome) or type(outcome).__name__)
                        )
                    continue
                state.update(outcome)
                executed.append(step.node_id)
                done.add(step.node_id)
            if failure is not None:
                raise failure

            ready_ids = {s.node_id for s in ready}
            remaining = [s for s in remaining if s.node_id not in ready_ids]

    # ------------------------------------------------------------------
    # Single step
    # 单个步骤
    # ------------------------------------------------------------------

    async def _run_step(self, task_id: str, step: PlanStep, state: dict[str, Any]) -> dict[str, Any]:
        """
        Run one step with its pre/post checkpoints; returns the delta.
        Raises StepExecutionError on failure (pre checkpoint only).

        执行单个步骤并写入前后检查点，返回增量。
        失败时抛出 StepExecutionError（此时只有执行前检查点）。
        """
        self._store.add_checkpoint(task_id, step.node_id, {"state": copy.deepcopy(state)})
        self._emit("step_started", {"task_id": task_id, "step": step})

        try:
            outcome = await self._steps.invoke(step.kind, step.node_id, dict(state))
        except StepExecutionError:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            outcome = StepOutcome(error=str(exc) or type(exc).__name__)

        if not outcome.ok:
            logger.warning("[Workflow] Task %s step %s failed: %s", task_id, step.node_id, outcome.error)
            self._emit("step_failed", {"task_id": task_id, "step": step, "error": outcome.error})
            raise StepExecutionError(step.node_id, outcome.error or "Unknown error")

        delta = dict(outcome.delta)
        self._store.add_checkpoint(task_id, f"{step.node_id}_completed", {"delta": copy.deepcopy(delta)})
        self._emit("step_completed", {"task_id": task_id, "step": step, "delta": delta})
        logger.debug("[Workflow] Task %s step %s done (%d keys)", task_id, step.node_id, len(delta))
        return delta

    def _emit(self, event: str, data: dict[str, Any]) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event, data)
        except Exception:
            # UI callback errors must never change the task outcome.
            # UI 回调异常不能影响任务结果。
            logger.warning("[Workflow] on_event callback failed for '%s'", event, exc_info=True)

    # ------------------------------------------------------------------
    # Cancellation
    # 取消检查
    # ------------------------------------------------------------------

    def _check_cancelled(self, task_id: str, cancel_event: asyncio.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            self._store.cancel_task(task_id)
        if self._store.is_cancelled(task_id):
            raise _Cancelled()

    # ------------------------------------------------------------------
    # Terminal transitions
    # 终态处理
    # ------------------------------------------------------------------

    async def _finish_completed(self, task_id: str, state: dict[str, Any], executed: list[str]) -> TaskRunResult:
        updated = self._store.update_status(task_id, TaskStatus.COMPLETED, result=state)
        if updated is None:
            # Lost a race with an external cancel between the last step and here.
            # 最后一步之后与外部取消发生竞争：以存储中的实际状态为准。
            return await self._finish_cancelled(task_id, executed)

        logger.info("[Workflow] Task %s completed (%d steps)", task_id, len(executed))
        self._emit("task_finished", {"task_id": task_id, "status": TaskStatus.COMPLETED})
        await self._notify(task_id, TaskStatus.COMPLETED, result=updated.result)
        return TaskRunResult(
            task_id=task_id,
            status=TaskStatus.COMPLETED,
            result=updated.result,
            executed_steps=executed,
        )

    async def _finish_failed(
        self,
        task_id: str,
        node_id: str | None,
        message: str,
        executed: list[str],
    ) -> TaskRunResult:
        updated = self._store.update_status(task_id, TaskStatus.FAILED, error=message)
        if updated is None:
            return await self._finish_cancelled(task_id, executed)

        self._store.add_checkpoint(task_id, "task_failed", {"step": node_id, "error": message})
        logger.info("[Workflow] Task %s failed at %s: %s", task_id, node_id, message)
        self._emit("task_finished", {"task_id": task_id, "status": TaskStatus.FAILED, "error": message})
        await self._notify(task_id, TaskStatus.FAILED, error=message)
        return TaskRunResult(
            task_id=task_id,
            status=TaskStatus.FAILED,
            error=message,
            executed_steps=executed,
        )

    async def _finish_cancelled(self, task_id: str, executed: list[str]) -> TaskRunResult:
        current = self._store.get_task(task_id)
        status = current.status if current is not None else TaskStatus.CANCELLED
        logger.info("[Workflow] Task %s stopped after %d steps (status=%s)", task_id, len(executed), status.value)
        self._emit("task_cancelled", {"task_id": task_id, "executed": list(executed)})
        await self._notify(task_id, status)
        return TaskRunResult(task_id=task_id, status=status, executed_steps=executed)

    async def _notify(
        self,
        task_id: str,
        status: TaskStatus,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        """Best-effort: a notifier failure never fails the task. / 尽力而为：通知失败不影响任务。"""
        if self._notifier is None:
            return
        try:
            await self._notifier.publish(task_id, status, result=result, error=error)
        except Exception:
            logger.warning("[Workflow] Notifier failed for task %s", task_id, exc_info=True)
