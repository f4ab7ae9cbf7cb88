"""
TaskStore - Owns task state and the append-only checkpoint log.
TaskStore —— 持有任务状态与只追加的检查点日志。

The store is the sole mutator of Task objects. It is constructed once at
process start and passed to every component that needs it (no module-level
registry).

TaskStore 是 Task 对象的唯一修改者。它在进程启动时构造一次，
并以引用方式传给所有需要它的组件（没有模块级全局注册表）。

Concurrency discipline:
  - a registry lock guards insertion / deletion of task ids
  - a per-task lock serializes every status / checkpoint mutation
  - reads take no per-task lock and return deep copies (eventually consistent)

并发约束：
  - 注册表锁保护任务 ID 的插入 / 删除
  - 每个任务一把锁，串行化所有状态 / 检查点变更
  - 读操作不加任务锁，返回深拷贝（最终一致）

Unknown ids and illegal transitions are not exceptions: the mutators return
None and callers are expected to check the return value.
未知 ID 与非法转移都不抛异常：变更方法返回 None，调用方需检查返回值。
"""

from __future__ import annotations

import copy
import logging
import threading
import time
import uuid
from typing import Any, Callable

import config
from schema import Checkpoint, Task, TaskStatus, TaskType
from tasks.state_machine import InvalidTransitionError, TaskStateMachine

logger = logging.getLogger(__name__)


class TaskStore:
    """
    In-memory task registry with per-task serialized mutations.
    内存任务注册表，按任务串行化所有变更。
    """

    def __init__(
        self,
        on_transition: Callable[[str, TaskStatus, TaskStatus], None] | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self._tasks: dict[str, Task] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._sm = TaskStateMachine(on_transition=on_transition)
        self._clock = clock or time.time

    # ------------------------------------------------------------------
    # Creation / queries
    # 创建与查询
    # ------------------------------------------------------------------

    def create_task(
        self,
        task_type: TaskType,
        params: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> Task:
        """
        Create a PENDING task with a fresh id.
        创建一个状态为 PENDING 的新任务。
        """
        now = self._clock()
        with self._registry_lock:
            task_id = self._new_id()
            task = Task(
                id=task_id,
                type=task_type,
                params=copy.deepcopy(params or {}),
                session_id=session_id,
                created_at=now,
                updated_at=now,
            )
            self._tasks[task_id] = task
            self._locks[task_id] = threading.Lock()
        logger.info("[Store] Task %s created (%s)", task_id, task_type.value)
        return task.model_copy(deep=True)

    def get_task(self, task_id: str) -> Task | None:
        """Snapshot of a task, or None if unknown. / 返回任务快照；未知 ID 返回 None。"""
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task is not None else None

    def list_tasks(self) -> list[Task]:
        return [t.model_copy(deep=True) for t in list(self._tasks.values())]

    def get_session_tasks(self, session_id: str) -> list[Task]:
        """
        All tasks that share a session id, oldest first.
        返回同一会话下的所有任务（按创建时间升序）。
        """
        tasks = [t for t in list(self._tasks.values()) if t.session_id == session_id]
        tasks.sort(key=lambda t: t.created_at)
        return [t.model_copy(deep=True) for t in tasks]

    def is_cancelled(self, task_id: str) -> bool:
        task = self._tasks.get(task_id)
        return task is not None and task.status == TaskStatus.CANCELLED

    # ------------------------------------------------------------------
    # Mutations
    # 状态变更
    # ------------------------------------------------------------------

    def update_status(
        self,
        task_id: str,
        status: TaskStatus,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> Task | None:
        """
        Move a task to `status`. Returns the updated snapshot, or None when the
        id is unknown or the transition is illegal (e.g. the task is terminal).

        将任务转移到 `status`。返回更新后的快照；ID 未知或转移非法
        （例如任务已处于终态）时返回 None。

        `result` is stored only on COMPLETED and `error` only on FAILED.
        `result` 仅在 COMPLETED 时保存，`error` 仅在 FAILED 时保存。
        """
        lock = self._locks.get(task_id)
        if lock is None:
            logger.debug("[Store] update_status: unknown task %s", task_id)
            return None

        with lock:
            task = self._tasks.get(task_id)
            if task is None:
                return None
            try:
                self._sm.transition(task, status)
            except InvalidTransitionError as exc:
                logger.debug("[Store] %s", exc)
                return None

            if status == TaskStatus.COMPLETED:
                task.result = copy.deepcopy(result or {})
            elif status == TaskStatus.FAILED:
                task.error = error or "Unknown error"
            task.updated_at = self._clock()
            snapshot = task.model_copy(deep=True)

        logger.info("[Store] Task %s -> %s", task_id, status.value)
        return snapshot

    def cancel_task(self, task_id: str) -> Task | None:
        """
        Request cancellation. Only non-terminal tasks can be cancelled.
        请求取消任务。只有非终态任务可以取消。
        """
        return self.update_status(task_id, TaskStatus.CANCELLED)

    def add_checkpoint(self, task_id: str, step: str, data: dict[str, Any] | None = None) -> Task | None:
        """
        Append a checkpoint regardless of status; never changes status.
        Returns None only when the task id is unknown.

        无论任务状态如何都追加检查点，且从不改变状态。
        仅在任务 ID 未知时返回 None。
        """
        lock = self._locks.get(task_id)
        if lock is None:
            logger.debug("[Store] add_checkpoint: unknown task %s", task_id)
            return None

        with lock:
            task = self._tasks.get(task_id)
            if task is None:
                return None
            now = self._clock()
            task.checkpoints.append(Checkpoint(step=step, timestamp=now, data=copy.deepcopy(data or {})))
            task.updated_at = now
            snapshot = task.model_copy(deep=True)

        logger.debug("[Store] Task %s checkpoint '%s' (#%d)", task_id, step, len(snapshot.checkpoints))
        return snapshot

    # ------------------------------------------------------------------
    # Removal (external, time-based sweep)
    # 删除（由外部按时间触发的清理调用）
    # ------------------------------------------------------------------

    def delete_task(self, task_id: str) -> bool:
        with self._registry_lock:
            removed = self._tasks.pop(task_id, None)
            self._locks.pop(task_id, None)
        return removed is not None

    def cleanup_tasks(self, max_age: float | None = None) -> int:
        """
        Delete tasks not updated within `max_age` seconds; returns the count.
        The core never calls this itself.

        删除超过 `max_age` 秒未更新的任务，返回删除数量。核心流程从不主动调用。
        """
        max_age = config.TASK_MAX_AGE_SECONDS if max_age is None else max_age
        now = self._clock()
        expired = [
            tid for tid, task in list(self._tasks.items())
            if now - task.updated_at > max_age
        ]
        count = sum(1 for tid in expired if self.delete_task(tid))
        if count:
            logger.info("[Store] Cleaned up %d expired tasks", count)
        return count

    # ------------------------------------------------------------------
    # Helpers
    # 辅助方法
    # ------------------------------------------------------------------

    def _new_id(self) -> str:
        # Caller holds the registry lock.
        while True:
            task_id = uuid.uuid4().hex[: config.TASK_ID_LENGTH]
            if task_id not in self._tasks:
                return task_id

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks
