"""
Task State Machine - Validates task lifecycle transitions.
任务状态机 —— 校验任务生命周期的合法状态转移。

The transition table is the single source of truth for what status changes
are legal. Once a task reaches a terminal status it never moves again, so no
task can observe two different terminal statuses, or PROCESSING after a
terminal one.
转移表是合法状态变化的唯一权威来源。任务一旦进入终态便不再变化，
因此任何任务都不会先后出现两个不同的终态，也不会在终态之后回到 PROCESSING。

Transition graph:
转移图：
    PENDING ──> PROCESSING ──> COMPLETED   (happy path / 正常路径)
                           ──> FAILED
    PENDING / PROCESSING ────> CANCELLED   (external request / 外部取消)
"""

from __future__ import annotations

import logging
from typing import Callable

from schema import Task, TaskStatus

logger = logging.getLogger(__name__)


class InvalidTransitionError(Exception):
    """
    Raised when an illegal status transition is attempted.
    当尝试非法状态转移时抛出此异常。
    """
    pass


VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING:    {TaskStatus.PROCESSING, TaskStatus.CANCELLED},
    TaskStatus.PROCESSING: {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED},
    # Terminal states — no further transitions allowed
    # 终态——不允许任何进一步转移
    TaskStatus.COMPLETED:  set(),
    TaskStatus.FAILED:     set(),
    TaskStatus.CANCELLED:  set(),
}


class TaskStateMachine:
    """
    Validates and applies task status transitions.
    校验并应用任务状态转移。

    Provides a single `transition()` method that:
      1. Checks the VALID_TRANSITIONS table
      2. Applies the change to the task
      3. Fires an optional callback for live status subscribers

    提供唯一的 `transition()` 方法，该方法：
      1. 查询 VALID_TRANSITIONS 表校验合法性
      2. 将状态变更应用到任务对象
      3. 触发可选回调（用于实时状态订阅）
    """

    def __init__(self, on_transition: Callable[[str, TaskStatus, TaskStatus], None] | None = None):
        self._on_transition = on_transition

    @staticmethod
    def can_transition(task: Task, new_status: TaskStatus) -> bool:
        return new_status in VALID_TRANSITIONS.get(task.status, set())

    def transition(self, task: Task, new_status: TaskStatus) -> TaskStatus:
        """
        Apply a status transition and return the previous status.
        Raises InvalidTransitionError if illegal.

        应用状态转移并返回原状态；转移非法时抛出 InvalidTransitionError。
        """
        if not self.can_transition(task, new_status):
            raise InvalidTransitionError(
                f"Task '{task.id}': cannot transition from {task.status.value} to {new_status.value}. "
                f"Valid targets: {sorted(s.value for s in VALID_TRANSITIONS.get(task.status, set()))}"
            )

        old_status = task.status
        task.status = new_status

        logger.debug("[SM] %s: %s -> %s", task.id, old_status.value, new_status.value)

        if self._on_transition:
            try:
                self._on_transition(task.id, old_status, new_status)
            except Exception:
                # Subscriber errors must never break the lifecycle.
                # 订阅方异常不能影响任务生命周期。
                logger.warning("[SM] on_transition callback failed for %s", task.id, exc_info=True)
        return old_status
