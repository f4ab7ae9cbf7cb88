"""
Notifiers - Publish task-status events to external listeners.
Notifier —— 向外部监听者发布任务状态事件。

Protocol:
    async publish(task_id, status, result=None, error=None)

Publishing is fire-and-forget and best-effort: a notifier failure is logged
and never fails the task. The WorkflowExecutor guards every call, and the
notifiers below additionally isolate their own subscribers from each other.

发布是「发出即忘」且尽力而为的：通知失败只记录日志，绝不导致任务失败。
WorkflowExecutor 会保护每次调用，下面的各个 Notifier 也会隔离各自的订阅者。
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Protocol, Union

from pydantic import BaseModel, Field

from schema import TaskStatus

logger = logging.getLogger(__name__)


class TaskUpdate(BaseModel):
    """
    A single `task:update` event.
    单条 `task:update` 事件。
    """
    task_id: str
    status: TaskStatus
    result: dict[str, Any] | None = None
    error: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


Subscriber = Callable[[TaskUpdate], Union[None, Awaitable[None]]]


class Notifier(Protocol):
    async def publish(
        self,
        task_id: str,
        status: TaskStatus,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        ...


class LoggingNotifier:
    """Writes every update to the log. / 将每条更新写入日志。"""

    def __init__(self, level: int = logging.INFO):
        self._level = level

    async def publish(
        self,
        task_id: str,
        status: TaskStatus,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        if error:
            logger.log(self._level, "[Notify] task:update %s %s error=%s", task_id, status.value, error)
        else:
            logger.log(self._level, "[Notify] task:update %s %s", task_id, status.value)


class BroadcastNotifier:
    """
    In-process fan-out to callback and queue subscribers.
    进程内广播：分发给回调订阅者与队列订阅者。

    Callbacks may be plain functions or coroutines. Queue subscribers get
    an asyncio.Queue they can `await queue.get()` on for live status.
    `history` keeps only the most recent `history_size` updates.
    回调可以是普通函数或协程；队列订阅者会拿到一个 asyncio.Queue，
    可以通过 `await queue.get()` 实时接收状态。`history` 只保留最近
    `history_size` 条更新。
    """

    def __init__(self, history_size: int = 100) -> None:
        self._callbacks: list[Subscriber] = []
        self._queues: list[asyncio.Queue[TaskUpdate]] = []
        self.history: deque[TaskUpdate] = deque(maxlen=history_size)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns an unsubscribe function. / 注册回调，返回取消订阅函数。"""
        self._callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unsubscribe

    def subscribe_queue(self, maxsize: int = 0) -> asyncio.Queue[TaskUpdate]:
        queue: asyncio.Queue[TaskUpdate] = asyncio.Queue(maxsize=maxsize)
        self._queues.append(queue)
        return queue

    def unsubscribe_queue(self, queue: asyncio.Queue[TaskUpdate]) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    async def publish(
        self,
        task_id: str,
        status: TaskStatus,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        update = TaskUpdate(task_id=task_id, status=status, result=result, error=error)
        self.history.append(update)

        for callback in list(self._callbacks):
            try:
                ret = callback(update)
                if inspect.isawaitable(ret):
                    await ret
            except Exception:
                logger.warning("[Notify] Subscriber failed for task %s", task_id, exc_info=True)

        for queue in list(self._queues):
            try:
                queue.put_nowait(update)
            except asyncio.QueueFull:
                logger.warning("[Notify] Subscriber queue full, dropping update for task %s", task_id)


class CompositeNotifier:
    """
    Publishes to several notifiers; one failing does not stop the others.
    同时发布给多个 Notifier；其中一个失败不影响其余的。
    """

    def __init__(self, notifiers: list[Notifier]):
        self._notifiers = list(notifiers)

    async def publish(
        self,
        task_id: str,
        status: TaskStatus,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        for notifier in self._notifiers:
            try:
                await notifier.publish(task_id, status, result=result, error=error)
            except Exception:
                logger.warning("[Notify] %s failed for task %s", type(notifier).__name__, task_id, exc_info=True)
