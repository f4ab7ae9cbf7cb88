from .executor import WorkflowExecutor
from .notifier import BroadcastNotifier, CompositeNotifier, LoggingNotifier, Notifier, TaskUpdate
from .service import WorkflowService
from .steps import EchoStepExecutor, HandlerStepExecutor, LLMStepExecutor, StepExecutor, TimeoutStepExecutor

__all__ = [
    "WorkflowExecutor",
    "WorkflowService",
    "StepExecutor",
    "HandlerStepExecutor",
    "EchoStepExecutor",
    "LLMStepExecutor",
    "TimeoutStepExecutor",
    "Notifier",
    "TaskUpdate",
    "LoggingNotifier",
    "BroadcastNotifier",
    "CompositeNotifier",
]
