from .state_machine import InvalidTransitionError, TaskStateMachine, VALID_TRANSITIONS
from .store import TaskStore

__all__ = ["TaskStore", "TaskStateMachine", "InvalidTransitionError", "VALID_TRANSITIONS"]
