"""
Step Executors - Collaborators that turn one plan step into a state delta.
Step Executor —— 把单个计划步骤转换为状态增量的外部协作者。

Protocol:
    async invoke(kind, name, state) -> StepOutcome

`name` is the step's node id (the stable identifier, e.g. 'create_logo');
`state` is the accumulated workflow state (read-only for the executor).
A step either returns a delta, or fails by raising or by returning
StepOutcome(error=...). The WorkflowExecutor treats both failure forms the same.

`name` 为步骤的节点 ID（稳定标识，如 'create_logo'）；
`state` 为累计的工作流状态（执行器只读）。
步骤要么返回增量，要么通过抛异常或返回 StepOutcome(error=...) 表示失败，
WorkflowExecutor 对两种失败形式一视同仁。

Implementations:
  - EchoStepExecutor:     offline, deterministic canned payloads per step
  - LLMStepExecutor:      asks an OpenAI-compatible model for a JSON delta
  - TimeoutStepExecutor:  bounds another executor with a per-call timeout
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Protocol, Union

import config
from llm.client import LLMClient
from schema import NodeKind, StepOutcome

logger = logging.getLogger(__name__)

StepHandler = Callable[[dict[str, Any]], Union[dict[str, Any], Awaitable[dict[str, Any]]]]


class StepExecutor(Protocol):
    async def invoke(self, kind: NodeKind, name: str, state: dict[str, Any]) -> StepOutcome:
        ...


# ======================================================================
# Handler-based executor
# 基于处理函数的执行器
# ======================================================================

class HandlerStepExecutor:
    """
    Dispatches each step to a registered handler keyed by node id.
    按节点 ID 将步骤分派给已注册的处理函数。

    START / END steps and steps without a handler produce an empty delta,
    so a partially-registered workflow still runs end to end.
    START / END 步骤以及未注册处理函数的步骤返回空增量，
    因此只注册了部分步骤的工作流也能完整跑通。
    """

    def __init__(self, handlers: dict[str, StepHandler] | None = None, delay: float = 0.0):
        self._handlers: dict[str, StepHandler] = dict(handlers or {})
        self._delay = delay   # 模拟外部调用延迟（秒）

    def register(self, name: str, handler: StepHandler) -> None:
        self._handlers[name] = handler

    async def invoke(self, kind: NodeKind, name: str, state: dict[str, Any]) -> StepOutcome:
        if self._delay:
            await asyncio.sleep(self._delay)

        handler = self._handlers.get(name)
        if handler is None:
            if kind == NodeKind.PROCESS:
                logger.debug("[Steps] No handler for '%s', returning empty delta", name)
            return StepOutcome()

        delta = handler(state)
        if inspect.isawaitable(delta):
            delta = await delta
        return StepOutcome(delta=dict(delta or {}))


def _brief(state: dict[str, Any]) -> dict[str, Any]:
    return state.get("brief") or {}


def _analyze_brief(state: dict[str, Any]) -> dict[str, Any]:
    brief = _brief(state)
    return {"analysis": {
        "subject": brief.get("text", "unspecified"),
        "style": brief.get("style", "modern minimal"),
    }}


def _generate_concepts(state: dict[str, Any]) -> dict[str, Any]:
    analysis = state.get("analysis", {})
    style = analysis.get("style", "modern minimal")
    return {"concepts": [f"{style} wordmark", f"{style} emblem", f"{style} monogram"]}


def _create_logo(state: dict[str, Any]) -> dict[str, Any]:
    concepts = state.get("concepts") or ["geometric mark"]
    subject = state.get("analysis", {}).get("subject", "unspecified")
    return {"logo": {
        "description": f"{concepts[0]} logo for {subject}",
        "elements": ["circle", "triangle", "text"],
        "shape": "geometric composition",
        "symbolism": "innovation and stability",
    }}


def _generate_colors(state: dict[str, Any]) -> dict[str, Any]:
    return {"colors": {
        "primary": "#3498db",
        "secondary": "#2ecc71",
        "accent": "#e74c3c",
        "palette": ["#3498db", "#2ecc71", "#e74c3c", "#f1c40f"],
    }}


def _analyze_requirements(state: dict[str, Any]) -> dict[str, Any]:
    brief = _brief(state)
    return {"requirements": {
        "language": brief.get("language", "python"),
        "summary": brief.get("text", "unspecified"),
    }}


def _design_architecture(state: dict[str, Any]) -> dict[str, Any]:
    return {"architecture": {"modules": ["main"], "entrypoint": "main"}}


_CODE_SAMPLES = {
    "python": 'def greet(name):\n    return f"Hello, {name}!"\n\nprint(greet("World"))',
    "javascript": 'function greet(name) {\n  return "Hello, " + name + "!";\n}\n\nconsole.log(greet("World"));',
}


def _generate_code(state: dict[str, Any]) -> dict[str, Any]:
    language = state.get("requirements", {}).get("language", "python")
    code = _CODE_SAMPLES.get(language, f"// Generated code for {language}")
    return {"code": {"code": code, "language": language}}


def _test_code(state: dict[str, Any]) -> dict[str, Any]:
    return {"tests": {"passed": "code" in state, "cases": 1}}


def _process(state: dict[str, Any]) -> dict[str, Any]:
    return {"output": {"text": "Processed request", "brief": dict(_brief(state))}}


ECHO_HANDLERS: dict[str, StepHandler] = {
    "analyze_brief": _analyze_brief,
    "generate_concepts": _generate_concepts,
    "create_logo": _create_logo,
    "generate_colors": _generate_colors,
    "analyze_requirements": _analyze_requirements,
    "design_architecture": _design_architecture,
    "generate_code": _generate_code,
    "test_code": _test_code,
    "process": _process,
}


class EchoStepExecutor(HandlerStepExecutor):
    """
    Offline executor with canned, deterministic payloads for the built-in
    logo / code / default families. Used by the CLI and in tests.

    离线执行器：为内置的 logo / code / default 三个 family 返回固定、确定的结果。
    供命令行与测试使用。
    """

    def __init__(self, delay: float = 0.0):
        super().__init__(handlers=ECHO_HANDLERS, delay=delay)


# ======================================================================
# LLM-backed executor
# 基于 LLM 的执行器
# ======================================================================

LLM_STEP_SYSTEM_PROMPT = """\
You are one step of a content-generation workflow.
You receive the step name and the accumulated workflow state as JSON.
Return ONLY a JSON object holding the new keys this step contributes to the
state. Do not repeat keys that are already present unless you update them.
"""


class LLMStepExecutor:
    """
    Asks an OpenAI-compatible model for each PROCESS step's delta.
    对每个 PROCESS 步骤，请求 OpenAI 兼容模型生成状态增量。

    START / END steps never reach the model.
    START / END 步骤不会调用模型。
    """

    def __init__(self, llm_client: LLMClient | None = None, temperature: float = 0.3):
        self._llm = llm_client or LLMClient()
        self._temperature = temperature

    async def invoke(self, kind: NodeKind, name: str, state: dict[str, Any]) -> StepOutcome:
        if kind in (NodeKind.START, NodeKind.END):
            return StepOutcome()

        messages = [
            {"role": "system", "content": LLM_STEP_SYSTEM_PROMPT},
            {"role": "user", "content": (
                f"Step: {name} ({kind.value})\n\n"
                f"State:\n{json.dumps(state, ensure_ascii=False, default=str)}"
            )},
        ]
        try:
            delta = await self._llm.complete_object(messages, temperature=self._temperature)
        except ValueError as exc:
            return StepOutcome(error=f"Step '{name}': {exc}")
        return StepOutcome(delta=delta)


# ======================================================================
# Bounding wrapper
# 超时包装器
# ======================================================================

class TimeoutStepExecutor:
    """
    Imposes a per-call timeout on another executor.
    为另一个执行器的每次调用加上超时限制。
    """

    def __init__(self, inner: StepExecutor, timeout: float | None = None):
        self._inner = inner
        self._timeout = config.STEP_TIMEOUT_SECONDS if timeout is None else timeout

    async def invoke(self, kind: NodeKind, name: str, state: dict[str, Any]) -> StepOutcome:
        try:
            return await asyncio.wait_for(self._inner.invoke(kind, name, state), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("[Steps] Step '%s' timed out after %ss", name, self._timeout)
            return StepOutcome(error=f"Step '{name}' timed out after {self._timeout}s")
