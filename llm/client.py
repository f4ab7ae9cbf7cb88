"""
LLM Client - Asks an OpenAI-compatible model for one step's state delta.
LLM 客户端 —— 向 OpenAI 兼容模型请求单个步骤的状态增量。

Only what LLMStepExecutor needs lives here: a completion call that must come
back as a JSON object. Providers that reject `response_format` are retried in
plain-text mode and the object is pulled out of the reply.
这里只保留 LLMStepExecutor 需要的能力：一次必须返回 JSON 对象的补全调用。
不支持 `response_format` 的服务商会以纯文本模式重试，再从回复中提取对象。
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from openai import AsyncOpenAI, BadRequestError

import config

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


class LLMClient:
    """
    Async client that returns model output as a dict.
    以 dict 形式返回模型输出的异步客户端。
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int = 2048,
    ):
        self.model = model or config.LLM_MODEL
        self.max_tokens = max_tokens
        self._client = AsyncOpenAI(
            base_url=base_url or config.LLM_BASE_URL,
            api_key=api_key or config.LLM_API_KEY,
        )

    async def complete_object(self, messages: list[dict[str, Any]], temperature: float = 0.3) -> dict[str, Any]:
        """
        Run one completion and return its JSON object.
        Raises ValueError when the reply holds no JSON object.

        执行一次补全并返回其中的 JSON 对象；回复中没有 JSON 对象时抛出 ValueError。
        """
        try:
            text = await self._complete(messages, temperature, json_mode=True)
        except BadRequestError:
            logger.warning("[LLM] %s rejected JSON mode, retrying as plain text", self.model)
            text = await self._complete(messages, temperature, json_mode=False)
        return self.parse_object(text)

    async def _complete(self, messages: list[dict[str, Any]], temperature: float, json_mode: bool) -> str:
        extra: dict[str, Any] = {"response_format": {"type": "json_object"}} if json_mode else {}
        resp = await self._client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=self.max_tokens,
            **extra,
        )
        text = resp.choices[0].message.content or ""
        logger.debug("[LLM] %s replied with %d chars", self.model, len(text))
        return text

    @staticmethod
    def parse_object(text: str) -> dict[str, Any]:
        """
        Pull a JSON object out of model output.
        从模型输出中提取 JSON 对象，依次尝试：
        1. 整段文本
        2. Markdown 代码块（```json ... ``` 或 ``` ... ```）
        3. 第一个 '{' 到最后一个 '}' 之间的片段
        """
        text = text.strip()
        candidates = [text]
        candidates += [m.strip() for m in _FENCE_RE.findall(text)]
        start, end = text.find("{"), text.rfind("}")
        if 0 <= start < end:
            candidates.append(text[start:end + 1])

        for candidate in candidates:
            try:
                value = json.loads(candidate)
            except json.JSONDecodeError:
                continue
            if isinstance(value, dict):
                return value
            raise ValueError(f"expected a JSON object, got {type(value).__name__}")
        raise ValueError(f"no JSON object in model output: {text[:200]!r}")
