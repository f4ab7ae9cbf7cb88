"""
GraphBuilder - Turns a brief into an ordered list of step descriptors.
GraphBuilder —— 将 brief 转换为有序的步骤描述列表。

This is a data-mapping step, not a validator: the brief's family
discriminator selects a canonical chain of named steps, and every other
field of the brief is ignored.

这是一个数据映射步骤而非校验器：brief 的 family 判别字段决定使用哪条
规范步骤链，brief 中的其他字段一律忽略。

    logo:    start -> analyze_brief -> generate_concepts -> create_logo
                   -> generate_colors -> end
    code:    start -> analyze_requirements -> design_architecture
                   -> generate_code -> test_code -> end
    default: start -> process -> end
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from dag.errors import StructuralError
from schema import NodeKind, StepDescriptor

logger = logging.getLogger(__name__)

DEFAULT_FAMILY = "default"

# Keys that carry the family discriminator, checked in order.
# 携带 family 判别值的字段，按顺序查找（taskType 为旧字段名）。
FAMILY_KEYS = ("taskFamily", "task_family", "taskType")

# family -> substantive PROCESS steps as (id, name, description).
# START/END brackets are added by the builder.
# family -> 中间的 PROCESS 步骤 (id, 名称, 描述)；START/END 由构建器自动补齐。
FAMILY_CHAINS: dict[str, list[tuple[str, str, str]]] = {
    "logo": [
        ("analyze_brief", "Analyze brief", "Analyze the logo design requirements"),
        ("generate_concepts", "Generate concepts", "Generate logo concept designs"),
        ("create_logo", "Create logo", "Create the logo from the chosen concept"),
        ("generate_colors", "Generate colors", "Generate a color scheme for the logo"),
    ],
    "code": [
        ("analyze_requirements", "Analyze requirements", "Analyze the code generation requirements"),
        ("design_architecture", "Design architecture", "Design the code architecture"),
        ("generate_code", "Generate code", "Generate the code implementation"),
        ("test_code", "Test code", "Test the generated code"),
    ],
    DEFAULT_FAMILY: [
        ("process", "Process task", "Process the user request"),
    ],
}


class GraphBuilder:
    """
    Maps a brief to a START-bracketed chain of StepDescriptors.
    将 brief 映射为以 START/END 包围的 StepDescriptor 链。

    Output is deterministic for a given family; unknown families fall back
    to the minimal START -> PROCESS -> END chain.
    对同一 family 输出确定；未知 family 回退为最小链 START -> PROCESS -> END。
    """

    def __init__(self, chains: Mapping[str, list[tuple[str, str, str]]] | None = None):
        # Copy so that register_family() never leaks into the module table.
        # 复制一份，register_family() 不会污染模块级表。
        self._chains: dict[str, list[tuple[str, str, str]]] = {
            family: list(steps) for family, steps in (chains or FAMILY_CHAINS).items()
        }
        self._chains.setdefault(DEFAULT_FAMILY, list(FAMILY_CHAINS[DEFAULT_FAMILY]))

    @property
    def families(self) -> list[str]:
        return sorted(self._chains)

    def register_family(self, family: str, steps: list[tuple[str, str, str]]) -> None:
        """
        Register (or replace) the canonical chain for a family.
        注册（或替换）某个 family 的规范步骤链。
        """
        if not family:
            raise StructuralError("Family name must be a non-empty string")
        if not steps:
            raise StructuralError(f"Family '{family}' needs at least one step")
        ids = [s[0] for s in steps]
        reserved = {"start", "end"} & set(ids)
        if reserved:
            raise StructuralError(f"Family '{family}' uses reserved step ids: {sorted(reserved)}")
        if len(set(ids)) != len(ids):
            raise StructuralError(f"Family '{family}' declares duplicate step ids")
        self._chains[family] = list(steps)
        logger.info("[Builder] Registered family '%s' (%d steps)", family, len(steps))

    @staticmethod
    def resolve_family(brief: Mapping[str, Any]) -> str:
        """Return the family discriminator of a brief, or 'default'. / 返回 brief 的 family 值。"""
        for key in FAMILY_KEYS:
            value = brief.get(key)
            if isinstance(value, str) and value:
                return value
        return DEFAULT_FAMILY

    def build(self, brief: Mapping[str, Any]) -> list[StepDescriptor]:
        """
        Build the ordered step descriptors for a brief.
        为 brief 构建有序的步骤描述列表。
        """
        if not isinstance(brief, Mapping):
            raise StructuralError(f"Brief must be a mapping, got {type(brief).__name__}")

        family = self.resolve_family(brief)
        chain = self._chains.get(family)
        if chain is None:
            logger.debug("[Builder] Unknown family '%s', using default chain", family)
            chain = self._chains[DEFAULT_FAMILY]

        steps: list[StepDescriptor] = [
            StepDescriptor(id="start", kind=NodeKind.START, name="Start task"),
        ]
        previous = "start"
        for step_id, name, description in chain:
            steps.append(StepDescriptor(
                id=step_id,
                kind=NodeKind.PROCESS,
                name=name,
                description=description,
                dependencies=[previous],
            ))
            previous = step_id
        steps.append(StepDescriptor(
            id="end",
            kind=NodeKind.END,
            name="End task",
            dependencies=[previous],
        ))

        logger.info("[Builder] Brief family '%s' -> %d steps", family, len(steps))
        return steps
