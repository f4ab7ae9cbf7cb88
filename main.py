"""
Task-graph planner - Command-line entry point.
任务图规划器 —— 命令行入口。

Plans a brief, shows the execution plan and its Mermaid diagram, then runs
the plan with the offline echo executor (or an OpenAI-compatible model with
--llm) and prints every step as it happens.
规划一个 brief，展示执行计划及其 Mermaid 图，然后用离线 echo 执行器
（或加 --llm 使用 OpenAI 兼容模型）运行计划，并实时打印每个步骤。

Usage / 用法:
    python main.py logo text=Acme style=modern
    python main.py code language=python --parallel
    python main.py anything --mermaid-only
    python main.py logo -v
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from dag.errors import PlanningError
from dag.visualize import render_plan_mermaid
from schema import PlanStep, Task, TaskPlan, TaskStatus, TaskType
from tasks.store import TaskStore
from workflow.notifier import BroadcastNotifier, CompositeNotifier, LoggingNotifier, TaskUpdate
from workflow.service import WorkflowService
from workflow.steps import EchoStepExecutor, LLMStepExecutor, TimeoutStepExecutor

console = Console()

# Status -> Rich style mapping
# 任务状态 -> Rich 样式映射
_STATUS_STYLES = {
    "pending": "dim",
    "processing": "bold yellow",
    "completed": "green",
    "failed": "red",
    "cancelled": "magenta",
}

# family -> task type used for submission
# family -> 提交时使用的任务类型
_FAMILY_TYPES = {
    "logo": TaskType.GENERATE_LOGO,
    "code": TaskType.GENERATE_CODE,
}


# ======================================================================
# Rendering
# 渲染
# ======================================================================

def _plan_table(task_plan: TaskPlan) -> Table:
    """
    Build a Rich table of the plan: order, step, kind, level, cost, group.
    构建执行计划表格：顺序、步骤、类型、层级、耗时、并行组。
    """
    plan = task_plan.plan
    grouped = {nid: g.group_id for g in plan.parallel_groups for nid in g.node_ids}

    table = Table(title="Execution Plan", border_style="cyan", show_lines=True)
    table.add_column("#", style="cyan", width=4)
    table.add_column("Step", style="white")
    table.add_column("Kind", style="dim", width=9)
    table.add_column("Level", style="dim", width=6)
    table.add_column("Cost (ms)", style="dim", width=10)
    table.add_column("Group", style="magenta")
    for i, step in enumerate(plan.steps, start=1):
        table.add_row(
            str(i),
            f"{step.node_id}: {step.name}",
            step.kind.value,
            str(plan.levels.get(step.node_id, -1)),
            str(step.estimated_cost),
            grouped.get(step.node_id, "-"),
        )
    return table


def _checkpoint_tree(task: Task) -> Tree:
    """
    Build a Rich Tree of a task's checkpoint trail, one branch per step.
    构建任务检查点轨迹的 Rich Tree：每个步骤一个分支，
    `<step>_completed` 与 `task_failed` 挂在对应步骤下面。
    """
    style = _STATUS_STYLES.get(task.status.value, "white")
    tree = Tree(f"[bold]Task {task.id}[/bold] [{style}]({task.status.value})[/{style}]")

    branches: dict[str, Tree] = {}
    for cp in task.checkpoints:
        if cp.step.endswith("_completed") and cp.step[: -len("_completed")] in branches:
            keys = ", ".join(cp.data.get("delta", {})) or "no changes"
            branches[cp.step[: -len("_completed")]].add(f"[green]completed[/green] [dim]({keys})[/dim]")
        elif cp.step == "task_failed":
            target = branches.get(cp.data.get("step") or "", tree)
            target.add(f"[red]failed: {cp.data.get('error')}[/red]")
        else:
            branches[cp.step] = tree.add(f"[cyan]{cp.step}[/cyan]")
    return tree


def on_event(event: str, data: Any) -> None:
    """
    Pretty-print workflow events as they arrive.
    将工作流事件实时渲染到控制台。
    """
    if event == "task_started":
        console.print(f"\n[bold cyan]>>> Running task {data['task_id']}[/bold cyan]")

    elif event == "wave":
        nodes = data["nodes"]
        parallel_note = " (parallel)" if len(nodes) > 1 else ""
        console.print(f"  [bold yellow]--- Wave {data['wave']} ---[/bold yellow]{parallel_note}: [cyan]{', '.join(nodes)}[/cyan]")

    elif event == "step_started":
        step: PlanStep = data["step"]
        console.print(f"    [yellow]>> {step.node_id}[/yellow] ({step.kind.value})")

    elif event == "step_completed":
        step: PlanStep = data["step"]
        keys = ", ".join(data["delta"]) or "no changes"
        console.print(f"    [green]<< {step.node_id} completed[/green] [dim]({keys})[/dim]")

    elif event == "step_failed":
        step: PlanStep = data["step"]
        console.print(f"    [red]<< {step.node_id} FAILED: {data['error']}[/red]")

    elif event == "task_cancelled":
        console.print(f"  [magenta]Task {data['task_id']} cancelled.[/magenta]")


def _print_update(update: TaskUpdate) -> None:
    style = _STATUS_STYLES.get(update.status.value, "white")
    body = update.error if update.error else json.dumps(update.result or {}, indent=2, ensure_ascii=False)
    console.print(Panel(
        body[:2000],
        title=f"[bold {style}]Task {update.task_id}: {update.status.value}[/bold {style}]",
        border_style=style,
    ))


# ======================================================================
# Main
# 主函数
# ======================================================================

def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging with rich handler.
    使用 Rich 处理器配置日志系统；verbose=True 时启用 DEBUG 级别。
    """
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def parse_brief(args: list[str]) -> dict[str, Any]:
    """
    `logo text=Acme style=modern` -> {"taskFamily": "logo", "text": "Acme", "style": "modern"}
    """
    brief: dict[str, Any] = {}
    for arg in args:
        if "=" in arg:
            key, _, value = arg.partition("=")
            brief[key] = value
        elif "taskFamily" not in brief:
            brief["taskFamily"] = arg
    return brief


async def run(brief: dict[str, Any], parallel: bool, use_llm: bool, mermaid_only: bool) -> int:
    store = TaskStore()
    broadcast = BroadcastNotifier()
    broadcast.subscribe(_print_update)
    step_executor = TimeoutStepExecutor(LLMStepExecutor()) if use_llm else EchoStepExecutor()
    service = WorkflowService(
        store=store,
        step_executor=step_executor,
        notifier=CompositeNotifier([LoggingNotifier(logging.DEBUG), broadcast]),
        parallel=parallel,
        on_event=on_event,
    )

    try:
        task_plan = service.plan_brief(brief)
    except PlanningError as exc:
        console.print(f"[red]Planning failed: {exc}[/red]")
        return 1

    mermaid = render_plan_mermaid(task_plan.graph, task_plan.plan)
    if mermaid_only:
        console.print(mermaid, markup=False, highlight=False, end="")
        return 0

    console.print(Panel(
        json.dumps(brief, ensure_ascii=False),
        title="[bold blue]Brief[/bold blue]",
        border_style="blue",
    ))
    console.print(_plan_table(task_plan))
    console.print(Panel(mermaid.rstrip(), title="[bold magenta]Mermaid[/bold magenta]", border_style="magenta"))

    task_type = _FAMILY_TYPES.get(brief.get("taskFamily", ""), TaskType.DEBUG_FLOW)
    submitted = await service.submit(task_type, brief)
    result = await service.wait(submitted.task_id)

    task = service.get_task(submitted.task_id)
    if task is not None:
        console.print(_checkpoint_tree(task))
    return 0 if result is not None and result.status == TaskStatus.COMPLETED else 1


def main() -> None:
    """
    程序入口：解析命令行参数。
    - 位置参数：family 与 key=value 形式的 brief 字段
    - -v / --verbose：启用调试日志
    - --parallel：按依赖波次并发执行
    - --llm：使用 OpenAI 兼容模型执行步骤
    - --mermaid-only：只输出 Mermaid 图
    """
    flags = {a for a in sys.argv[1:] if a.startswith("-")}
    setup_logging("--verbose" in flags or "-v" in flags)

    args = [a for a in sys.argv[1:] if not a.startswith("-")]
    brief = parse_brief(args)
    code = asyncio.run(run(
        brief,
        parallel="--parallel" in flags,
        use_llm="--llm" in flags,
        mermaid_only="--mermaid-only" in flags,
    ))
    sys.exit(code)


if __name__ == "__main__":
    main()
