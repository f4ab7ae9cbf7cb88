"""
工作流执行测试 — 覆盖：
  1. WorkflowExecutor：检查点协议、增量合并、失败处理、取消、通知
  2. 并发波次模式：祖先先于后代、确定性合并
  3. Step Executor：Echo / LLM / Timeout
  4. WorkflowService：提交、后台执行、取消、关闭
  5. 命令行辅助函数：brief 解析、检查点树

所有外部协作者（Step Executor、Notifier、LLM）均使用 mock，无需网络。

运行方式:
    python -m pytest tests/test_workflow.py -v
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from dag.errors import StructuralError
from dag.graph import compile_graph
from dag.planner import ExecutionPlanner
from llm.client import LLMClient
from schema import NodeKind, StepDescriptor, StepOutcome, TaskStatus, TaskType
from tasks.store import TaskStore
from workflow.executor import WorkflowExecutor
from workflow.notifier import BroadcastNotifier, CompositeNotifier
from workflow.service import WorkflowService
from workflow.steps import EchoStepExecutor, HandlerStepExecutor, LLMStepExecutor, TimeoutStepExecutor


# ======================================================================
# Helpers
# ======================================================================


def _chain(*ids: str) -> list[StepDescriptor]:
    """start -> ids... -> end 的线性链。"""
    steps = [StepDescriptor(id="start", kind=NodeKind.START, name="Start")]
    prev = "start"
    for nid in ids:
        steps.append(StepDescriptor(id=nid, kind=NodeKind.PROCESS, name=nid, dependencies=[prev]))
        prev = nid
    steps.append(StepDescriptor(id="end", kind=NodeKind.END, name="End", dependencies=[prev]))
    return steps


def _fan() -> list[StepDescriptor]:
    """
        start
        ├── a
        └── b
             └── c (依赖 a 和 b)
    """
    return [
        StepDescriptor(id="start", kind=NodeKind.START, name="Start"),
        StepDescriptor(id="a", kind=NodeKind.PROCESS, name="A", dependencies=["start"]),
        StepDescriptor(id="b", kind=NodeKind.PROCESS, name="B", dependencies=["start"]),
        StepDescriptor(id="c", kind=NodeKind.PROCESS, name="C", dependencies=["a", "b"]),
    ]


def _plan(steps: list[StepDescriptor]):
    graph = compile_graph(steps)
    return graph, ExecutionPlanner().plan(graph)


def _step_executor(fn) -> AsyncMock:
    """用普通函数 fn(kind, name, state) 构造一个 mock Step Executor。"""
    mock = AsyncMock()
    mock.invoke = AsyncMock(side_effect=fn)
    return mock


def _checkpoint_steps(store: TaskStore, task_id: str) -> list[str]:
    return [c.step for c in store.get_task(task_id).checkpoints]


# ======================================================================
# Test 1: 顺序执行
# ======================================================================


class TestWorkflowExecutor:

    @pytest.mark.asyncio
    async def test_step_failure_stops_the_run(self):
        """
        Scenario E: 5 步计划的第 3 步失败。
        期望：前两步有前后检查点，第 3 步只有前检查点，任务 FAILED，
        Notifier 恰好被调用一次。
        """
        store = TaskStore()
        notifier = AsyncMock()
        graph, plan = _plan(_chain("s1", "s2", "s3"))

        async def fake_invoke(kind, name, state):
            if name == "s2":
                return StepOutcome(error="s2 exploded")
            return StepOutcome(delta={name: "done"})

        steps = _step_executor(fake_invoke)
        task = store.create_task(TaskType.DEBUG_FLOW, {"text": "x"})
        result = await WorkflowExecutor(store, steps, notifier=notifier).execute(task, plan)

        assert result.status == TaskStatus.FAILED
        assert result.error == "s2 exploded"
        assert result.executed_steps == ["start", "s1"]

        current = store.get_task(task.id)
        assert current.status == TaskStatus.FAILED
        assert current.error == "s2 exploded"
        assert current.result is None
        assert _checkpoint_steps(store, task.id) == [
            "start", "start_completed", "s1", "s1_completed", "s2", "task_failed",
        ]
        assert current.checkpoints[-1].data == {"step": "s2", "error": "s2 exploded"}

        called = [c.args[1] for c in steps.invoke.call_args_list]
        assert called == ["start", "s1", "s2"], "失败之后的步骤不能执行"
        notifier.publish.assert_awaited_once_with(task.id, TaskStatus.FAILED, result=None, error="s2 exploded")

    @pytest.mark.asyncio
    async def test_success_merges_deltas(self):
        store = TaskStore()
        notifier = AsyncMock()
        _, plan = _plan(_chain("s1", "s2"))
        deltas = {"s1": {"k": 1, "a": "first"}, "s2": {"k": 2}}

        steps = _step_executor(lambda kind, name, state: StepOutcome(delta=deltas.get(name, {})))
        task = store.create_task(TaskType.DEBUG_FLOW, {"text": "Acme"})
        result = await WorkflowExecutor(store, steps, notifier=notifier).execute(task, plan)

        assert result.status == TaskStatus.COMPLETED
        assert result.result == {"brief": {"text": "Acme"}, "task_id": task.id, "k": 2, "a": "first"}
        assert store.get_task(task.id).result == result.result
        assert _checkpoint_steps(store, task.id) == [
            "start", "start_completed", "s1", "s1_completed", "s2", "s2_completed", "end", "end_completed",
        ]
        notifier.publish.assert_awaited_once_with(task.id, TaskStatus.COMPLETED, result=result.result, error=None)

    @pytest.mark.asyncio
    async def test_each_step_sees_accumulated_state(self):
        store = TaskStore()
        _, plan = _plan(_chain("s1", "s2"))
        seen = {}

        def fake_invoke(kind, name, state):
            seen[name] = dict(state)
            return StepOutcome(delta={name: True})

        task = store.create_task(TaskType.DEBUG_FLOW)
        await WorkflowExecutor(store, _step_executor(fake_invoke)).execute(task, plan)

        assert "s1" not in seen["s1"]
        assert seen["s2"]["s1"] is True
        assert seen["end"]["s2"] is True
        # 前检查点记录的就是步骤执行前的状态
        pre_s2 = next(c for c in store.get_task(task.id).checkpoints if c.step == "s2")
        assert pre_s2.data["state"] == seen["s2"]

    @pytest.mark.asyncio
    async def test_raised_exception_is_a_step_failure(self):
        store = TaskStore()
        _, plan = _plan(_chain("s1"))

        def fake_invoke(kind, name, state):
            if name == "s1":
                raise ValueError("bad payload")
            return StepOutcome()

        task = store.create_task(TaskType.DEBUG_FLOW)
        result = await WorkflowExecutor(store, _step_executor(fake_invoke)).execute(task, plan)

        assert result.status == TaskStatus.FAILED
        assert store.get_task(task.id).error == "bad payload"
        assert "s1_completed" not in _checkpoint_steps(store, task.id)

    @pytest.mark.asyncio
    async def test_cancellation_between_steps(self):
        """s1 执行期间请求取消：s1 正常完成，s2 不再开始。"""
        store = TaskStore()
        notifier = AsyncMock()
        _, plan = _plan(_chain("s1", "s2"))
        token = asyncio.Event()

        def fake_invoke(kind, name, state):
            if name == "s1":
                token.set()
            return StepOutcome(delta={name: True})

        steps = _step_executor(fake_invoke)
        task = store.create_task(TaskType.DEBUG_FLOW)
        result = await WorkflowExecutor(store, steps, notifier=notifier).execute(task, plan, cancel_event=token)

        assert result.status == TaskStatus.CANCELLED
        assert result.executed_steps == ["start", "s1"]
        assert store.get_task(task.id).status == TaskStatus.CANCELLED
        assert store.get_task(task.id).result is None
        assert "s1_completed" in _checkpoint_steps(store, task.id)
        assert "s2" not in _checkpoint_steps(store, task.id)
        notifier.publish.assert_awaited_once_with(task.id, TaskStatus.CANCELLED, result=None, error=None)

    @pytest.mark.asyncio
    async def test_external_cancel_through_store(self):
        store = TaskStore()
        _, plan = _plan(_chain("s1", "s2"))
        task = store.create_task(TaskType.DEBUG_FLOW)

        def fake_invoke(kind, name, state):
            if name == "s1":
                store.cancel_task(task.id)
            return StepOutcome()

        result = await WorkflowExecutor(store, _step_executor(fake_invoke)).execute(task, plan)
        assert result.status == TaskStatus.CANCELLED
        assert "s2" not in _checkpoint_steps(store, task.id)

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self):
        store = TaskStore()
        notifier = AsyncMock()
        _, plan = _plan(_chain("s1"))
        steps = _step_executor(lambda *_: StepOutcome())
        task = store.create_task(TaskType.DEBUG_FLOW)
        store.cancel_task(task.id)

        result = await WorkflowExecutor(store, steps, notifier=notifier).execute(task, plan)

        assert result.status == TaskStatus.CANCELLED
        steps.invoke.assert_not_called()
        assert store.get_task(task.id).checkpoints == []
        notifier.publish.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_task(self):
        store = TaskStore()
        other = TaskStore()
        notifier = AsyncMock()
        _, plan = _plan(_chain("s1"))
        task = other.create_task(TaskType.DEBUG_FLOW)

        result = await WorkflowExecutor(store, EchoStepExecutor(), notifier=notifier).execute(task, plan)
        assert result.status == TaskStatus.PENDING
        notifier.publish.assert_not_called()

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_fail_task(self):
        store = TaskStore()
        notifier = AsyncMock()
        notifier.publish = AsyncMock(side_effect=RuntimeError("bus down"))
        _, plan = _plan(_chain("s1"))
        task = store.create_task(TaskType.DEBUG_FLOW)

        result = await WorkflowExecutor(store, EchoStepExecutor(), notifier=notifier).execute(task, plan)

        assert result.status == TaskStatus.COMPLETED
        assert store.get_task(task.id).status == TaskStatus.COMPLETED
        notifier.publish.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_events_emitted(self):
        store = TaskStore()
        events = []
        _, plan = _plan(_chain("s1"))
        task = store.create_task(TaskType.DEBUG_FLOW)

        await WorkflowExecutor(store, EchoStepExecutor(), on_event=lambda e, d: events.append(e)).execute(task, plan)

        assert events[0] == "task_started"
        assert events[-1] == "task_finished"
        assert events.count("step_started") == events.count("step_completed") == 3

    @pytest.mark.asyncio
    async def test_failing_event_callback_does_not_strand_task(self):
        """UI 回调在任意事件上抛异常，任务仍然正常结束，Notifier 仍然被调用一次。"""
        store = TaskStore()
        notifier = AsyncMock()
        _, plan = _plan(_chain("s1"))
        task = store.create_task(TaskType.DEBUG_FLOW)

        def broken_ui(event, data):
            raise RuntimeError(f"ui crashed on {event}")

        result = await WorkflowExecutor(store, EchoStepExecutor(), notifier=notifier, on_event=broken_ui).execute(task, plan)

        assert result.status == TaskStatus.COMPLETED
        assert store.get_task(task.id).status == TaskStatus.COMPLETED
        assert "s1_completed" in _checkpoint_steps(store, task.id)
        notifier.publish.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failing_event_callback_on_step_failure(self):
        store = TaskStore()
        notifier = AsyncMock()
        _, plan = _plan(_chain("s1"))
        task = store.create_task(TaskType.DEBUG_FLOW)

        def broken_ui(event, data):
            raise RuntimeError("ui down")

        steps = _step_executor(lambda kind, name, state: StepOutcome(error="nope") if name == "s1" else StepOutcome())
        result = await WorkflowExecutor(store, steps, notifier=notifier, on_event=broken_ui).execute(task, plan)

        assert result.status == TaskStatus.FAILED
        assert store.get_task(task.id).error == "nope"
        notifier.publish.assert_awaited_once_with(task.id, TaskStatus.FAILED, result=None, error="nope")


# ======================================================================
# Test 2: 并发波次模式
# ======================================================================


class TestParallelWaves:

    @pytest.mark.asyncio
    async def test_siblings_run_concurrently_and_before_dependents(self):
        store = TaskStore()
        graph, plan = _plan(_fan())
        timeline: list[tuple[str, str]] = []
        running = 0
        peak = 0

        async def fake_invoke(kind, name, state):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            timeline.append(("start", name))
            await asyncio.sleep(0.02)
            timeline.append(("end", name))
            running -= 1
            return StepOutcome(delta={name: True})

        waves = []
        executor = WorkflowExecutor(
            store, _step_executor(fake_invoke), parallel=True,
            on_event=lambda e, d: waves.append(d["nodes"]) if e == "wave" else None,
        )
        task = store.create_task(TaskType.DEBUG_FLOW)
        result = await executor.execute(task, plan, graph=graph)

        assert result.status == TaskStatus.COMPLETED
        assert peak == 2, "a 与 b 应当并发执行"
        assert [set(w) for w in waves] == [{"start"}, {"a", "b"}, {"c"}]
        c_start = timeline.index(("start", "c"))
        assert timeline.index(("end", "a")) < c_start
        assert timeline.index(("end", "b")) < c_start

    @pytest.mark.asyncio
    async def test_wave_merge_is_ordered_by_node_id(self):
        store = TaskStore()
        graph, plan = _plan(_fan())
        steps = _step_executor(lambda kind, name, state: StepOutcome(delta={"k": name} if name in ("a", "b") else {}))
        task = store.create_task(TaskType.DEBUG_FLOW)

        result = await WorkflowExecutor(store, steps, parallel=True).execute(task, plan, graph=graph)
        assert result.result["k"] == "b"

    @pytest.mark.asyncio
    async def test_failure_in_wave_fails_task(self):
        store = TaskStore()
        notifier = AsyncMock()
        graph, plan = _plan(_fan())

        def fake_invoke(kind, name, state):
            return StepOutcome(error="a failed") if name == "a" else StepOutcome()

        steps = _step_executor(fake_invoke)
        task = store.create_task(TaskType.DEBUG_FLOW)
        result = await WorkflowExecutor(store, steps, notifier=notifier, parallel=True).execute(task, plan, graph=graph)

        assert result.status == TaskStatus.FAILED
        assert "c" not in [c.args[1] for c in steps.invoke.call_args_list]
        assert store.get_task(task.id).checkpoints[-1].data["step"] == "a"
        notifier.publish.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_max_parallel_caps_wave_size(self):
        store = TaskStore()
        steps = [StepDescriptor(id="start", kind=NodeKind.START, name="Start")]
        steps += [StepDescriptor(id=f"w{i}", kind=NodeKind.PROCESS, name=f"w{i}", dependencies=["start"]) for i in range(5)]
        graph, plan = _plan(steps)
        waves = []

        executor = WorkflowExecutor(
            store, EchoStepExecutor(), parallel=True, max_parallel=2,
            on_event=lambda e, d: waves.append(d["nodes"]) if e == "wave" else None,
        )
        task = store.create_task(TaskType.DEBUG_FLOW)
        result = await executor.execute(task, plan, graph=graph)

        assert result.status == TaskStatus.COMPLETED
        assert max(len(w) for w in waves) == 2
        assert sorted(n for w in waves for n in w) == sorted(plan.step_ids())


# ======================================================================
# Test 3: Step Executors
# ======================================================================


class TestStepExecutors:

    @pytest.mark.asyncio
    async def test_echo_logo_family(self):
        echo = EchoStepExecutor()
        outcome = await echo.invoke(NodeKind.PROCESS, "analyze_brief", {"brief": {"text": "Acme", "style": "modern"}})
        assert outcome.delta == {"analysis": {"subject": "Acme", "style": "modern"}}

        colors = await echo.invoke(NodeKind.PROCESS, "generate_colors", {})
        assert colors.delta["colors"]["primary"] == "#3498db"

    @pytest.mark.asyncio
    async def test_echo_unknown_step_is_empty(self):
        outcome = await EchoStepExecutor().invoke(NodeKind.PROCESS, "mystery", {})
        assert outcome.ok and outcome.delta == {}

    @pytest.mark.asyncio
    async def test_handler_executor_supports_async_handlers(self):
        async def handler(state):
            return {"seen": state["x"]}

        executor = HandlerStepExecutor()
        executor.register("custom", handler)
        outcome = await executor.invoke(NodeKind.PROCESS, "custom", {"x": 7})
        assert outcome.delta == {"seen": 7}

    @pytest.mark.asyncio
    async def test_timeout_wrapper(self):
        async def sleepy(kind, name, state):
            await asyncio.sleep(1.0)
            return StepOutcome()

        slow = _step_executor(sleepy)
        outcome = await TimeoutStepExecutor(slow, timeout=0.05).invoke(NodeKind.PROCESS, "slow_step", {})
        assert not outcome.ok
        assert "timed out" in outcome.error

    @pytest.mark.asyncio
    async def test_timeout_wrapper_passes_through(self):
        outcome = await TimeoutStepExecutor(EchoStepExecutor(), timeout=1.0).invoke(NodeKind.PROCESS, "design_architecture", {})
        assert outcome.ok and "architecture" in outcome.delta

    @pytest.mark.asyncio
    async def test_llm_executor_returns_model_object(self):
        llm = MagicMock()
        llm.complete_object = AsyncMock(return_value={"logo": {"shape": "circle"}})
        outcome = await LLMStepExecutor(llm_client=llm).invoke(NodeKind.PROCESS, "create_logo", {"brief": {}})

        assert outcome.delta == {"logo": {"shape": "circle"}}
        messages = llm.complete_object.call_args.args[0]
        assert "create_logo" in messages[-1]["content"]

    @pytest.mark.asyncio
    async def test_llm_executor_skips_start_and_end(self):
        llm = MagicMock()
        llm.complete_object = AsyncMock()
        executor = LLMStepExecutor(llm_client=llm)
        assert (await executor.invoke(NodeKind.START, "start", {})).delta == {}
        assert (await executor.invoke(NodeKind.END, "end", {})).delta == {}
        llm.complete_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_llm_executor_turns_bad_output_into_error(self):
        llm = MagicMock()
        llm.complete_object = AsyncMock(side_effect=ValueError("expected a JSON object, got list"))
        outcome = await LLMStepExecutor(llm_client=llm).invoke(NodeKind.PROCESS, "create_logo", {})
        assert not outcome.ok
        assert outcome.error == "Step 'create_logo': expected a JSON object, got list"

    @pytest.mark.asyncio
    async def test_llm_client_requests_json_mode(self):
        """complete_object 以 JSON 模式调用模型，并把回复解析为 dict。"""
        client = LLMClient(base_url="http://localhost:1/v1", api_key="test-key", model="test-model")
        reply = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content='{"colors": ["#fff"]}'))])
        client._client = MagicMock()
        client._client.chat.completions.create = AsyncMock(return_value=reply)

        delta = await client.complete_object([{"role": "user", "content": "hi"}])

        assert delta == {"colors": ["#fff"]}
        kwargs = client._client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["response_format"] == {"type": "json_object"}

    def test_parse_object(self):
        assert LLMClient.parse_object('Here:\n```json\n{"a": 1}\n```') == {"a": 1}
        assert LLMClient.parse_object('  {"b": 2} ') == {"b": 2}
        assert LLMClient.parse_object('Sure! {"c": {"d": 3}} Hope that helps.') == {"c": {"d": 3}}
        with pytest.raises(ValueError, match="expected a JSON object"):
            LLMClient.parse_object('["not", "a", "dict"]')
        with pytest.raises(ValueError, match="no JSON object"):
            LLMClient.parse_object("no json here")


# ======================================================================
# Test 4: WorkflowService
# ======================================================================


class TestWorkflowService:

    @pytest.mark.asyncio
    async def test_submit_returns_before_completion(self):
        store = TaskStore()
        broadcast = BroadcastNotifier()
        queue = broadcast.subscribe_queue()
        service = WorkflowService(store, EchoStepExecutor(), notifier=broadcast)

        submitted = await service.submit(TaskType.GENERATE_LOGO, {"text": "Acme", "style": "modern"}, session_id="s1")
        assert submitted.status == TaskStatus.PENDING

        result = await service.wait(submitted.task_id)
        assert result.status == TaskStatus.COMPLETED
        assert set(result.result) >= {"brief", "analysis", "concepts", "logo", "colors"}
        assert result.result["analysis"]["subject"] == "Acme"

        update = await asyncio.wait_for(queue.get(), timeout=1.0)
        assert update.task_id == submitted.task_id and update.status == TaskStatus.COMPLETED
        assert len(broadcast.history) == 1

        task = service.get_task(submitted.task_id)
        assert task.session_id == "s1"
        assert task.checkpoints[0].step == "task_planning"
        planned = [s["node_id"] for s in task.checkpoints[0].data["execution_plan"]["steps"]]
        assert planned == ["start", "analyze_brief", "generate_concepts", "create_logo", "generate_colors", "end"]

    @pytest.mark.asyncio
    async def test_task_type_selects_family(self):
        service = WorkflowService(TaskStore(), EchoStepExecutor())
        submitted = await service.submit("generate_code", {"language": "javascript"})
        result = await service.wait(submitted.task_id)
        assert result.result["code"]["language"] == "javascript"
        assert result.result["tests"]["passed"] is True

    @pytest.mark.asyncio
    async def test_explicit_family_wins(self):
        brief = WorkflowService.brief_for(TaskType.GENERATE_LOGO, {"taskFamily": "code"})
        assert brief["taskFamily"] == "code"
        assert WorkflowService.brief_for(TaskType.DEBUG_FLOW, {}) == {}

    @pytest.mark.asyncio
    async def test_invalid_task_type_creates_nothing(self):
        store = TaskStore()
        service = WorkflowService(store, EchoStepExecutor())
        with pytest.raises(StructuralError):
            await service.submit("not_a_task", {})
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_cancel_before_run(self):
        store = TaskStore()
        notifier = AsyncMock()
        service = WorkflowService(store, EchoStepExecutor(), notifier=notifier)

        submitted = await service.submit(TaskType.DEBUG_FLOW, {"text": "x"})
        service.cancel(submitted.task_id)
        result = await service.wait(submitted.task_id)

        assert result.status == TaskStatus.CANCELLED
        assert store.get_task(submitted.task_id).status == TaskStatus.CANCELLED
        notifier.publish.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_shutdown_cancels_in_flight_runs(self):
        store = TaskStore()
        service = WorkflowService(store, EchoStepExecutor(delay=1.0), notifier=CompositeNotifier([]))

        submitted = await service.submit(TaskType.GENERATE_LOGO, {})
        await asyncio.sleep(0.05)
        assert store.get_task(submitted.task_id).status == TaskStatus.PROCESSING

        await service.shutdown()
        assert store.get_task(submitted.task_id).status == TaskStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_wait_unknown_id(self):
        service = WorkflowService(TaskStore(), EchoStepExecutor())
        assert await service.wait("missing") is None

    @pytest.mark.asyncio
    async def test_runner_released_after_wait(self):
        """wait() 读取结果后释放执行协程，服务不会无限持有已结束的任务。"""
        service = WorkflowService(TaskStore(), EchoStepExecutor())
        submitted = await service.submit(TaskType.DEBUG_FLOW, {})

        assert (await service.wait(submitted.task_id)).status == TaskStatus.COMPLETED
        assert submitted.task_id not in service._runners
        assert await service.wait(submitted.task_id) is None
        assert service.get_task(submitted.task_id).status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cleanup_prunes_unwaited_runners(self):
        store = TaskStore()
        service = WorkflowService(store, EchoStepExecutor())
        ids = [(await service.submit(TaskType.DEBUG_FLOW, {})).task_id for _ in range(3)]
        await asyncio.gather(*service._runners.values())

        assert service.cleanup_tasks(max_age=-1) == 3
        assert service._runners == {}
        assert len(store) == 0
        assert all([await service.wait(tid) is None for tid in ids])

    @pytest.mark.asyncio
    async def test_broadcast_history_is_bounded(self):
        broadcast = BroadcastNotifier(history_size=3)
        for i in range(5):
            await broadcast.publish(f"t{i}", TaskStatus.COMPLETED)
        assert [u.task_id for u in broadcast.history] == ["t2", "t3", "t4"]


# ======================================================================
# Test 5: 命令行辅助函数
# ======================================================================


class TestCli:

    def test_parse_brief(self):
        from main import parse_brief

        assert parse_brief(["logo", "text=Acme", "style=modern"]) == {
            "taskFamily": "logo", "text": "Acme", "style": "modern",
        }
        assert parse_brief(["a=b=c"]) == {"a": "b=c"}
        assert parse_brief([]) == {}

    @pytest.mark.asyncio
    async def test_checkpoint_tree_groups_steps(self):
        from main import _checkpoint_tree

        store = TaskStore()
        _, plan = _plan(_chain("s1"))
        task = store.create_task(TaskType.DEBUG_FLOW)
        steps = _step_executor(lambda kind, name, state: StepOutcome(error="nope") if name == "s1" else StepOutcome())
        await WorkflowExecutor(store, steps).execute(task, plan)

        tree = _checkpoint_tree(store.get_task(task.id))
        assert [str(child.label) for child in tree.children] == ["[cyan]start[/cyan]", "[cyan]s1[/cyan]"]
        assert len(tree.children[0].children) == 1        # start_completed
        assert "failed: nope" in str(tree.children[1].children[0].label)
