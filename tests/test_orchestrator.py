import asyncio
import json

import pytest

from inputforge.core.ai.gateway import mock_plan_payload
from inputforge.core.ai.orchestrator import AnalysisOrchestrator, AnalysisState
from inputforge.core.bundle import ProjectBundle
from inputforge.core.errors import ValidationError, gateway_error
from inputforge.core.model import AnalysisResult, InputItem, Milestone, PlanTree

PLAN_JSON = json.dumps(mock_plan_payload("Demo"))


class ScriptedGateway:
    """Each call runs the next behaviour: async fn(request, on_progress) -> str."""

    def __init__(self, *behaviours):
        self._behaviours = list(behaviours)
        self.requests = []

    async def submit(self, request, *, on_progress=None):
        self.requests.append(request)
        behaviour = self._behaviours[min(len(self.requests), len(self._behaviours)) - 1]
        return await behaviour(request, on_progress)


def returns(text):
    async def behaviour(request, on_progress):
        if on_progress is not None:
            on_progress(0.5)
        return text

    return behaviour


def raises(err):
    async def behaviour(request, on_progress):
        raise err

    return behaviour


def _bundle(with_input=True):
    b = ProjectBundle(name="Demo")
    if with_input:
        b.add_input(InputItem(id="i1", type="text", added_at=b.created_at, text_content="plan a launch"))
    return b


def test_successful_run_appends_snapshot():
    async def scenario():
        states = []
        orch = AnalysisOrchestrator(ScriptedGateway(returns(PLAN_JSON)), on_state=states.append)
        bundle = _bundle()
        orch.submit(bundle)
        snap = await orch.wait()
        return orch, bundle, snap, states

    orch, bundle, snap, states = asyncio.run(scenario())
    assert snap is not None and snap.version_number == 1
    assert snap.input_refs == ("i1",)
    assert bundle.current_analysis == snap.to_result()
    assert orch.state.kind == "completed"
    assert [s.kind for s in states] == ["analyzing", "analyzing", "completed"]
    assert states[1].progress == 0.5


def test_no_inputs_is_validation_error():
    async def scenario():
        orch = AnalysisOrchestrator(ScriptedGateway(returns(PLAN_JSON)))
        with pytest.raises(ValidationError) as ei:
            orch.submit(_bundle(with_input=False))
        return orch, ei.value

    orch, err = asyncio.run(scenario())
    assert err.code == "E_NO_INPUTS"
    assert orch.state.kind == "error"


def test_gateway_error_then_dismiss():
    async def scenario():
        gw = ScriptedGateway(raises(gateway_error("server", "Server error (503)", status_code=503)))
        orch = AnalysisOrchestrator(gw)
        bundle = _bundle()
        orch.submit(bundle)
        assert await orch.wait() is None
        return orch, bundle

    orch, bundle = asyncio.run(scenario())
    assert orch.state.kind == "error"
    assert orch.state.message == "Server error (503)"
    assert orch.state.error.code == "E_GATEWAY_SERVER"
    assert len(bundle.ledger) == 0
    orch.dismiss_error()
    assert orch.state.kind == "idle"


def test_unparseable_reply_is_error_state():
    async def scenario():
        orch = AnalysisOrchestrator(ScriptedGateway(returns("I am not JSON")))
        bundle = _bundle()
        orch.submit(bundle)
        await orch.wait()
        return orch, bundle

    orch, bundle = asyncio.run(scenario())
    assert orch.state.kind == "error"
    assert "Could not parse" in orch.state.message
    assert bundle.current_analysis is None


def test_gateway_cancelled_kind_returns_to_idle():
    async def scenario():
        orch = AnalysisOrchestrator(ScriptedGateway(raises(gateway_error("cancelled", "stopped"))))
        orch.submit(_bundle())
        await orch.wait()
        return orch

    assert asyncio.run(scenario()).state.kind == "idle"


def test_cancel_leaves_no_partial_state():
    async def scenario():
        release = asyncio.Event()
        captured = {}

        async def slow(request, on_progress):
            captured["progress"] = on_progress
            await release.wait()
            return PLAN_JSON

        states = []
        orch = AnalysisOrchestrator(ScriptedGateway(slow), on_state=states.append)
        bundle = _bundle()
        prior = bundle.set_analysis_result(AnalysisResult(plan=PlanTree(description="old")))
        task = orch.submit(bundle)
        await asyncio.sleep(0)
        orch.cancel()
        cut = len(states)
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        captured["progress"](0.8)
        return orch, bundle, prior, task, states[cut - 1 :]

    orch, bundle, prior, task, after_cancel = asyncio.run(scenario())
    assert after_cancel == [AnalysisState()]
    assert task.cancelled()
    assert orch.state.kind == "idle"
    assert [s.version_number for s in bundle.ledger] == [1]
    assert bundle.current_analysis == prior.to_result()


def test_second_submit_supersedes_first():
    async def scenario():
        release = asyncio.Event()
        captured = {}

        async def stubborn(request, on_progress):
            # Ignores cancellation and reports late, like a backend that cannot be interrupted.
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                pass
            on_progress(0.99)
            captured["first_done"] = True
            return PLAN_JSON

        async def gated(request, on_progress):
            await release.wait()
            return json.dumps({"description": "second", "milestones": [{"title": "Only", "deliverables": []}]})

        states = []
        orch = AnalysisOrchestrator(ScriptedGateway(stubborn, gated), on_state=states.append)
        bundle = _bundle()
        bundle.set_analysis_result(AnalysisResult(plan=PlanTree(description="prior")))

        first = orch.submit(bundle)
        await asyncio.sleep(0)
        orch.submit(bundle)
        cut = len(states)
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        first_result = await first
        state_while_second_runs = orch.state
        after_second_submit = states[cut:]
        release.set()
        snap = await orch.wait()
        return bundle, snap, first_result, state_while_second_runs, after_second_submit, captured

    bundle, snap, first_result, mid_state, late_states, captured = asyncio.run(scenario())
    # The first run reported 0.99 after being superseded; nothing reached the listener.
    assert late_states == []
    assert captured["first_done"] is True
    assert first_result is None
    assert mid_state == AnalysisState(kind="analyzing", progress=0.0)
    assert snap.version_number == 2
    assert [s.version_number for s in bundle.ledger] == [1, 2]
    assert bundle.ledger.latest().plan == PlanTree(description="second", milestones=(Milestone(title="Only"),))


def test_versions_stay_monotonic_over_many_runs():
    async def scenario():
        orch = AnalysisOrchestrator(ScriptedGateway(returns(PLAN_JSON)))
        bundle = _bundle()
        numbers = []
        for _ in range(4):
            orch.submit(bundle)
            numbers.append((await orch.wait()).version_number)
        return numbers

    assert asyncio.run(scenario()) == [1, 2, 3, 4]
