"""
Tests for the Tool Dispatcher: escalation side effects, no-op tools,
unknown tools and per-call failure isolation.
"""

from unittest.mock import MagicMock

import pytest

from transitcare.engine.enums import Severity
from transitcare.engine.tools import ToolCall, ToolDispatcher


@pytest.fixture
def dispatcher(escalations):
    return ToolDispatcher(escalations)


class TestDispatch:

    def test_raise_flag_creates_task(self, dispatcher, escalations):
        results = dispatcher.dispatch(
            [ToolCall(name="raise_flag", parameters={
                "flagType": "HF_WEIGHT_GAIN", "severity": "HIGH", "rationale": "Gained 3 pounds",
            })],
            episode_id="EP-1",
        )
        assert results[0].success is True
        task = escalations.get(results[0].task_id)
        assert task.severity == "HIGH"
        assert task.priority == "HIGH"
        assert task.reason_codes == ["HF_WEIGHT_GAIN", "Gained 3 pounds"]

    def test_raise_flag_defaults_to_moderate(self, dispatcher, escalations):
        results = dispatcher.dispatch(
            [ToolCall(name="raise_flag", parameters={"severity": "NONE"})], episode_id="EP-1",
        )
        task = escalations.get(results[0].task_id)
        assert task.severity == Severity.MODERATE.value
        assert task.reason_codes == ["AGENT_FLAG"]

    def test_handoff_is_critical(self, dispatcher, escalations, clock):
        results = dispatcher.dispatch(
            [ToolCall(name="handoff_to_nurse", parameters={"reason": "Chest pain", "flagType": "HF_CHEST_PAIN"})],
            episode_id="EP-2",
        )
        task = escalations.get(results[0].task_id)
        assert task.severity == "CRITICAL"
        assert task.priority == "URGENT"
        assert (task.sla_due_at - task.created_at).total_seconds() == 30 * 60

    @pytest.mark.parametrize("name", ["ask_more", "log_checkin"])
    def test_no_effect_tools(self, dispatcher, escalations, name):
        results = dispatcher.dispatch([ToolCall(name=name)], episode_id="EP-3")
        assert results[0].success is True
        assert results[0].task_id is None
        assert escalations.list_open() == []

    def test_unknown_tool_fails_without_side_effects(self, dispatcher, escalations):
        results = dispatcher.dispatch([ToolCall(name="book_ambulance")], episode_id="EP-4")
        assert results[0].success is False
        assert results[0].error == "unknown tool book_ambulance"
        assert escalations.list_open() == []

    def test_failure_isolated_per_call(self):
        manager = MagicMock()
        manager.create.side_effect = [RuntimeError("db down"), MagicMock(id="task-2")]
        dispatcher = ToolDispatcher(manager)
        results = dispatcher.dispatch(
            [
                ToolCall(name="raise_flag", parameters={"severity": "HIGH"}),
                ToolCall(name="raise_flag", parameters={"severity": "LOW"}),
            ],
            episode_id="EP-5",
        )
        assert [r.success for r in results] == [False, True]
        assert results[0].error == "db down"
        assert results[1].task_id == "task-2"

    def test_interaction_id_linked(self, dispatcher, escalations, recorder):
        interaction = recorder.start_interaction("PT-1", "EP-6")
        results = dispatcher.dispatch(
            [ToolCall(name="raise_flag", parameters={"severity": "LOW"})],
            episode_id="EP-6",
            interaction_id=interaction.id,
        )
        assert escalations.get(results[0].task_id).interaction_id == interaction.id
