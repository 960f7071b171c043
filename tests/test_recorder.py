"""
Tests for the Interaction Recorder: gap-free sequence numbers (including
under concurrent appends), history windows, hint metadata and patient context.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from transitcare.engine.enums import InteractionStatus, MessageRole
from transitcare.engine.errors import InteractionNotFoundError
from transitcare.engine.signals import AskMoreHint, FlagHint


@pytest.fixture
def interaction(recorder):
    return recorder.start_interaction("PT-1", "EP-1", rules_snapshot={"red_flags": []})


class TestSequence:

    def test_sequence_starts_at_one_and_increments(self, recorder, interaction):
        first = recorder.append_message(interaction.id, MessageRole.USER, "hello")
        second = recorder.append_message(interaction.id, MessageRole.ASSISTANT, "hi there")
        assert (first.sequence_number, second.sequence_number) == (1, 2)

    def test_sequences_are_per_interaction(self, recorder, interaction):
        other = recorder.start_interaction("PT-2", "EP-2")
        recorder.append_message(interaction.id, MessageRole.USER, "a")
        msg = recorder.append_message(other.id, MessageRole.USER, "b")
        assert msg.sequence_number == 1

    def test_unknown_interaction(self, recorder):
        with pytest.raises(InteractionNotFoundError):
            recorder.append_message("missing", MessageRole.USER, "hello")

    def test_concurrent_appends_are_gap_free(self, recorder, interaction):
        def append(i):
            return recorder.append_message(interaction.id, MessageRole.USER, f"message {i}")

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(append, range(50)))

        numbers = [m.sequence_number for m in recorder.messages(interaction.id)]
        assert numbers == list(range(1, 51))
        assert recorder.get_interaction(interaction.id).last_sequence == 50


class TestHistory:

    def test_history_window_oldest_first(self, recorder, interaction):
        for i in range(12):
            role = MessageRole.USER if i % 2 == 0 else MessageRole.ASSISTANT
            recorder.append_message(interaction.id, role, f"m{i}")
        history = recorder.history(interaction.id, limit=10)
        assert [t.content for t in history] == [f"m{i}" for i in range(2, 12)]
        assert history[0].role == MessageRole.USER

    def test_tool_metadata_round_trip(self, recorder, interaction):
        recorder.append_message(
            interaction.id, MessageRole.ASSISTANT, "A nurse will call you.",
            tool_name="handoff_to_nurse",
            tool_args=[{"name": "handoff_to_nurse", "parameters": {"reason": "chest pain"}}],
            tool_results=[{"tool": "handoff_to_nurse", "success": True}],
        )
        message = recorder.messages(interaction.id)[0]
        assert message.tool_name == "handoff_to_nurse"
        assert message.tool_results == [{"tool": "handoff_to_nurse", "success": True}]


class TestLastHint:

    def test_latest_hint_returned(self, recorder, interaction):
        recorder.append_message(
            interaction.id, MessageRole.ASSISTANT, "How are you?",
            decision_hint=AskMoreHint(questions=["How are you?"]).model_dump(mode="json"),
        )
        recorder.append_message(interaction.id, MessageRole.USER, "chest pain")
        recorder.append_message(
            interaction.id, MessageRole.ASSISTANT, "Calling a nurse.",
            decision_hint=FlagHint(flag_type="HF_CHEST_PAIN", severity="CRITICAL").model_dump(mode="json"),
        )
        hint = recorder.last_hint(interaction.id)
        assert isinstance(hint, FlagHint)
        assert hint.flag_type == "HF_CHEST_PAIN"

    def test_malformed_hint_is_none(self, recorder, interaction):
        recorder.append_message(
            interaction.id, MessageRole.ASSISTANT, "?", decision_hint={"action": "DANCE"},
        )
        assert recorder.last_hint(interaction.id) is None

    def test_no_hint(self, recorder, interaction):
        recorder.append_message(interaction.id, MessageRole.USER, "hello")
        assert recorder.last_hint(interaction.id) is None


class TestPatientContext:

    def test_finish_and_prior_summaries(self, recorder, interaction):
        recorder.finish_interaction(interaction.id, InteractionStatus.COMPLETED, "Weight stable")
        finished = recorder.get_interaction(interaction.id)
        assert finished.status == "COMPLETED"
        assert finished.completed_at is not None

        current = recorder.start_interaction("PT-1", "EP-1")
        assert recorder.prior_summaries("PT-1", exclude_interaction_id=current.id) == ["Weight stable"]
        assert recorder.interaction_count("PT-1") == 2

    def test_get_unknown_interaction(self, recorder):
        with pytest.raises(InteractionNotFoundError):
            recorder.get_interaction("missing")
