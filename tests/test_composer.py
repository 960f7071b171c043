"""
Tests for the Response Composer: forced escalation replies, the generative
path with Gemini function calling, contract enforcement and template fallbacks.
"""

import pytest

from transitcare.engine.composer import (
    CLOSE_TEMPLATE,
    CRITICAL_TEMPLATE,
    FLAG_TEMPLATE,
    HIGH_TEMPLATE,
    CompositionContext,
    ForcedReply,
    GenerativeComposer,
    GenerativeRequest,
    contact_context,
    describe_previous,
    fallback_reply,
    fallback_summary,
    parse_composer_response,
    select_strategy,
)
from transitcare.engine.enums import ConditionCode, EducationTier, MessageRole, Severity
from transitcare.engine.errors import ComposerContractError
from transitcare.engine.signals import AskMoreHint, CloseHint, ConversationTurn, FlagHint

from tests.conftest import function_call, llm_response, make_llm_client


def make_ctx(hint, tier=EducationTier.MEDIUM, history=None):
    return CompositionContext(
        condition=ConditionCode.HF,
        education_tier=tier,
        patient_text="I feel okay I guess",
        hint=hint,
        history=history or [],
        protocol_patterns=["chest pain", "gained weight"],
        contact="FIRST CONTACT: introduce yourself.",
    )


# ────────────────────────────── Strategy ──────────────────────────────


class TestSelectStrategy:

    def test_critical_flag_forces_handoff(self):
        hint = FlagHint(flag_type="HF_CHEST_PAIN", severity=Severity.CRITICAL, reason="Chest pain")
        strategy = select_strategy(hint)
        assert isinstance(strategy, ForcedReply)
        assert strategy.text == CRITICAL_TEMPLATE
        assert "30 minutes" in strategy.text
        assert "911" in strategy.text
        assert len(strategy.tool_calls) == 1
        call = strategy.tool_calls[0]
        assert call.name == "handoff_to_nurse"
        assert call.parameters == {"reason": "Chest pain", "flagType": "HF_CHEST_PAIN"}

    def test_high_flag_raises_flag(self):
        hint = FlagHint(flag_type="HF_WEIGHT_GAIN", severity=Severity.HIGH, reason="Weight gain")
        strategy = select_strategy(hint)
        assert strategy.text == HIGH_TEMPLATE
        assert "2 hours" in strategy.text
        assert strategy.tool_calls[0].name == "raise_flag"
        assert strategy.tool_calls[0].parameters == {
            "flagType": "HF_WEIGHT_GAIN", "severity": "HIGH", "rationale": "Weight gain",
        }

    def test_moderate_flag_generic_template(self):
        hint = FlagHint(flag_type="HF_SYMPTOM_CHANGE", severity=Severity.MODERATE)
        strategy = select_strategy(hint)
        assert strategy.text == FLAG_TEMPLATE
        assert strategy.tool_calls[0].parameters["severity"] == "MODERATE"

    @pytest.mark.parametrize("hint", [CloseHint(), AskMoreHint(questions=["How are you?"])])
    def test_non_flags_go_generative(self, hint):
        assert select_strategy(hint) == GenerativeRequest(hint=hint)


class TestFallbackReply:

    def test_close(self):
        assert fallback_reply(CloseHint()) == CLOSE_TEMPLATE

    def test_ask_more_includes_questions(self):
        reply = fallback_reply(AskMoreHint(questions=["How many pounds have you gained?"]))
        assert reply.endswith("How many pounds have you gained?")

    def test_ask_more_without_questions_still_asks(self):
        assert "How are you feeling today?" in fallback_reply(AskMoreHint())


# ────────────────────────────── Response parsing ──────────────────────────────


class TestParseComposerResponse:

    def test_text_and_tool_calls(self):
        reply = parse_composer_response(llm_response(
            text="Glad you're doing well!",
            function_calls=[function_call("log_checkin", result="stable", summary="All normal")],
        ))
        assert reply.text == "Glad you're doing well!"
        assert reply.tool_calls[0].name == "log_checkin"
        assert reply.tool_calls[0].parameters == {"result": "stable", "summary": "All normal"}

    def test_unknown_tool_dropped(self):
        reply = parse_composer_response(llm_response(
            text="Okay.",
            function_calls=[function_call("prescribe_medication", drug="x")],
        ))
        assert reply.tool_calls == []

    def test_tool_calls_without_text_violate_contract(self):
        with pytest.raises(ComposerContractError):
            parse_composer_response(llm_response(
                text=None,
                function_calls=[function_call("ask_more", questions=["?"])],
            ))

    def test_blank_text_violates_contract(self):
        with pytest.raises(ComposerContractError):
            parse_composer_response(llm_response(text="   "))


# ────────────────────────────── Generative composer ──────────────────────────────


class TestGenerativeComposer:

    @pytest.mark.asyncio
    async def test_generated_reply(self):
        client = make_llm_client(llm_response(text="How is your breathing today?"))
        composer = GenerativeComposer(client, model_name="test-model")
        reply = await composer.compose(make_ctx(AskMoreHint(questions=["How is your breathing?"])))

        assert reply.source == "llm"
        assert reply.text == "How is your breathing today?"
        kwargs = client.aio.models.generate_content.call_args.kwargs
        config = kwargs["config"]
        assert config.temperature == 0.2
        declared = {fd.name for fd in config.tools[0].function_declarations}
        assert declared == {"raise_flag", "ask_more", "log_checkin", "handoff_to_nurse"}
        assert "log_checkin" in config.system_instruction
        assert "FIRST CONTACT" in kwargs["contents"]

    @pytest.mark.asyncio
    async def test_tier_guidance_in_system_prompt(self):
        client = make_llm_client(llm_response(text="Hi!"))
        composer = GenerativeComposer(client)
        await composer.compose(make_ctx(CloseHint(), tier=EducationTier.LOW))
        config = client.aio.models.generate_content.call_args.kwargs["config"]
        assert "5th-grade" in config.system_instruction

    @pytest.mark.asyncio
    async def test_contract_violation_falls_back(self):
        client = make_llm_client(llm_response(
            text="", function_calls=[function_call("log_checkin", result="ok", summary="ok")],
        ))
        reply = await GenerativeComposer(client).compose(make_ctx(CloseHint()))
        assert reply.source == "fallback"
        assert reply.text == CLOSE_TEMPLATE
        assert reply.tool_calls == []

    @pytest.mark.asyncio
    async def test_collaborator_failure_falls_back(self):
        client = make_llm_client(side_effect=RuntimeError("quota exceeded"))
        hint = AskMoreHint(questions=["Any swelling?"])
        reply = await GenerativeComposer(client).compose(make_ctx(hint))
        assert reply.source == "fallback"
        assert "Any swelling?" in reply.text
        assert reply.tool_calls == []

    @pytest.mark.asyncio
    async def test_summarize_uses_model_text(self):
        client = make_llm_client(llm_response(text="  Patient reported chest pain; handed to nurse.  "))
        composer = GenerativeComposer(client)
        transcript = [ConversationTurn(role=MessageRole.USER, content="chest pain")]
        hint = FlagHint(flag_type="HF_CHEST_PAIN", severity=Severity.CRITICAL)
        summary = await composer.summarize(transcript, hint, "ESCALATED")
        assert summary == "Patient reported chest pain; handed to nurse."
        assert client.aio.models.generate_content.call_args.kwargs["config"].temperature == 0.3

    @pytest.mark.asyncio
    async def test_summarize_falls_back(self):
        client = make_llm_client(llm_response(text=""))
        composer = GenerativeComposer(client)
        transcript = [ConversationTurn(role=MessageRole.USER, content="I feel fine")]
        summary = await composer.summarize(transcript, CloseHint(reason="Doing well"), "COMPLETED")
        assert summary.startswith("COMPLETED.")
        assert "Doing well" in summary
        assert "I feel fine" in summary


class TestFallbackSummary:

    def test_flag_summary(self):
        hint = FlagHint(flag_type="HF_WEIGHT_GAIN", severity=Severity.HIGH, reason="Rapid weight gain")
        summary = fallback_summary([], hint, "ESCALATED")
        assert "HF_WEIGHT_GAIN (HIGH)" in summary
        assert "Rapid weight gain" in summary


# ────────────────────────────── Contact context ──────────────────────────────


class TestContactContext:

    def test_first_contact(self):
        assert contact_context(1, [], has_history=False).startswith("FIRST CONTACT")

    def test_returning_patient_lists_summaries(self):
        text = contact_context(3, ["Weight stable last week"], has_history=False)
        assert text.startswith("NEW CHECK-IN WITH RETURNING PATIENT")
        assert "- Weight stable last week" in text

    def test_mid_conversation(self):
        assert contact_context(3, ["x"], has_history=True).startswith("CONTINUING CONVERSATION")


# ────────────────────────────── Previous decision ──────────────────────────────


class TestPreviousDecision:

    def test_first_turn(self):
        assert describe_previous(None).startswith("PREVIOUS DECISION: none")

    def test_earlier_questions_not_repeated(self):
        text = describe_previous(AskMoreHint(questions=["Any swelling?"]))
        assert "You already asked: Any swelling?" in text
        assert "Do not repeat" in text

    def test_prompt_carries_previous_decision(self):
        ctx = make_ctx(AskMoreHint(questions=["How is your breathing?"]))
        ctx.previous_hint = AskMoreHint(questions=["How many pounds have you gained?"])
        prompt = GenerativeComposer(make_llm_client()).build_prompt(ctx)
        assert "PREVIOUS DECISION: ASK_MORE" in prompt
        assert "How many pounds have you gained?" in prompt
