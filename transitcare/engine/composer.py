"""
Response Composer: turns a DecisionHint into the patient-facing reply and
the tool calls committed for the turn.

Two paths, chosen by the pure ``select_strategy``:

  ForcedReply        FLAG hints.  Fixed template + fixed tool call; the
                     model is never consulted for an escalation.
  GenerativeRequest  ASK_MORE / CLOSE.  Gemini with function declarations
                     for the tool vocabulary writes the reply.

Every generative failure (timeout, exception, contract violation) falls
back to a deterministic template keyed on the hint, with no tool calls.
The patient never receives an empty message.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Union

from google.genai import types

from transitcare.engine.enums import CONDITION_NAMES, ConditionCode, EducationTier, Severity
from transitcare.engine.errors import ComposerContractError, CompositionError
from transitcare.engine.llm_utils import llm_call, llm_generate
from transitcare.engine.signals import AskMoreHint, CloseHint, ConversationTurn, FlagHint
from transitcare.engine.tools import (
    ASK_MORE,
    HANDOFF_TO_NURSE,
    LOG_CHECKIN,
    RAISE_FLAG,
    TOOL_VOCABULARY,
    ToolCall,
)

logger = logging.getLogger("engine.composer")

Hint = Union[FlagHint, CloseHint, AskMoreHint]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Templates
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

CRITICAL_TEMPLATE = (
    "I'm concerned about what you're describing and I'm connecting you with "
    "a nurse now. A nurse will contact you within 30 minutes. If your "
    "symptoms get worse or this feels like an emergency, please call 911 or "
    "go to the nearest emergency room if needed."
)

HIGH_TEMPLATE = (
    "Thank you for telling me. I've flagged this for our nursing team and a "
    "nurse will reach out to you within 2 hours. If your symptoms get worse "
    "before then, please call 911 or go to the nearest emergency room."
)

FLAG_TEMPLATE = (
    "Thank you for sharing that. I've let your care team know so they can "
    "follow up with you. If anything changes or you start to feel worse, "
    "please contact your care team, or call 911 in an emergency."
)

CLOSE_TEMPLATE = (
    "Thank you for checking in. It sounds like you're doing well today. Keep "
    "following your care plan, and reach out any time if something changes."
)

ASK_MORE_TEMPLATE = "Thank you for sharing that. I'd like to understand a bit more."


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Strategy selection
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass(frozen=True)
class ForcedReply:
    text: str
    tool_calls: tuple[ToolCall, ...] = ()


@dataclass(frozen=True)
class GenerativeRequest:
    hint: Hint


def select_strategy(hint: Hint) -> ForcedReply | GenerativeRequest:
    """Pure mapping from a DecisionHint to how the reply gets written."""
    if not isinstance(hint, FlagHint):
        return GenerativeRequest(hint=hint)

    if hint.severity == Severity.CRITICAL:
        return ForcedReply(
            text=CRITICAL_TEMPLATE,
            tool_calls=(ToolCall(name=HANDOFF_TO_NURSE, parameters={
                "reason": hint.reason,
                "flagType": hint.flag_type,
            }),),
        )

    flag = ToolCall(name=RAISE_FLAG, parameters={
        "flagType": hint.flag_type,
        "severity": hint.severity.value,
        "rationale": hint.reason,
    })
    if hint.severity == Severity.HIGH:
        return ForcedReply(text=HIGH_TEMPLATE, tool_calls=(flag,))
    return ForcedReply(text=FLAG_TEMPLATE, tool_calls=(flag,))


def fallback_reply(hint: Hint) -> str:
    """Deterministic, hint-keyed reply used whenever generation fails."""
    if isinstance(hint, FlagHint):
        strategy = select_strategy(hint)
        return strategy.text
    if isinstance(hint, CloseHint):
        return CLOSE_TEMPLATE
    questions = " ".join(hint.questions) or "How are you feeling today?"
    return f"{ASK_MORE_TEMPLATE} {questions}"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Contact-history context
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def contact_context(
    interaction_count: int,
    prior_summaries: list[str],
    has_history: bool,
) -> str:
    """
    Where this turn sits in the patient's relationship with the agent:
    first contact ever, a new check-in for a returning patient, or the
    middle of an ongoing conversation.
    """
    if has_history:
        return (
            "CONTINUING CONVERSATION: you are mid-conversation with this patient. "
            "Do not re-introduce yourself; build on what has already been said."
        )
    if interaction_count <= 1 and not prior_summaries:
        return (
            "FIRST CONTACT: this is the first time you are speaking with this patient. "
            "Briefly introduce yourself as their care team's check-in assistant."
        )
    lines = [
        "NEW CHECK-IN WITH RETURNING PATIENT: greet them warmly as someone you know.",
        "Previous check-ins:",
    ]
    lines.extend(f"- {s}" for s in prior_summaries)
    return "\n".join(lines)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Generative composer
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

TIER_GUIDANCE: dict[EducationTier, str] = {
    EducationTier.LOW: (
        "Use very simple words and short sentences (about a 5th-grade reading level). "
        "Ask one thing at a time."
    ),
    EducationTier.MEDIUM: "Use plain, friendly language and avoid medical jargon.",
    EducationTier.HIGH: "You may use standard medical terms; keep it concise and precise.",
}

COMPOSER_SYSTEM_PROMPT = """\
You are a post-discharge check-in assistant for {condition_name} patients, \
working on behalf of their nursing team.

RULES:
1. Before giving up on a symptom the patient mentions, explore it with 2-3 \
different lines of questioning (onset, severity, what makes it better or worse).
2. Only call log_checkin after the patient has given at least two specific \
confirmations that things are normal (for example: weight stable AND \
breathing normal).
3. Never give medical or pharmacy advice: no diagnoses, no dosing, no \
medication changes. Direct those questions to the care team.
4. If the patient asks about something unrelated to their recovery, gently \
redirect to the check-in.
5. {tier_guidance}

TOOLS: raise_flag, ask_more, log_checkin, handoff_to_nurse.
Always write a reply to the patient in addition to any tool call.\
"""


def _tool_declarations() -> list[types.Tool]:
    string = types.Schema(type=types.Type.STRING)
    return [types.Tool(function_declarations=[
        types.FunctionDeclaration(
            name=RAISE_FLAG,
            description="Escalate a concern to the nursing team.",
            parameters=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "flagType": string,
                    "severity": types.Schema(
                        type=types.Type.STRING,
                        enum=["LOW", "MODERATE", "HIGH", "CRITICAL"],
                    ),
                    "rationale": string,
                },
                required=["flagType", "severity", "rationale"],
            ),
        ),
        types.FunctionDeclaration(
            name=ASK_MORE,
            description="Ask the patient follow-up questions.",
            parameters=types.Schema(
                type=types.Type.OBJECT,
                properties={"questions": types.Schema(type=types.Type.ARRAY, items=string)},
                required=["questions"],
            ),
        ),
        types.FunctionDeclaration(
            name=LOG_CHECKIN,
            description="Record a completed check-in once the patient has confirmed they are well.",
            parameters=types.Schema(
                type=types.Type.OBJECT,
                properties={"result": string, "summary": string},
                required=["result", "summary"],
            ),
        ),
        types.FunctionDeclaration(
            name=HANDOFF_TO_NURSE,
            description="Hand the conversation to a nurse immediately.",
            parameters=types.Schema(
                type=types.Type.OBJECT,
                properties={"reason": string, "flagType": string},
                required=["reason"],
            ),
        ),
    ])]


@dataclass
class CompositionContext:
    condition: ConditionCode
    education_tier: EducationTier
    patient_text: str
    hint: Hint
    history: list[ConversationTurn] = field(default_factory=list)
    protocol_patterns: list[str] = field(default_factory=list)
    contact: str = ""
    # Decision taken on the previous turn of this interaction, if any
    previous_hint: Hint | None = None


def describe_previous(hint: Hint | None) -> str:
    if hint is None:
        return "PREVIOUS DECISION: none (first turn of this check-in)"
    if isinstance(hint, AskMoreHint):
        asked = "; ".join(hint.questions) or "general follow-up"
        return f"PREVIOUS DECISION: ASK_MORE. You already asked: {asked}. Do not repeat these questions."
    if isinstance(hint, FlagHint):
        return f"PREVIOUS DECISION: FLAG {hint.flag_type} ({hint.severity.value})."
    return f"PREVIOUS DECISION: CLOSE ({hint.reason})."


@dataclass
class ComposedReply:
    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    source: str = "llm"


class GenerativeComposer:
    """Writes ASK_MORE / CLOSE replies with the generative collaborator."""

    def __init__(
        self,
        llm_client=None,
        model_name: str | None = None,
        timeout: float = 20.0,
    ) -> None:
        self._client = llm_client
        self._model_name = model_name or os.getenv("COMPOSER_MODEL", "gemini-2.0-flash")
        self._timeout = timeout

    @property
    def client(self):
        if self._client is None:
            try:
                from google import genai
                self._client = genai.Client(api_key=os.getenv("GOOGLE_API_KEY"))
            except Exception as exc:
                logger.error("Failed to create Gemini client: %s", exc)
        return self._client

    async def compose(self, ctx: CompositionContext) -> ComposedReply:
        try:
            return await self._generate(ctx)
        except ComposerContractError as exc:
            logger.warning("Composer contract violation, using template: %s", exc)
        except Exception as exc:
            logger.warning("Composer failed, using template: %s", exc)
        return ComposedReply(text=fallback_reply(ctx.hint), tool_calls=[], source="fallback")

    def build_prompt(self, ctx: CompositionContext) -> str:
        hint = ctx.hint
        if isinstance(hint, AskMoreHint):
            guidance = (
                "DECISION: ASK_MORE. Ask these questions in your own words "
                f"(at most 3): {hint.questions}"
            )
            if hint.reason:
                guidance += f"\nWhy: {hint.reason}"
        elif isinstance(hint, CloseHint):
            guidance = (
                f"DECISION: CLOSE ({hint.reason}). Confirm the patient is doing well, "
                "remind them to reach out if anything changes, and call log_checkin "
                "if they have confirmed at least two normal findings."
            )
        else:
            guidance = f"DECISION: FLAG {hint.flag_type} ({hint.severity.value})."

        transcript = "\n".join(
            f"{'PATIENT' if t.role.value == 'user' else 'AGENT'}: {t.content}"
            for t in ctx.history
        ) or "(no earlier messages)"

        return (
            f"CONDITION: {ctx.condition.value}\n"
            f"EDUCATION TIER: {ctx.education_tier.value}\n\n"
            f"{ctx.contact}\n\n"
            f"PROTOCOL PATTERNS BEING MONITORED: {', '.join(ctx.protocol_patterns) or 'none'}\n\n"
            f"CONVERSATION SO FAR:\n{transcript}\n\n"
            f"PATIENT'S LATEST MESSAGE: {ctx.patient_text}\n\n"
            f"{describe_previous(ctx.previous_hint)}\n"
            f"{guidance}\n\n"
            f"Available tools: {', '.join(sorted(TOOL_VOCABULARY))}"
        )

    async def _generate(self, ctx: CompositionContext) -> ComposedReply:
        if self.client is None:
            raise CompositionError("no LLM client available")

        config = types.GenerateContentConfig(
            system_instruction=COMPOSER_SYSTEM_PROMPT.format(
                condition_name=CONDITION_NAMES.get(ctx.condition, ctx.condition.value),
                tier_guidance=TIER_GUIDANCE[ctx.education_tier],
            ),
            tools=_tool_declarations(),
            temperature=0.2,
        )
        response = await llm_call(
            self.client, self._model_name, self.build_prompt(ctx),
            config=config, timeout=self._timeout, max_retries=0,
        )
        return parse_composer_response(response)

    async def summarize(
        self,
        transcript: list[ConversationTurn],
        hint: Hint,
        status: str,
    ) -> str:
        """One-paragraph interaction summary for the next check-in's context."""
        fallback = fallback_summary(transcript, hint, status)
        if self.client is None:
            return fallback
        lines = "\n".join(f"{t.role.value}: {t.content}" for t in transcript)
        prompt = (
            "Summarise this post-discharge check-in for the nursing team in 2-3 "
            "sentences: symptoms reported, the outcome, and anything to follow up.\n\n"
            f"OUTCOME: {status}\n\nTRANSCRIPT:\n{lines}"
        )
        text = await llm_generate(
            self.client, self._model_name, prompt,
            config=types.GenerateContentConfig(temperature=0.3),
            timeout=self._timeout,
        )
        return text.strip() if text else fallback


def parse_composer_response(response: Any) -> ComposedReply:
    """
    Read text and tool calls off a model response.

    Tool calls outside the vocabulary are dropped.  Tool calls without any
    patient-facing text (or no text at all) violate the contract.
    """
    calls: list[ToolCall] = []
    for fc in getattr(response, "function_calls", None) or []:
        name = getattr(fc, "name", None)
        if name not in TOOL_VOCABULARY:
            logger.warning("Dropping tool call outside vocabulary: %r", name)
            continue
        calls.append(ToolCall(name=name, parameters=dict(getattr(fc, "args", None) or {})))

    try:
        text = response.text
    except (AttributeError, ValueError):
        text = None
    text = (text or "").strip()

    if not text:
        if calls:
            raise ComposerContractError(
                f"tool calls {[c.name for c in calls]} returned without patient-facing text"
            )
        raise ComposerContractError("empty reply")

    return ComposedReply(text=text, tool_calls=calls, source="llm")


def fallback_summary(transcript: list[ConversationTurn], hint: Hint, status: str) -> str:
    if isinstance(hint, FlagHint):
        outcome = f"Escalated: {hint.flag_type} ({hint.severity.value}). {hint.reason}".strip()
    elif isinstance(hint, CloseHint):
        outcome = f"Check-in completed: {hint.reason}"
    else:
        outcome = "Check-in ended while gathering more information"
    patient_lines = [t.content for t in transcript if t.role.value == "user"]
    reported = f" Patient said: \"{patient_lines[-1]}\"" if patient_lines else ""
    return f"{status}. {outcome}.{reported}".replace("..", ".")
