"""
Turn pipeline: one patient message in, one reply (plus side effects) out.

    protocol ─▶ extract ─▶ evaluate ─▶ compose ─▶ dispatch tools ─▶ record

There is no transaction across steps.  Extraction and composition fall
back to deterministic paths, tool failures become failed ToolResults, and
recorder failures are logged; the patient always gets a reply.  Only a
missing protocol precondition (ProtocolNotResolvableError) escapes.

Store access (protocols, recorder, escalation tasks) is blocking SQLAlchemy
and runs in worker threads via ``asyncio.to_thread``; the event loop never
waits on the database.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from transitcare.engine.composer import (
    CompositionContext,
    ForcedReply,
    GenerativeComposer,
    contact_context,
    select_strategy,
)
from transitcare.engine.enums import InteractionStatus, MessageRole
from transitcare.engine.errors import InteractionNotFoundError
from transitcare.engine.evaluator import RuleEvaluator
from transitcare.engine.extractors import ExtractionRequest, SignalExtractor, summarize_signal
from transitcare.engine.protocols import ActiveProtocol, ProtocolStoreAccessor
from transitcare.engine.recorder import InteractionRecorder
from transitcare.engine.signals import (
    AskMoreHint,
    CloseHint,
    ConversationTurn,
    FlagHint,
    SignalRecord,
)
from transitcare.engine.tools import (
    HANDOFF_TO_NURSE,
    RAISE_FLAG,
    TERMINAL_TOOLS,
    ToolCall,
    ToolDispatcher,
    ToolResult,
)

logger = logging.getLogger("engine.turn")

Hint = Union[FlagHint, CloseHint, AskMoreHint]


@dataclass
class TurnResult:
    reply_text: str
    decision_hint: Hint
    tool_results: list[ToolResult] = field(default_factory=list)
    interaction_id: Optional[str] = None
    signal: Optional[SignalRecord] = None
    interaction_status: InteractionStatus = InteractionStatus.IN_PROGRESS


class TurnHandler:
    def __init__(
        self,
        protocols: ProtocolStoreAccessor,
        extractor: SignalExtractor,
        evaluator: RuleEvaluator,
        composer: GenerativeComposer,
        dispatcher: ToolDispatcher,
        recorder: InteractionRecorder,
        history_window: int = 10,
    ) -> None:
        self.protocols = protocols
        self.extractor = extractor
        self.evaluator = evaluator
        self.composer = composer
        self.dispatcher = dispatcher
        self.recorder = recorder
        self.history_window = history_window

    async def handle_turn(
        self,
        patient_id: str,
        episode_id: str,
        patient_text: str,
        condition_code: Any,
        interaction_id: str | None = None,
        education_tier: Any = None,
        risk_level: Any = None,
    ) -> TurnResult:
        protocol = await asyncio.to_thread(
            self.protocols.load_or_create,
            episode_id, condition_code, education_tier, risk_level,
        )

        interaction_id = await asyncio.to_thread(
            self._open_interaction, patient_id, episode_id, interaction_id, protocol,
        )
        history = await asyncio.to_thread(self._history, interaction_id)
        previous_hint = await asyncio.to_thread(self._previous_hint, interaction_id, bool(history))
        await asyncio.to_thread(self._record, interaction_id, MessageRole.USER, patient_text)

        # ── Extract & evaluate ──
        signal = await self.extractor.extract(ExtractionRequest(
            text=patient_text,
            condition=protocol.condition,
            education_tier=protocol.education_tier,
            history=history,
            patterns=protocol.patterns,
        ))
        logger.info("Signal for episode %s: %s", episode_id, summarize_signal(signal))

        hint = self.evaluator.evaluate(signal, protocol.rules, protocol.condition)
        logger.info("Decision for episode %s: %s", episode_id, hint.action)

        # ── Compose ──
        strategy = select_strategy(hint)
        if isinstance(strategy, ForcedReply):
            reply_text = strategy.text
            tool_calls: list[ToolCall] = list(strategy.tool_calls)
        else:
            contact = await asyncio.to_thread(
                self._contact_context, patient_id, interaction_id, bool(history),
            )
            composed = await self.composer.compose(CompositionContext(
                condition=protocol.condition,
                education_tier=protocol.education_tier,
                patient_text=patient_text,
                hint=hint,
                history=history,
                protocol_patterns=protocol.patterns,
                contact=contact,
                previous_hint=previous_hint,
            ))
            reply_text, tool_calls = composed.text, composed.tool_calls

        # ── Dispatch ──
        tool_results = await asyncio.to_thread(
            self.dispatcher.dispatch, tool_calls, episode_id, interaction_id,
        )
        for result in tool_results:
            if not result.success:
                logger.error("Tool %s failed on episode %s: %s", result.tool, episode_id, result.error)

        await asyncio.to_thread(
            self._record,
            interaction_id,
            MessageRole.ASSISTANT,
            reply_text,
            tool_name=", ".join(c.name for c in tool_calls) or None,
            tool_args=[c.model_dump() for c in tool_calls] or None,
            tool_results=[r.model_dump() for r in tool_results] or None,
            decision_hint=hint.model_dump(mode="json"),
        )

        status = self._ending_status(hint, tool_results)
        if status is not None and interaction_id is not None:
            transcript = history + [
                ConversationTurn(role=MessageRole.USER, content=patient_text),
                ConversationTurn(role=MessageRole.ASSISTANT, content=reply_text),
            ]
            summary = await self.composer.summarize(transcript, hint, status.value)
            try:
                await asyncio.to_thread(self.recorder.finish_interaction, interaction_id, status, summary)
            except Exception:
                logger.exception("Failed to close interaction %s", interaction_id)

        return TurnResult(
            reply_text=reply_text,
            decision_hint=hint,
            tool_results=tool_results,
            interaction_id=interaction_id,
            signal=signal,
            interaction_status=status or InteractionStatus.IN_PROGRESS,
        )

    # ── Helpers (blocking; called through asyncio.to_thread) ──

    def _open_interaction(
        self,
        patient_id: str,
        episode_id: str,
        interaction_id: str | None,
        protocol: ActiveProtocol,
    ) -> str | None:
        """Reuse an in-progress interaction, otherwise start a new one."""
        try:
            if interaction_id:
                try:
                    existing = self.recorder.get_interaction(interaction_id)
                    if existing.status == InteractionStatus.IN_PROGRESS.value:
                        return existing.id
                    logger.info("Interaction %s already %s, starting a new one",
                                interaction_id, existing.status)
                except InteractionNotFoundError:
                    logger.warning("Interaction %s not found, starting a new one", interaction_id)
            return self.recorder.start_interaction(patient_id, episode_id, protocol.document).id
        except Exception:
            logger.exception("Could not open interaction for episode %s", episode_id)
            return None

    def _history(self, interaction_id: str | None) -> list[ConversationTurn]:
        if interaction_id is None:
            return []
        try:
            return self.recorder.history(interaction_id, limit=self.history_window)
        except Exception:
            logger.exception("Could not load history for interaction %s", interaction_id)
            return []

    def _previous_hint(self, interaction_id: str | None, has_history: bool) -> Hint | None:
        """Decision from the last turn of this interaction; None on a first turn or bad metadata."""
        if interaction_id is None or not has_history:
            return None
        try:
            return self.recorder.last_hint(interaction_id)
        except Exception:
            logger.exception("Could not load previous decision for interaction %s", interaction_id)
            return None

    def _record(self, interaction_id: str | None, role: MessageRole, content: str, **meta) -> None:
        if interaction_id is None:
            return
        try:
            self.recorder.append_message(interaction_id, role, content, **meta)
        except Exception:
            logger.exception("Failed to record %s message on interaction %s", role.value, interaction_id)

    def _contact_context(self, patient_id: str, interaction_id: str | None, has_history: bool) -> str:
        try:
            count = self.recorder.interaction_count(patient_id)
            summaries = self.recorder.prior_summaries(patient_id, exclude_interaction_id=interaction_id)
        except Exception:
            logger.exception("Could not load contact history for patient %s", patient_id)
            count, summaries = 1, []
        return contact_context(count, summaries, has_history)

    @staticmethod
    def _ending_status(hint: Hint, tool_results: list[ToolResult]) -> InteractionStatus | None:
        dispatched = {r.tool for r in tool_results if r.success}
        if isinstance(hint, FlagHint) or dispatched & {RAISE_FLAG, HANDOFF_TO_NURSE}:
            return InteractionStatus.ESCALATED
        if isinstance(hint, CloseHint) or dispatched & TERMINAL_TOOLS:
            return InteractionStatus.COMPLETED
        return None
