"""
Interaction Recorder: the ordered, append-only conversation log.

Sequence numbers are assigned here and nowhere else.  Each append bumps
``agent_interactions.last_sequence`` with a single UPDATE, reads the new
value and inserts the message in the same transaction; the row lock taken
by the UPDATE serialises concurrent appends to one interaction, and the
unique (interaction_id, sequence_number) constraint backs it up.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError
from sqlalchemy.orm import sessionmaker

from transitcare.db.models import AgentInteraction, AgentMessage, utcnow
from transitcare.engine.enums import InteractionStatus, MessageRole
from transitcare.engine.errors import InteractionNotFoundError
from transitcare.engine.signals import ConversationTurn, parse_hint

logger = logging.getLogger("engine.recorder")


class InteractionRecorder:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    # ── Interactions ──

    def start_interaction(
        self,
        patient_id: str,
        episode_id: str,
        rules_snapshot: Any = None,
    ) -> AgentInteraction:
        db = self._session_factory()
        try:
            interaction = AgentInteraction(
                patient_id=patient_id,
                episode_id=episode_id,
                status=InteractionStatus.IN_PROGRESS.value,
                rules_snapshot=rules_snapshot,
                last_sequence=0,
            )
            db.add(interaction)
            db.commit()
            logger.info("Interaction %s started for episode %s", interaction.id, episode_id)
            return interaction
        finally:
            db.close()

    def get_interaction(self, interaction_id: str) -> AgentInteraction:
        db = self._session_factory()
        try:
            interaction = db.get(AgentInteraction, interaction_id)
            if interaction is None:
                raise InteractionNotFoundError(f"interaction {interaction_id} not found")
            return interaction
        finally:
            db.close()

    def finish_interaction(
        self,
        interaction_id: str,
        status: InteractionStatus,
        summary: str | None = None,
    ) -> None:
        db = self._session_factory()
        try:
            db.query(AgentInteraction).filter(AgentInteraction.id == interaction_id).update(
                {
                    AgentInteraction.status: status.value,
                    AgentInteraction.summary: summary,
                    AgentInteraction.completed_at: utcnow(),
                },
                synchronize_session=False,
            )
            db.commit()
            logger.info("Interaction %s finished: %s", interaction_id, status.value)
        finally:
            db.close()

    # ── Messages ──

    def append_message(
        self,
        interaction_id: str,
        role: MessageRole,
        content: str,
        tool_name: str | None = None,
        tool_args: Any = None,
        tool_results: Any = None,
        decision_hint: dict | None = None,
    ) -> AgentMessage:
        db = self._session_factory()
        try:
            bumped = (
                db.query(AgentInteraction)
                .filter(AgentInteraction.id == interaction_id)
                .update(
                    {AgentInteraction.last_sequence: AgentInteraction.last_sequence + 1},
                    synchronize_session=False,
                )
            )
            if not bumped:
                raise InteractionNotFoundError(f"interaction {interaction_id} not found")

            sequence = (
                db.query(AgentInteraction.last_sequence)
                .filter(AgentInteraction.id == interaction_id)
                .scalar()
            )
            message = AgentMessage(
                interaction_id=interaction_id,
                role=role.value,
                content=content,
                sequence_number=sequence,
                tool_name=tool_name,
                tool_args=tool_args,
                tool_results=tool_results,
                decision_hint=decision_hint,
            )
            db.add(message)
            db.commit()
            return message
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def messages(self, interaction_id: str) -> list[AgentMessage]:
        db = self._session_factory()
        try:
            return (
                db.query(AgentMessage)
                .filter(AgentMessage.interaction_id == interaction_id)
                .order_by(AgentMessage.sequence_number)
                .all()
            )
        finally:
            db.close()

    def history(self, interaction_id: str, limit: int = 10) -> list[ConversationTurn]:
        """The last ``limit`` messages of the interaction, oldest first."""
        db = self._session_factory()
        try:
            rows = (
                db.query(AgentMessage)
                .filter(AgentMessage.interaction_id == interaction_id)
                .order_by(AgentMessage.sequence_number.desc())
                .limit(limit)
                .all()
            )
        finally:
            db.close()
        return [
            ConversationTurn(role=MessageRole(row.role), content=row.content)
            for row in reversed(rows)
        ]

    def last_hint(self, interaction_id: str):
        """Decision hint stored on the latest assistant message, or None if absent or malformed."""
        db = self._session_factory()
        try:
            row = (
                db.query(AgentMessage)
                .filter(AgentMessage.interaction_id == interaction_id)
                .filter(AgentMessage.decision_hint.isnot(None))
                .order_by(AgentMessage.sequence_number.desc())
                .first()
            )
        finally:
            db.close()
        if row is None:
            return None
        try:
            return parse_hint(row.decision_hint)
        except ValidationError as exc:
            logger.warning("Malformed hint metadata on message %s: %s", row.id, exc)
            return None

    # ── Patient context ──

    def prior_summaries(
        self,
        patient_id: str,
        exclude_interaction_id: str | None = None,
        limit: int = 3,
    ) -> list[str]:
        """Summaries of the patient's earlier finished interactions, newest first."""
        db = self._session_factory()
        try:
            query = (
                db.query(AgentInteraction)
                .filter(AgentInteraction.patient_id == patient_id)
                .filter(AgentInteraction.summary.isnot(None))
            )
            if exclude_interaction_id:
                query = query.filter(AgentInteraction.id != exclude_interaction_id)
            rows = query.order_by(AgentInteraction.started_at.desc()).limit(limit).all()
        finally:
            db.close()
        return [row.summary for row in rows if row.summary]

    def interaction_count(self, patient_id: str) -> int:
        db = self._session_factory()
        try:
            return (
                db.query(AgentInteraction)
                .filter(AgentInteraction.patient_id == patient_id)
                .count()
            )
        finally:
            db.close()
