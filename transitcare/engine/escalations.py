"""
Escalation Task Manager: nurse work items with a severity-indexed SLA.

    OPEN ──assign──▶ IN_PROGRESS ──resolve──▶ RESOLVED (terminal)
      └──────────────resolve──────────────────────▲

``sla_due_at`` is fixed at creation.  Breach and warning are derived at
read time from the injected clock; nothing about SLA state is stored.
Assignment is a conditional UPDATE so two nurses picking up the same task
cannot both win.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy.orm import sessionmaker

from transitcare.db.models import EscalationTask, utcnow
from transitcare.engine.enums import (
    SEVERITY_RANK,
    ResolutionOutcome,
    Severity,
    TaskStatus,
    parse_severity,
    priority_for,
    sla_minutes_for,
)
from transitcare.engine.errors import InvalidTransitionError, TaskNotFoundError

logger = logging.getLogger("engine.escalations")

SLA_WARNING_FRACTION = 0.75


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def is_breached(task: EscalationTask, now: datetime) -> bool:
    """True iff the task is unresolved and its SLA deadline has passed."""
    if task.status == TaskStatus.RESOLVED.value:
        return False
    return _naive_utc(now) > task.sla_due_at


def is_sla_warning(task: EscalationTask, now: datetime) -> bool:
    """True when at least 75% of the SLA window has elapsed but it is not yet breached."""
    if task.status == TaskStatus.RESOLVED.value or is_breached(task, now):
        return False
    window = (task.sla_due_at - task.created_at).total_seconds()
    if window <= 0:
        return False
    elapsed = (_naive_utc(now) - task.created_at).total_seconds()
    return elapsed / window >= SLA_WARNING_FRACTION


def minutes_remaining(task: EscalationTask, now: datetime) -> int:
    return int((task.sla_due_at - _naive_utc(now)).total_seconds() // 60)


class EscalationTaskManager:
    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def now(self) -> datetime:
        return _naive_utc(self._clock())

    # ── Lifecycle ──

    def create(
        self,
        episode_id: str,
        severity: Severity | str,
        reason_codes: list[str],
        interaction_id: str | None = None,
    ) -> EscalationTask:
        sev = parse_severity(severity, default=Severity.MODERATE)
        created = self.now()
        db = self._session_factory()
        try:
            task = EscalationTask(
                episode_id=episode_id,
                interaction_id=interaction_id,
                severity=sev.value,
                priority=priority_for(sev).value,
                reason_codes=[c for c in reason_codes if c],
                status=TaskStatus.OPEN.value,
                sla_due_at=created + timedelta(minutes=sla_minutes_for(sev)),
                created_at=created,
                updated_at=created,
            )
            db.add(task)
            db.commit()
            logger.info(
                "Escalation %s created: episode=%s severity=%s due=%s",
                task.id, episode_id, sev.value, task.sla_due_at.isoformat(),
            )
            return task
        finally:
            db.close()

    def get(self, task_id: str) -> EscalationTask:
        db = self._session_factory()
        try:
            task = db.get(EscalationTask, task_id)
            if task is None:
                raise TaskNotFoundError(f"escalation task {task_id} not found")
            return task
        finally:
            db.close()

    def assign(self, task_id: str, operator_id: str) -> EscalationTask:
        """
        Pick up an OPEN, unassigned task.  Assigning a task that is already
        assigned is a no-op that returns it unchanged.
        """
        now = self.now()
        db = self._session_factory()
        try:
            updated = (
                db.query(EscalationTask)
                .filter(EscalationTask.id == task_id)
                .filter(EscalationTask.status == TaskStatus.OPEN.value)
                .filter(EscalationTask.assigned_to.is_(None))
                .update(
                    {
                        EscalationTask.status: TaskStatus.IN_PROGRESS.value,
                        EscalationTask.assigned_to: operator_id,
                        EscalationTask.picked_up_at: now,
                        EscalationTask.updated_at: now,
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
        finally:
            db.close()

        task = self.get(task_id)
        if updated:
            logger.info("Escalation %s picked up by %s", task_id, operator_id)
            return task

        if task.status == TaskStatus.RESOLVED.value:
            raise InvalidTransitionError(f"escalation task {task_id} is already resolved")
        if task.assigned_to != operator_id:
            logger.warning(
                "Escalation %s already assigned to %s, ignoring assignment to %s",
                task_id, task.assigned_to, operator_id,
            )
        return task

    def resolve(
        self,
        task_id: str,
        outcome: ResolutionOutcome | str | None,
        notes: str,
        resolver_id: str,
    ) -> EscalationTask:
        try:
            resolved_outcome = ResolutionOutcome(
                outcome.value if isinstance(outcome, ResolutionOutcome) else str(outcome).upper()
            )
        except ValueError as exc:
            raise InvalidTransitionError(f"invalid resolution outcome {outcome!r}") from exc
        if not notes or not notes.strip():
            raise InvalidTransitionError("resolution notes are required")

        now = self.now()
        db = self._session_factory()
        try:
            updated = (
                db.query(EscalationTask)
                .filter(EscalationTask.id == task_id)
                .filter(EscalationTask.status != TaskStatus.RESOLVED.value)
                .update(
                    {
                        EscalationTask.status: TaskStatus.RESOLVED.value,
                        EscalationTask.resolution_outcome: resolved_outcome.value,
                        EscalationTask.resolution_notes: notes.strip(),
                        EscalationTask.resolved_at: now,
                        EscalationTask.resolved_by: resolver_id,
                        EscalationTask.updated_at: now,
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
        finally:
            db.close()

        task = self.get(task_id)
        if not updated:
            raise InvalidTransitionError(f"escalation task {task_id} is already resolved")
        logger.info("Escalation %s resolved by %s: %s", task_id, resolver_id, resolved_outcome.value)
        return task

    # ── Queries ──

    def is_breached(self, task: EscalationTask, now: datetime | None = None) -> bool:
        return is_breached(task, now or self.now())

    def is_sla_warning(self, task: EscalationTask, now: datetime | None = None) -> bool:
        return is_sla_warning(task, now or self.now())

    def list_open(self) -> list[EscalationTask]:
        """Unresolved tasks, most severe first, then earliest deadline."""
        db = self._session_factory()
        try:
            tasks = (
                db.query(EscalationTask)
                .filter(EscalationTask.status != TaskStatus.RESOLVED.value)
                .all()
            )
        finally:
            db.close()
        return sorted(
            tasks,
            key=lambda t: (
                -SEVERITY_RANK.get(parse_severity(t.severity, Severity.NONE), 0),
                t.sla_due_at,
            ),
        )

    def list_breached(self, now: datetime | None = None) -> list[EscalationTask]:
        now = now or self.now()
        return [t for t in self.list_open() if is_breached(t, now)]

    def list_approaching(self, now: datetime | None = None) -> list[EscalationTask]:
        now = now or self.now()
        return [t for t in self.list_open() if is_sla_warning(t, now)]

    def list_for_episode(self, episode_id: str) -> list[EscalationTask]:
        db = self._session_factory()
        try:
            return (
                db.query(EscalationTask)
                .filter(EscalationTask.episode_id == episode_id)
                .order_by(EscalationTask.created_at)
                .all()
            )
        finally:
            db.close()
