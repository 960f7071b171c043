"""
Tests for the Escalation Task Manager: severity-indexed SLA deadlines,
the OPEN → IN_PROGRESS → RESOLVED lifecycle, and read-time breach / warning.
"""

from datetime import timedelta

import pytest

from transitcare.engine.enums import ResolutionOutcome, Severity, TaskStatus, sla_minutes_for
from transitcare.engine.errors import InvalidTransitionError, TaskNotFoundError
from transitcare.engine.escalations import is_breached, is_sla_warning, minutes_remaining


# ────────────────────────────── SLA table ──────────────────────────────


class TestSlaTable:

    @pytest.mark.parametrize("severity,minutes", [
        (Severity.CRITICAL, 30),
        (Severity.HIGH, 120),
        (Severity.MODERATE, 240),
        (Severity.LOW, 480),
        ("critical", 30),
        (Severity.NONE, 480),
        ("unknown", 480),
        (None, 480),
    ])
    def test_minutes(self, severity, minutes):
        assert sla_minutes_for(severity) == minutes


# ────────────────────────────── Creation ──────────────────────────────


class TestCreate:

    def test_critical_due_in_30_minutes(self, escalations, clock):
        task = escalations.create("EP-1", Severity.CRITICAL, ["HF_CHEST_PAIN"])
        assert task.status == TaskStatus.OPEN.value
        assert task.created_at == clock.current
        assert task.sla_due_at == clock.current + timedelta(minutes=30)
        assert task.priority == "URGENT"

    def test_string_severity_accepted(self, escalations, clock):
        task = escalations.create("EP-1", "high", ["X"])
        assert task.severity == "HIGH"
        assert task.sla_due_at == clock.current + timedelta(minutes=120)

    def test_empty_reason_codes_dropped(self, escalations):
        task = escalations.create("EP-1", Severity.LOW, ["A", "", None])
        assert task.reason_codes == ["A"]

    def test_get_unknown_raises(self, escalations):
        with pytest.raises(TaskNotFoundError):
            escalations.get("no-such-task")


# ────────────────────────────── Assignment ──────────────────────────────


class TestAssign:

    def test_assign_moves_to_in_progress(self, escalations, clock):
        task = escalations.create("EP-1", Severity.HIGH, ["X"])
        clock.advance(minutes=5)
        assigned = escalations.assign(task.id, "nurse-1")
        assert assigned.status == TaskStatus.IN_PROGRESS.value
        assert assigned.assigned_to == "nurse-1"
        assert assigned.picked_up_at == clock.current

    def test_reassign_is_noop(self, escalations, clock):
        task = escalations.create("EP-1", Severity.HIGH, ["X"])
        first = escalations.assign(task.id, "nurse-1")
        clock.advance(minutes=5)
        second = escalations.assign(task.id, "nurse-2")
        assert second.assigned_to == "nurse-1"
        assert second.picked_up_at == first.picked_up_at
        assert second.status == TaskStatus.IN_PROGRESS.value

    def test_assign_resolved_task_rejected(self, escalations):
        task = escalations.create("EP-1", Severity.LOW, ["X"])
        escalations.resolve(task.id, ResolutionOutcome.NO_CONTACT, "Voicemail", "nurse-1")
        with pytest.raises(InvalidTransitionError):
            escalations.assign(task.id, "nurse-2")

    def test_assign_unknown_task(self, escalations):
        with pytest.raises(TaskNotFoundError):
            escalations.assign("missing", "nurse-1")


# ────────────────────────────── Resolution ──────────────────────────────


class TestResolve:

    def test_resolve_from_open(self, escalations, clock):
        task = escalations.create("EP-1", Severity.MODERATE, ["X"])
        clock.advance(minutes=10)
        resolved = escalations.resolve(task.id, "education_only", "  Reviewed diet  ", "nurse-1")
        assert resolved.status == TaskStatus.RESOLVED.value
        assert resolved.resolution_outcome == "EDUCATION_ONLY"
        assert resolved.resolution_notes == "Reviewed diet"
        assert resolved.resolved_by == "nurse-1"
        assert resolved.resolved_at == clock.current

    def test_resolve_from_in_progress(self, escalations):
        task = escalations.create("EP-1", Severity.HIGH, ["X"])
        escalations.assign(task.id, "nurse-1")
        resolved = escalations.resolve(task.id, ResolutionOutcome.SENT_TO_ED, "Sent to ED", "nurse-1")
        assert resolved.resolution_outcome == "SENT_TO_ED"

    @pytest.mark.parametrize("outcome", [None, "", "CURED"])
    def test_invalid_outcome_rejected(self, escalations, outcome):
        task = escalations.create("EP-1", Severity.HIGH, ["X"])
        with pytest.raises(InvalidTransitionError):
            escalations.resolve(task.id, outcome, "notes", "nurse-1")
        assert escalations.get(task.id).status == TaskStatus.OPEN.value

    def test_notes_required(self, escalations):
        task = escalations.create("EP-1", Severity.HIGH, ["X"])
        with pytest.raises(InvalidTransitionError):
            escalations.resolve(task.id, ResolutionOutcome.FALSE_POSITIVE, "   ", "nurse-1")

    def test_resolved_is_terminal(self, escalations):
        task = escalations.create("EP-1", Severity.HIGH, ["X"])
        escalations.resolve(task.id, ResolutionOutcome.FALSE_POSITIVE, "Not a concern", "nurse-1")
        with pytest.raises(InvalidTransitionError):
            escalations.resolve(task.id, ResolutionOutcome.EDUCATION_ONLY, "again", "nurse-2")

    def test_resolve_unknown_task(self, escalations):
        with pytest.raises(TaskNotFoundError):
            escalations.resolve("missing", ResolutionOutcome.NO_CONTACT, "n/a", "nurse-1")


# ────────────────────────────── Breach / warning ──────────────────────────────


class TestSlaState:

    def test_breach_is_derived_from_clock(self, escalations, clock):
        task = escalations.create("EP-1", Severity.CRITICAL, ["X"])
        assert escalations.is_breached(task) is False

        clock.advance(minutes=31)
        assert escalations.is_breached(task) is True
        assert [t.id for t in escalations.list_breached()] == [task.id]

    def test_exact_deadline_not_breached(self, escalations, clock):
        task = escalations.create("EP-1", Severity.CRITICAL, ["X"])
        assert is_breached(task, task.sla_due_at) is False
        assert is_breached(task, task.sla_due_at + timedelta(seconds=1)) is True

    def test_resolved_never_breached(self, escalations, clock):
        task = escalations.create("EP-1", Severity.CRITICAL, ["X"])
        clock.advance(hours=2)
        resolved = escalations.resolve(task.id, ResolutionOutcome.NO_CONTACT, "late", "nurse-1")
        assert escalations.is_breached(resolved) is False
        assert escalations.list_breached() == []

    def test_warning_at_75_percent(self, escalations, clock):
        task = escalations.create("EP-1", Severity.HIGH, ["X"])   # 120 minute window
        assert is_sla_warning(task, clock.current + timedelta(minutes=89)) is False
        assert is_sla_warning(task, clock.current + timedelta(minutes=90)) is True
        assert is_sla_warning(task, clock.current + timedelta(minutes=121)) is False

    def test_list_approaching(self, escalations, clock):
        soon = escalations.create("EP-1", Severity.CRITICAL, ["X"])
        escalations.create("EP-2", Severity.LOW, ["Y"])
        clock.advance(minutes=25)
        assert [t.id for t in escalations.list_approaching()] == [soon.id]

    def test_minutes_remaining(self, escalations, clock):
        task = escalations.create("EP-1", Severity.HIGH, ["X"])
        assert minutes_remaining(task, clock.current + timedelta(minutes=20)) == 100


class TestQueues:

    def test_open_ordered_by_severity_then_deadline(self, escalations, clock):
        low = escalations.create("EP-1", Severity.LOW, ["A"])
        high_early = escalations.create("EP-2", Severity.HIGH, ["B"])
        clock.advance(minutes=10)
        critical = escalations.create("EP-3", Severity.CRITICAL, ["C"])
        high_late = escalations.create("EP-4", Severity.HIGH, ["D"])
        resolved = escalations.create("EP-5", Severity.CRITICAL, ["E"])
        escalations.resolve(resolved.id, ResolutionOutcome.FALSE_POSITIVE, "dup", "nurse-1")

        assert [t.id for t in escalations.list_open()] == [
            critical.id, high_early.id, high_late.id, low.id,
        ]

    def test_list_for_episode(self, escalations, clock):
        first = escalations.create("EP-9", Severity.LOW, ["A"])
        clock.advance(minutes=1)
        second = escalations.create("EP-9", Severity.HIGH, ["B"])
        escalations.create("EP-10", Severity.HIGH, ["C"])
        assert [t.id for t in escalations.list_for_episode("EP-9")] == [first.id, second.id]
