"""
Agent API: the HTTP surface of the decision engine.

Endpoints:
    POST /api/agent/turn                      Handle one patient message
    GET  /api/escalations                     Open nurse tasks (with SLA flags)
    GET  /api/escalations/breached            Open tasks past their SLA
    POST /api/escalations/{task_id}/assign    Nurse picks up a task
    POST /api/escalations/{task_id}/resolve   Nurse closes a task
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from transitcare import dependencies
from transitcare.engine.errors import (
    InvalidTransitionError,
    ProtocolNotResolvableError,
    TaskNotFoundError,
)
from transitcare.engine.escalations import is_breached, is_sla_warning, minutes_remaining

logger = logging.getLogger("transitcare-server")

router = APIRouter(prefix="/api", tags=["Agent"])


# ── Request / Response Models ──

class TurnRequest(BaseModel):
    patient_id: str
    episode_id: str
    message: str = Field(min_length=1)
    condition_code: str
    interaction_id: Optional[str] = None
    education_tier: Optional[str] = None
    risk_level: Optional[str] = None


class TurnResponse(BaseModel):
    reply: str
    decision_hint: dict[str, Any]
    tool_results: list[dict[str, Any]] = []
    interaction_id: Optional[str] = None
    interaction_status: str
    signal_source: Optional[str] = None


class AssignRequest(BaseModel):
    operator_id: str


class ResolveRequest(BaseModel):
    outcome: str
    notes: str
    resolver_id: str


class EscalationView(BaseModel):
    id: str
    episode_id: str
    interaction_id: Optional[str] = None
    severity: str
    priority: str
    status: str
    reason_codes: list[str] = []
    assigned_to: Optional[str] = None
    sla_due_at: datetime
    created_at: datetime
    resolution_outcome: Optional[str] = None
    resolution_notes: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    breached: bool = False
    sla_warning: bool = False
    minutes_remaining: int = 0


def _view(task, now: datetime) -> EscalationView:
    return EscalationView(
        id=task.id,
        episode_id=task.episode_id,
        interaction_id=task.interaction_id,
        severity=task.severity,
        priority=task.priority,
        status=task.status,
        reason_codes=task.reason_codes or [],
        assigned_to=task.assigned_to,
        sla_due_at=task.sla_due_at,
        created_at=task.created_at,
        resolution_outcome=task.resolution_outcome,
        resolution_notes=task.resolution_notes,
        resolved_at=task.resolved_at,
        resolved_by=task.resolved_by,
        breached=is_breached(task, now),
        sla_warning=is_sla_warning(task, now),
        minutes_remaining=minutes_remaining(task, now),
    )


# ── Conversation ──

@router.post("/agent/turn", response_model=TurnResponse)
async def agent_turn(request: TurnRequest):
    handler = dependencies.get_turn_handler()
    try:
        result = await handler.handle_turn(
            patient_id=request.patient_id,
            episode_id=request.episode_id,
            patient_text=request.message,
            condition_code=request.condition_code,
            interaction_id=request.interaction_id,
            education_tier=request.education_tier,
            risk_level=request.risk_level,
        )
    except ProtocolNotResolvableError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return TurnResponse(
        reply=result.reply_text,
        decision_hint=result.decision_hint.model_dump(mode="json"),
        tool_results=[r.model_dump(mode="json") for r in result.tool_results],
        interaction_id=result.interaction_id,
        interaction_status=result.interaction_status.value,
        signal_source=result.signal.source if result.signal else None,
    )


# ── Escalations ──

@router.get("/escalations", response_model=list[EscalationView])
async def list_escalations():
    manager = dependencies.get_escalation_manager()
    now = manager.now()
    return [_view(t, now) for t in manager.list_open()]


@router.get("/escalations/breached", response_model=list[EscalationView])
async def list_breached_escalations():
    manager = dependencies.get_escalation_manager()
    now = manager.now()
    return [_view(t, now) for t in manager.list_breached(now)]


@router.post("/escalations/{task_id}/assign", response_model=EscalationView)
async def assign_escalation(task_id: str, request: AssignRequest):
    manager = dependencies.get_escalation_manager()
    try:
        task = manager.assign(task_id, request.operator_id)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _view(task, manager.now())


@router.post("/escalations/{task_id}/resolve", response_model=EscalationView)
async def resolve_escalation(task_id: str, request: ResolveRequest):
    manager = dependencies.get_escalation_manager()
    try:
        task = manager.resolve(task_id, request.outcome, request.notes, request.resolver_id)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    logger.info("Escalation %s resolved via API", task_id)
    return _view(task, manager.now())
