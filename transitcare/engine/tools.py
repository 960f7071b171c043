"""
Tool Dispatcher: executes the tool calls committed for a turn.

Vocabulary (parameter names as the composition model emits them):

  raise_flag(flagType, severity, rationale)   one escalation at that severity
  handoff_to_nurse(reason, flagType)          one CRITICAL / URGENT escalation
  ask_more(questions)                         no persistent effect
  log_checkin(result, summary)                no persistent effect

Calls run sequentially.  A failing call becomes a failed ToolResult and the
remaining calls still run.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import BaseModel, Field

from transitcare.engine.enums import Severity, parse_severity
from transitcare.engine.escalations import EscalationTaskManager

logger = logging.getLogger("engine.tools")

RAISE_FLAG = "raise_flag"
HANDOFF_TO_NURSE = "handoff_to_nurse"
ASK_MORE = "ask_more"
LOG_CHECKIN = "log_checkin"

TOOL_VOCABULARY = frozenset({RAISE_FLAG, HANDOFF_TO_NURSE, ASK_MORE, LOG_CHECKIN})

# Tools whose dispatch ends the current interaction
TERMINAL_TOOLS = frozenset({RAISE_FLAG, HANDOFF_TO_NURSE, LOG_CHECKIN})


class ToolCall(BaseModel):
    name: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    tool: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    success: bool
    task_id: Optional[str] = None
    error: Optional[str] = None


def _param(params: dict[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        value = params.get(name)
        if value not in (None, ""):
            return value
    return default


class ToolDispatcher:
    def __init__(self, escalations: EscalationTaskManager) -> None:
        self._escalations = escalations
        self._handlers = {
            RAISE_FLAG: self._raise_flag,
            HANDOFF_TO_NURSE: self._handoff_to_nurse,
            ASK_MORE: self._no_effect,
            LOG_CHECKIN: self._no_effect,
        }

    def dispatch(
        self,
        calls: list[ToolCall],
        episode_id: str,
        interaction_id: str | None = None,
    ) -> list[ToolResult]:
        results: list[ToolResult] = []
        for call in calls:
            handler = self._handlers.get(call.name)
            if handler is None:
                logger.warning("Unknown tool %r requested, skipping", call.name)
                results.append(ToolResult(
                    tool=call.name, parameters=call.parameters,
                    success=False, error=f"unknown tool {call.name}",
                ))
                continue
            try:
                task_id = handler(call.parameters, episode_id, interaction_id)
                results.append(ToolResult(
                    tool=call.name, parameters=call.parameters,
                    success=True, task_id=task_id,
                ))
            except Exception as exc:
                logger.exception("Tool %s failed for episode %s", call.name, episode_id)
                results.append(ToolResult(
                    tool=call.name, parameters=call.parameters,
                    success=False, error=str(exc),
                ))
        return results

    # ── Handlers ──

    def _raise_flag(self, params: dict, episode_id: str, interaction_id: str | None) -> str:
        severity = parse_severity(_param(params, "severity"), default=Severity.MODERATE)
        if severity == Severity.NONE:
            severity = Severity.MODERATE
        flag_type = _param(params, "flagType", "flag_type", default="AGENT_FLAG")
        rationale = _param(params, "rationale", "reason")
        task = self._escalations.create(
            episode_id=episode_id,
            severity=severity,
            reason_codes=[str(flag_type)] + ([str(rationale)] if rationale else []),
            interaction_id=interaction_id,
        )
        return task.id

    def _handoff_to_nurse(self, params: dict, episode_id: str, interaction_id: str | None) -> str:
        flag_type = _param(params, "flagType", "flag_type", default="NURSE_HANDOFF")
        reason = _param(params, "reason", "rationale", default="Patient requires nurse review")
        task = self._escalations.create(
            episode_id=episode_id,
            severity=Severity.CRITICAL,
            reason_codes=[str(flag_type), str(reason)],
            interaction_id=interaction_id,
        )
        return task.id

    @staticmethod
    def _no_effect(params: dict, episode_id: str, interaction_id: str | None) -> None:
        return None
