"""
Engine exception hierarchy.

Collaborator failures (extraction / composition) are always recovered
locally by a deterministic fallback; only protocol-precondition and
escalation-lifecycle errors reach the caller.
"""

from __future__ import annotations


class EngineError(Exception):
    pass


class ExtractionError(EngineError):
    """The text-understanding collaborator failed or returned malformed output."""


class CompositionError(EngineError):
    """The generative composition collaborator failed."""


class ComposerContractError(CompositionError):
    """Composer returned tool calls without any patient-facing text."""


class ProtocolNotResolvableError(EngineError):
    """The episode has no resolvable condition, so no protocol can govern it."""


class RuleParseError(EngineError):
    """A rules-DSL entry has an unknown or ambiguous predicate shape."""


class TaskNotFoundError(EngineError):
    pass


class InvalidTransitionError(EngineError):
    """Escalation task lifecycle violation (backward move, missing outcome...)."""


class InteractionNotFoundError(EngineError):
    pass
