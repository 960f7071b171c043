"""
Enumerations shared by every engine component, plus the severity-indexed
lookup tables (task priority, SLA window, risk-level rule filter).
"""

from __future__ import annotations

from enum import Enum


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Clinical context
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ConditionCode(str, Enum):
    HF = "HF"        # heart failure
    COPD = "COPD"
    AMI = "AMI"      # acute myocardial infarction
    PNA = "PNA"      # pneumonia
    OTHER = "OTHER"


class EducationTier(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class Severity(str, Enum):
    NONE = "NONE"
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# Ordering used when sorting work queues (most urgent first)
SEVERITY_RANK: dict[Severity, int] = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MODERATE: 2,
    Severity.LOW: 1,
    Severity.NONE: 0,
}


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Escalation tasks
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TaskPriority(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class TaskStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"


class ResolutionOutcome(str, Enum):
    EDUCATION_ONLY = "EDUCATION_ONLY"
    MEDICATION_ADJUSTMENT = "MEDICATION_ADJUSTMENT"
    TELEVISIT_SCHEDULED = "TELEVISIT_SCHEDULED"
    SENT_TO_ED = "SENT_TO_ED"
    NO_CONTACT = "NO_CONTACT"
    FALSE_POSITIVE = "FALSE_POSITIVE"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Conversation
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class InteractionStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    ESCALATED = "ESCALATED"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Lookup tables
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

SLA_MINUTES: dict[Severity, int] = {
    Severity.CRITICAL: 30,
    Severity.HIGH: 120,
    Severity.MODERATE: 240,
    Severity.LOW: 480,
}
DEFAULT_SLA_MINUTES = 480

PRIORITY_BY_SEVERITY: dict[Severity, TaskPriority] = {
    Severity.CRITICAL: TaskPriority.URGENT,
    Severity.HIGH: TaskPriority.HIGH,
    Severity.MODERATE: TaskPriority.NORMAL,
    Severity.LOW: TaskPriority.LOW,
    Severity.NONE: TaskPriority.LOW,
}

# Red-flag severities kept in a protocol for a given episode risk level
SEVERITY_FILTER_BY_RISK: dict[RiskLevel, frozenset[Severity]] = {
    RiskLevel.HIGH: frozenset({
        Severity.CRITICAL, Severity.HIGH, Severity.MODERATE, Severity.LOW,
    }),
    RiskLevel.MEDIUM: frozenset({Severity.CRITICAL, Severity.HIGH}),
    RiskLevel.LOW: frozenset({Severity.CRITICAL}),
}

CONDITION_ALIASES: dict[str, ConditionCode] = {
    "HEART FAILURE": ConditionCode.HF,
    "HEART_FAILURE": ConditionCode.HF,
    "CHF": ConditionCode.HF,
    "POST MI": ConditionCode.AMI,
    "POST_MI": ConditionCode.AMI,
    "MI": ConditionCode.AMI,
    "HEART ATTACK": ConditionCode.AMI,
    "PNEUMONIA": ConditionCode.PNA,
}

CONDITION_NAMES: dict[ConditionCode, str] = {
    ConditionCode.HF: "Heart Failure",
    ConditionCode.COPD: "Chronic Obstructive Pulmonary Disease",
    ConditionCode.AMI: "Acute Myocardial Infarction",
    ConditionCode.PNA: "Pneumonia",
    ConditionCode.OTHER: "General post-discharge recovery",
}


def sla_minutes_for(severity: Severity | str | None) -> int:
    """SLA window for a severity. Unmapped severities get the longest window."""
    parsed = parse_severity(severity)
    if parsed is None:
        return DEFAULT_SLA_MINUTES
    return SLA_MINUTES.get(parsed, DEFAULT_SLA_MINUTES)


def priority_for(severity: Severity) -> TaskPriority:
    return PRIORITY_BY_SEVERITY.get(severity, TaskPriority.LOW)


def parse_severity(value: object, default: Severity | None = None) -> Severity | None:
    """Case-insensitive severity parse.  Returns ``default`` when unrecognised."""
    if isinstance(value, Severity):
        return value
    if not isinstance(value, str):
        return default
    try:
        return Severity(value.strip().upper())
    except ValueError:
        return default


def parse_condition(value: object) -> ConditionCode | None:
    """Resolve a condition code or alias ("heart failure", "chf").  None if unknown."""
    if isinstance(value, ConditionCode):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    key = value.strip().upper().replace("-", " ")
    try:
        return ConditionCode(key)
    except ValueError:
        pass
    return CONDITION_ALIASES.get(key) or CONDITION_ALIASES.get(key.replace(" ", "_"))


def parse_education_tier(value: object) -> EducationTier:
    if isinstance(value, EducationTier):
        return value
    try:
        return EducationTier(str(value).strip().upper())
    except ValueError:
        return EducationTier.MEDIUM


def parse_risk_level(value: object) -> RiskLevel | None:
    if isinstance(value, RiskLevel):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return RiskLevel(value.strip().upper())
    except ValueError:
        return None
