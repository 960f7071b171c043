"""
Protocol Store Accessor: the active rules document for an episode.

Every episode has at most one active ProtocolAssignment.  It is created
lazily on the first interaction from the default library below (keyed by
condition, calibrated by education tier) and then reused for the rest of
the episode.  Creation is idempotent: if two turns race to create the
assignment, the loser catches the unique-index violation and returns the
winner's row.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from transitcare.db.models import ProtocolAssignment
from transitcare.engine.enums import (
    ConditionCode,
    EducationTier,
    RiskLevel,
    parse_condition,
    parse_education_tier,
    parse_risk_level,
)
from transitcare.engine.errors import ProtocolNotResolvableError
from transitcare.engine.rules import RuleSet, parse_rules

logger = logging.getLogger("engine.protocols")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Default rule library
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

_VAGUE = ["discomfort", "feeling off", "off", "weird", "not right"]


def _flag(patterns_or_predicate: Any, flag_type: str, severity: str, message: str,
          follow_up: list[str] | None = None) -> dict:
    predicate = (
        {"any_text": patterns_or_predicate}
        if isinstance(patterns_or_predicate, list)
        else patterns_or_predicate
    )
    flag = {"type": flag_type, "severity": severity, "message": message}
    if follow_up:
        flag["follow_up"] = follow_up
    return {"if": predicate, "flag": flag}


def _closure(predicate: Any, message: str) -> dict:
    if isinstance(predicate, list):
        predicate = {"any_text": predicate}
    return {"if": predicate, "then": {"message": message}}


DEFAULT_PROTOCOLS: dict[ConditionCode, dict] = {
    ConditionCode.HF: {
        "red_flags": [
            _flag(["chest pain", "can't breathe", "cannot breathe", "fainted", "passed out"],
                  "HF_CHEST_PAIN", "critical",
                  "Chest pain or severe breathing difficulty reported"),
            _flag(["gained 2 pounds", "gained 3 pounds", "gained 4 pounds", "gained 5 pounds"],
                  "HF_WEIGHT_GAIN", "high", "Rapid weight gain reported",
                  ["When did you last weigh yourself?", "Are your ankles or legs swollen?"]),
            _flag(["short of breath", "shortness of breath", "can't lie flat", "swelling", "swollen"],
                  "HF_FLUID_OVERLOAD", "high", "Possible fluid overload"),
            _flag({"pain_score_gte": 8}, "HF_SEVERE_PAIN", "high", "Severe pain reported"),
            _flag(["dizzy", "lightheaded"],
                  "HF_SYMPTOM_CHANGE", "moderate", "New symptom reported"),
            _flag({"medication_adherent": False}, "HF_MISSED_MEDICATION", "moderate",
                  "Missed heart failure medication"),
        ],
        "closures": [
            _closure({"feeling_well": True}, "Patient reports feeling well"),
            _closure({"weight_stable": True}, "Weight stable, no new symptoms"),
        ],
        "vocabulary": ["gained weight"],
    },
    ConditionCode.COPD: {
        "red_flags": [
            _flag(["can't breathe", "cannot breathe", "blue lips", "confused", "chest pain"],
                  "COPD_RESPIRATORY_DISTRESS", "critical", "Severe breathing difficulty reported"),
            _flag({"breathing_stable": False}, "COPD_BREATHING_WORSE", "high",
                  "Breathing worse than usual"),
            _flag({"no_exacerbation": False}, "COPD_EXACERBATION", "high",
                  "Possible COPD flare-up"),
            _flag(["green mucus", "yellow mucus", "rescue inhaler", "wheezing"],
                  "COPD_SPUTUM_CHANGE", "high", "Change in sputum or increased inhaler use"),
            _flag({"temperature_gte": 100.4}, "COPD_FEVER", "moderate", "Fever reported"),
            _flag({"medication_adherent": False}, "COPD_MISSED_MEDICATION", "moderate",
                  "Missed COPD medication"),
        ],
        "closures": [
            _closure({"feeling_well": True}, "Patient reports feeling well"),
            _closure({"breathing_stable": True}, "Breathing at baseline"),
        ],
    },
    ConditionCode.AMI: {
        "red_flags": [
            _flag(["chest pain", "chest pressure", "can't breathe", "pain in my arm", "jaw pain",
                   "fainted", "passed out"],
                  "AMI_CHEST_PAIN", "critical", "Possible cardiac symptoms reported"),
            _flag({"pain_score_gte": 7}, "AMI_SEVERE_PAIN", "high", "Severe pain reported"),
            _flag(["bleeding", "palpitations", "heart racing", "short of breath"],
                  "AMI_WARNING_SIGNS", "high", "Post-MI warning signs reported"),
            _flag({"medication_adherent": False}, "AMI_MISSED_MEDICATION", "high",
                  "Missed post-MI medication"),
            _flag(["dizzy", "swelling", "tired"],
                  "AMI_SYMPTOM_CHANGE", "moderate", "New symptom reported"),
        ],
        "closures": [
            _closure({"feeling_well": True}, "Patient reports feeling well"),
        ],
    },
    ConditionCode.PNA: {
        "red_flags": [
            _flag(["can't breathe", "cannot breathe", "confused", "chest pain", "blue lips"],
                  "PNA_RESPIRATORY_DISTRESS", "critical", "Severe breathing difficulty reported"),
            _flag({"temperature_gte": 102}, "PNA_HIGH_FEVER", "high", "High fever reported"),
            _flag(["coughing blood", "blood in"], "PNA_HEMOPTYSIS", "high",
                  "Blood in sputum reported"),
            _flag({"temperature_gte": 100.4}, "PNA_FEVER", "moderate", "Fever reported"),
            _flag(["short of breath", "cough getting worse"], "PNA_SYMPTOM_CHANGE", "low",
                  "Respiratory symptoms reported"),
        ],
        "closures": [
            _closure({"feeling_well": True}, "Patient reports feeling well"),
            _closure({"temperature_normal": True}, "Temperature normal"),
        ],
    },
}

# Patients at a lower reading level get clarifying questions sooner
LOW_CONFIDENCE_BY_TIER: dict[EducationTier, float] = {
    EducationTier.LOW: 0.7,
    EducationTier.MEDIUM: 0.6,
    EducationTier.HIGH: 0.5,
}


def default_protocol(condition: ConditionCode, tier: EducationTier) -> dict:
    """Rules document for a condition.  Raises ProtocolNotResolvableError if none exists."""
    base = DEFAULT_PROTOCOLS.get(condition)
    if base is None:
        raise ProtocolNotResolvableError(f"no protocol defined for condition {condition.value}")
    document = copy.deepcopy(base)
    document["config"] = {
        "critical_confidence_threshold": 0.9,
        "low_confidence_threshold": LOW_CONFIDENCE_BY_TIER[tier],
        "vague_symptoms": list(_VAGUE),
        "route_medication_questions_to_info": True,
        "route_general_questions_to_info": False,
        "enable_sentiment_boost": True,
        "distressed_severity_upgrade": "high",
    }
    return document


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Accessor
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass
class ActiveProtocol:
    """Detached view of an active assignment with its parsed rules."""

    assignment_id: int
    episode_id: str
    condition: ConditionCode
    education_tier: EducationTier
    risk_level: RiskLevel | None
    document: dict
    all_rules: RuleSet = field(default_factory=RuleSet)

    @property
    def rules(self) -> RuleSet:
        """Rules in force for this episode after the risk-level severity filter."""
        return self.all_rules.for_risk_level(self.risk_level)

    @property
    def patterns(self) -> list[str]:
        # The extractor sees every pattern so it can normalise to the generic ones too
        return self.all_rules.patterns


def _to_active(row: ProtocolAssignment) -> ActiveProtocol:
    risk = parse_risk_level(row.risk_level)
    if row.risk_level and risk is None:
        logger.warning("Assignment %s has unknown risk level %r", row.id, row.risk_level)
    return ActiveProtocol(
        assignment_id=row.id,
        episode_id=row.episode_id,
        condition=parse_condition(row.condition_code) or ConditionCode.OTHER,
        education_tier=parse_education_tier(row.education_tier),
        risk_level=risk,
        document=row.rules,
        all_rules=parse_rules(row.rules),
    )


class ProtocolStoreAccessor:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def load_active(self, episode_id: str) -> ActiveProtocol | None:
        db = self._session_factory()
        try:
            row = (
                db.query(ProtocolAssignment)
                .filter(ProtocolAssignment.episode_id == episode_id)
                .filter(ProtocolAssignment.is_active.is_(True))
                .first()
            )
            return _to_active(row) if row else None
        finally:
            db.close()

    def load_or_create(
        self,
        episode_id: str,
        condition_code: Any,
        education_tier: Any = None,
        risk_level: RiskLevel | str | None = None,
    ) -> ActiveProtocol:
        """
        Return the episode's active protocol, creating it on first use.

        Raises ProtocolNotResolvableError when no assignment exists and the
        condition does not resolve to a protocol in the default library.
        """
        existing = self.load_active(episode_id)
        if existing is not None:
            return existing

        condition = parse_condition(condition_code)
        if condition is None or condition not in DEFAULT_PROTOCOLS:
            raise ProtocolNotResolvableError(
                f"episode {episode_id} has no resolvable condition ({condition_code!r})"
            )
        tier = parse_education_tier(education_tier)
        risk = parse_risk_level(risk_level)

        db = self._session_factory()
        try:
            row = ProtocolAssignment(
                episode_id=episode_id,
                condition_code=condition.value,
                education_tier=tier.value,
                risk_level=risk.value if risk else None,
                rules=default_protocol(condition, tier),
                is_active=True,
            )
            db.add(row)
            db.commit()
            logger.info("Created %s protocol assignment for episode %s", condition.value, episode_id)
            return _to_active(row)
        except IntegrityError:
            db.rollback()
            logger.info("Assignment for episode %s created concurrently, reusing it", episode_id)
        finally:
            db.close()

        existing = self.load_active(episode_id)
        if existing is None:
            raise ProtocolNotResolvableError(f"could not load assignment for episode {episode_id}")
        return existing
