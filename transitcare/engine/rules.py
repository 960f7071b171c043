"""
Rules DSL: parsing protocol documents into a validated rule set.

A protocol document has two ordered lists plus optional extras::

    {
      "red_flags": [
        {"if": {"any_text": ["chest pain", "can't breathe"]},
         "flag": {"type": "HF_CHEST_PAIN", "severity": "critical",
                  "message": "Chest pain reported"}},
        {"if": {"pain_score_gte": 8},
         "flag": {"type": "SEVERE_PAIN", "severity": "high"}}
      ],
      "closures": [
        {"if": {"no_symptoms": true}, "then": {"message": "Doing well"}}
      ],
      "vocabulary": ["gained weight"],
      "config": {"critical_confidence_threshold": 0.9,
                 "route_medication_questions_to_info": true,
                 "enable_sentiment_boost": true,
                 "distressed_severity_upgrade": "critical"}
    }

``vocabulary`` lists generic phrases the extractor may normalise to (the
non-numeric twin of "gained 3 pounds") without any rule matching them.

Each ``if`` object carries exactly one predicate family:

  TextMatch         any_text
  NumericThreshold  pain_score_gte / pain_score_lte / temperature_gte / temperature_lte
  BooleanCheck      no_symptoms / feeling_well / weight_stable /
                    medication_adherent / temperature_normal /
                    breathing_stable / no_exacerbation / no_complications

``feeling_well`` holds only for a positive reading with no symptoms or
complications; a negated "not doing well" never satisfies it.

Documents are parsed once at load time.  A rule with an unknown or
ambiguous predicate is dropped with a warning (treated as absent) so one
bad row never takes down the whole protocol.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Union

from transitcare.engine.enums import (
    SEVERITY_FILTER_BY_RISK,
    RiskLevel,
    Severity,
    parse_severity,
)
from transitcare.engine.errors import RuleParseError

logger = logging.getLogger("engine.rules")

NUMERIC_KEYS: dict[str, tuple[str, str]] = {
    "pain_score_gte": ("pain_score", ">="),
    "pain_score_lte": ("pain_score", "<="),
    "temperature_gte": ("temperature", ">="),
    "temperature_lte": ("temperature", "<="),
}

BOOLEAN_KEYS = frozenset({
    "no_symptoms",
    "feeling_well",
    "weight_stable",
    "medication_adherent",
    "temperature_normal",
    "breathing_stable",
    "no_exacerbation",
    "no_complications",
})

TEXT_KEYS = frozenset({"any_text"})

_DIGIT = re.compile(r"\d")
_WORD = re.compile(r"[a-z']+")
_UNIT_WORDS = frozenset({"pounds", "pound", "lbs", "lb", "kg", "degrees", "a", "of", "in"})


def is_numeric_pattern(pattern: str) -> bool:
    return bool(_DIGIT.search(pattern))


def pattern_keywords(pattern: str) -> frozenset[str]:
    """Content words of a pattern with numbers and units removed ("gained 3 pounds" → {"gained"})."""
    return frozenset(w for w in _WORD.findall(pattern.lower()) if w not in _UNIT_WORDS)


def generic_pattern_for(numeric_pattern: str, patterns: list[str]) -> str | None:
    """
    Best non-numeric pattern sharing keywords with a numeric one.

    "gained 3 pounds" → "gained weight" when both are protocol patterns.
    """
    keywords = pattern_keywords(numeric_pattern)
    best, best_overlap = None, 0
    for pattern in patterns:
        if is_numeric_pattern(pattern):
            continue
        overlap = len(keywords & set(_WORD.findall(pattern.lower())))
        if overlap > best_overlap:
            best, best_overlap = pattern, overlap
    return best


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Predicate kinds
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass(frozen=True)
class TextMatch:
    patterns: tuple[str, ...]


@dataclass(frozen=True)
class NumericThreshold:
    field: Literal["pain_score", "temperature"]
    op: Literal[">=", "<="]
    threshold: float


@dataclass(frozen=True)
class BooleanCheck:
    check: str
    expected: bool = True


Predicate = Union[TextMatch, NumericThreshold, BooleanCheck]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Rules
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass(frozen=True)
class RedFlagRule:
    predicate: Predicate
    flag_type: str
    severity: Severity
    message: str = ""
    follow_up: tuple[str, ...] = ()


@dataclass(frozen=True)
class ClosureRule:
    predicate: Predicate
    message: str = "Patient is doing well"


@dataclass(frozen=True)
class EvaluatorConfig:
    """Optional per-protocol tuning of the pre-rule overrides."""

    critical_confidence_threshold: Optional[float] = None
    low_confidence_threshold: Optional[float] = None
    vague_symptoms: tuple[str, ...] = ()
    route_medication_questions_to_info: bool = False
    route_general_questions_to_info: bool = False
    # Severity a matched red flag is raised to when the patient is distressed
    distressed_severity_upgrade: Optional[Severity] = None


@dataclass(frozen=True)
class RuleSet:
    red_flags: tuple[RedFlagRule, ...] = ()
    closures: tuple[ClosureRule, ...] = ()
    config: EvaluatorConfig = field(default_factory=EvaluatorConfig)
    # Generic phrases the extractor may normalise to without any rule firing on them
    vocabulary: tuple[str, ...] = ()

    @property
    def patterns(self) -> list[str]:
        """Every any_text pattern in document order (red flags first), then the vocabulary, deduplicated."""
        seen: list[str] = []
        for rule in [*self.red_flags, *self.closures]:
            if isinstance(rule.predicate, TextMatch):
                for p in rule.predicate.patterns:
                    if p not in seen:
                        seen.append(p)
        for p in self.vocabulary:
            if p not in seen:
                seen.append(p)
        return seen

    @property
    def numeric_patterns(self) -> list[str]:
        return [p for p in self.patterns if is_numeric_pattern(p)]

    def for_risk_level(self, risk_level: RiskLevel | None) -> RuleSet:
        """Keep only red flags whose severity is monitored at this risk level."""
        if risk_level is None:
            return self
        allowed = SEVERITY_FILTER_BY_RISK[risk_level]
        return RuleSet(
            red_flags=tuple(r for r in self.red_flags if r.severity in allowed),
            closures=self.closures,
            config=self.config,
            vocabulary=self.vocabulary,
        )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Parsing
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def parse_predicate(condition: Any) -> Predicate:
    """Parse one ``if`` object.  Raises RuleParseError on any shape problem."""
    if not isinstance(condition, dict) or not condition:
        raise RuleParseError(f"condition must be a non-empty object, got {condition!r}")
    if len(condition) != 1:
        raise RuleParseError(
            f"condition must carry exactly one predicate, got {sorted(condition)}"
        )

    key, value = next(iter(condition.items()))

    if key in TEXT_KEYS:
        if not isinstance(value, list) or not value:
            raise RuleParseError("any_text must be a non-empty list of strings")
        patterns = tuple(str(p).strip().lower() for p in value if str(p).strip())
        if not patterns:
            raise RuleParseError("any_text has no usable patterns")
        return TextMatch(patterns=patterns)

    if key in NUMERIC_KEYS:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise RuleParseError(f"{key} must be numeric, got {value!r}")
        field_name, op = NUMERIC_KEYS[key]
        return NumericThreshold(field=field_name, op=op, threshold=float(value))

    if key in BOOLEAN_KEYS:
        if not isinstance(value, bool):
            raise RuleParseError(f"{key} must be true or false, got {value!r}")
        return BooleanCheck(check=key, expected=value)

    raise RuleParseError(f"unknown predicate {key!r}")


def _parse_red_flag(raw: Any) -> RedFlagRule:
    if not isinstance(raw, dict):
        raise RuleParseError("red flag rule must be an object")
    predicate = parse_predicate(raw.get("if"))
    flag = raw.get("flag")
    if not isinstance(flag, dict) or not flag.get("type"):
        raise RuleParseError("red flag rule needs flag.type")
    severity = parse_severity(flag.get("severity"))
    if severity is None:
        raise RuleParseError(f"invalid severity {flag.get('severity')!r}")
    follow_up = flag.get("follow_up") or []
    return RedFlagRule(
        predicate=predicate,
        flag_type=str(flag["type"]),
        severity=severity,
        message=str(flag.get("message") or ""),
        follow_up=tuple(str(q) for q in follow_up if isinstance(q, str)),
    )


def _parse_closure(raw: Any) -> ClosureRule:
    if not isinstance(raw, dict):
        raise RuleParseError("closure rule must be an object")
    predicate = parse_predicate(raw.get("if"))
    then = raw.get("then") if isinstance(raw.get("then"), dict) else {}
    return ClosureRule(
        predicate=predicate,
        message=str(then.get("message") or "Patient is doing well"),
    )


def _parse_config(raw: Any) -> EvaluatorConfig:
    if not isinstance(raw, dict):
        return EvaluatorConfig()

    def _threshold(key: str) -> Optional[float]:
        value = raw.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and 0 <= value <= 1:
            return float(value)
        return None

    upgrade = None
    if raw.get("enable_sentiment_boost") is True:
        upgrade = parse_severity(raw.get("distressed_severity_upgrade"))
        if upgrade is None:
            logger.warning(
                "enable_sentiment_boost set without a valid distressed_severity_upgrade (%r), ignoring",
                raw.get("distressed_severity_upgrade"),
            )

    vague = raw.get("vague_symptoms") or []
    return EvaluatorConfig(
        critical_confidence_threshold=_threshold("critical_confidence_threshold"),
        low_confidence_threshold=_threshold("low_confidence_threshold"),
        vague_symptoms=tuple(str(v).lower() for v in vague if isinstance(v, str)),
        route_medication_questions_to_info=raw.get("route_medication_questions_to_info") is True,
        route_general_questions_to_info=raw.get("route_general_questions_to_info") is True,
        distressed_severity_upgrade=upgrade,
    )


def _parse_vocabulary(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(str(p).strip().lower() for p in raw if isinstance(p, str) and p.strip())


def parse_rules(document: Any) -> RuleSet:
    """
    Parse a protocol document (dict or JSON string) into a RuleSet.

    Malformed documents yield an empty RuleSet; malformed rules are skipped.
    """
    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except (TypeError, ValueError) as exc:
            logger.warning("Protocol document is not valid JSON: %s", exc)
            return RuleSet()

    if not isinstance(document, dict):
        logger.warning("Protocol document must be an object, got %s", type(document).__name__)
        return RuleSet()

    red_flags: list[RedFlagRule] = []
    closures: list[ClosureRule] = []

    raw_flags = document.get("red_flags") or []
    raw_closures = document.get("closures") or []
    if not isinstance(raw_flags, list):
        logger.warning("red_flags is not a list, ignoring")
        raw_flags = []
    if not isinstance(raw_closures, list):
        logger.warning("closures is not a list, ignoring")
        raw_closures = []

    for i, raw in enumerate(raw_flags):
        try:
            red_flags.append(_parse_red_flag(raw))
        except RuleParseError as exc:
            logger.warning("Skipping red_flags[%d]: %s", i, exc)

    for i, raw in enumerate(raw_closures):
        try:
            closures.append(_parse_closure(raw))
        except RuleParseError as exc:
            logger.warning("Skipping closures[%d]: %s", i, exc)

    return RuleSet(
        red_flags=tuple(red_flags),
        closures=tuple(closures),
        config=_parse_config(document.get("config")),
        vocabulary=_parse_vocabulary(document.get("vocabulary")),
    )
