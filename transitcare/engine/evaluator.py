"""
Rule Evaluator: interprets a parsed RuleSet against one SignalRecord.

Order of evaluation:
  1. low-confidence clarification for vague readings (only if no red flag matches)
  2. red_flags in document order; first match returns FLAG, raised to the
     configured severity when a CRITICAL reading comes with distress
  3. critical-confidence escalation when the extractor itself judged the
     message CRITICAL but no rule caught it
  4. question routing (medication / general questions) when configured
  5. closures in document order; first match returns CLOSE
  6. ASK_MORE with condition-specific default questions

Flags always outrank closures: closures are never looked at once any red
flag has matched.  Evaluation is a pure function of its inputs.

Steps 1 and 3 trust the extractor's confidence, so they only apply to LLM
readings.  The keyword fallback's confidence is a random draw and never
decides a branch.
"""

from __future__ import annotations

import logging
import re

from transitcare.engine.enums import SEVERITY_RANK, ConditionCode, Severity
from transitcare.engine.rules import (
    BooleanCheck,
    NumericThreshold,
    Predicate,
    RuleSet,
    TextMatch,
    is_numeric_pattern,
    pattern_keywords,
)
from transitcare.engine.signals import AskMoreHint, CloseHint, FlagHint, SignalRecord

logger = logging.getLogger("engine.evaluator")

FEVER_THRESHOLD_F = 100.4

# Plausible body temperatures; anything else is not a temperature reading
CELSIUS_RANGE = (35.0, 43.0)
FAHRENHEIT_RANGE = (95.0, 110.0)

_DIGIT = re.compile(r"\d")
_WORD = re.compile(r"[a-z']+")

MAX_QUESTIONS = 3

MEDICATION_INFO_QUESTION = "I can help with that. Can you tell me more about your medication question?"
GENERAL_INFO_QUESTION = "I can help with that. Can you tell me more about your question?"


def to_fahrenheit(value: float | None) -> float | None:
    """Body temperature in °F, or None when the value is not a plausible reading."""
    if value is None:
        return None
    if CELSIUS_RANGE[0] <= value <= CELSIUS_RANGE[1]:
        return value * 9 / 5 + 32
    if FAHRENHEIT_RANGE[0] <= value <= FAHRENHEIT_RANGE[1]:
        return value
    return None


def _has_number(signal: SignalRecord) -> bool:
    return bool(_DIGIT.search(signal.raw_text) or _DIGIT.search(signal.normalized_text))


def _withheld_numeric_pattern(predicate: Predicate, signal: SignalRecord) -> str | None:
    """
    The numeric pattern this predicate would have matched had the patient
    given a number: every content word of the pattern is present
    ("gained 3 pounds" vs "I gained a little weight") but no number is.
    """
    if not isinstance(predicate, TextMatch) or _has_number(signal):
        return None
    words = set(_WORD.findall(signal.text_corpus()))
    for pattern in predicate.patterns:
        if not is_numeric_pattern(pattern):
            continue
        keywords = pattern_keywords(pattern)
        if keywords and keywords <= words:
            return pattern
    return None


def match_predicate(predicate: Predicate, signal: SignalRecord) -> tuple[bool, str | None]:
    """
    Return (matched, matched_pattern).  matched_pattern is set for TextMatch only.

    A pattern carrying a number ("gained 3 pounds") only matches when the
    patient's words or the normalised text carry a number as well, so a
    number that exists only in the extractor's symptom tags never fires a rule.
    """
    if isinstance(predicate, TextMatch):
        corpus = signal.text_corpus()
        numeric_ok = _has_number(signal)
        for pattern in predicate.patterns:
            if _DIGIT.search(pattern) and not numeric_ok:
                continue
            if pattern in corpus:
                return True, pattern
        return False, None

    if isinstance(predicate, NumericThreshold):
        value = getattr(signal, predicate.field)
        if value is None:
            return False, None
        if predicate.field == "temperature":
            value = to_fahrenheit(value)
            if value is None:
                return False, None
        if predicate.op == ">=":
            return value >= predicate.threshold, None
        return value <= predicate.threshold, None

    if isinstance(predicate, BooleanCheck):
        result = _boolean_check(predicate.check, signal)
        if result is None:
            return False, None
        return result == predicate.expected, None

    return False, None


def _boolean_check(check: str, signal: SignalRecord) -> bool | None:
    """Evaluate a boolean check.  None means "not enough information"."""
    if check == "no_symptoms":
        return not signal.symptoms and not signal.complications
    if check == "feeling_well":
        if signal.symptoms or signal.complications:
            return False
        if signal.sentiment == "positive":
            return True
        return None
    if check == "weight_stable":
        if signal.weight_change is None:
            return None
        return signal.weight_change == "stable"
    if check == "medication_adherent":
        if signal.medication_adherence in (None, "unknown"):
            return None
        return signal.medication_adherence == "adherent"
    if check == "temperature_normal":
        fahrenheit = to_fahrenheit(signal.temperature)
        if fahrenheit is None:
            return None
        return fahrenheit < FEVER_THRESHOLD_F
    if check == "breathing_stable":
        if signal.breathing_status is None:
            return None
        return signal.breathing_status not in ("worse", "impaired")
    if check == "no_exacerbation":
        if signal.exacerbation is None:
            return None
        return not signal.exacerbation
    if check == "no_complications":
        return not signal.complications
    return None


class RuleEvaluator:
    """Turns (SignalRecord, RuleSet) into a DecisionHint."""

    def evaluate(
        self,
        signal: SignalRecord,
        rules: RuleSet,
        condition: ConditionCode = ConditionCode.OTHER,
    ) -> FlagHint | CloseHint | AskMoreHint:
        clarify = self._clarification(signal, rules, condition)
        if clarify is not None:
            return clarify

        withheld: tuple[str, str] | None = None

        for rule in rules.red_flags:
            matched, pattern = match_predicate(rule.predicate, signal)
            if not matched:
                if withheld is None:
                    numeric = _withheld_numeric_pattern(rule.predicate, signal)
                    if numeric:
                        logger.info("Pattern %r needs a number the patient did not give", numeric)
                        withheld = (rule.flag_type, numeric)
                continue

            logger.info("Red flag matched: %s (pattern=%s)", rule.flag_type, pattern)
            return FlagHint(
                flag_type=rule.flag_type,
                severity=self._boosted_severity(rule.severity, signal, rules),
                reason=rule.message or f"{rule.flag_type}: {rule.severity.value} severity",
                matched_pattern=pattern,
                follow_up=list(rule.follow_up),
            )

        critical = self._critical_assessment(signal, rules)
        if critical is not None:
            return critical

        routed = self._route_question(signal, rules)
        if routed is not None:
            return routed

        for closure in rules.closures:
            matched, pattern = match_predicate(closure.predicate, signal)
            if matched:
                logger.info("Closure matched (pattern=%s)", pattern)
                return CloseHint(reason=closure.message, matched_pattern=pattern)

        if withheld is not None:
            flag_type, pattern = withheld
            question = (
                "How many pounds have you gained? It's important to know the specific amount."
                if "WEIGHT" in flag_type.upper() or "pound" in pattern
                else "Can you be more specific about the amount or severity?"
            )
            return AskMoreHint(
                questions=[question],
                reason="Need specific numeric detail for accurate assessment",
            )

        return AskMoreHint(questions=default_questions(signal, condition))

    @staticmethod
    def _boosted_severity(severity: Severity, signal: SignalRecord, rules: RuleSet) -> Severity:
        upgrade = rules.config.distressed_severity_upgrade
        if (
            upgrade is not None
            and signal.severity == Severity.CRITICAL
            and signal.sentiment == "distressed"
            and SEVERITY_RANK[upgrade] > SEVERITY_RANK[severity]
        ):
            logger.info("Severity raised %s -> %s for distressed patient", severity.value, upgrade.value)
            return upgrade
        return severity

    @staticmethod
    def _route_question(signal: SignalRecord, rules: RuleSet) -> AskMoreHint | None:
        cfg = rules.config
        if cfg.route_medication_questions_to_info and signal.intent == "medication_question":
            return AskMoreHint(
                questions=[MEDICATION_INFO_QUESTION],
                reason="Routing to medication information",
            )
        if cfg.route_general_questions_to_info and signal.intent == "question":
            return AskMoreHint(
                questions=[GENERAL_INFO_QUESTION],
                reason="Routing to appropriate information",
            )
        return None

    @staticmethod
    def _critical_assessment(signal: SignalRecord, rules: RuleSet) -> FlagHint | None:
        cfg = rules.config
        if (
            cfg.critical_confidence_threshold is not None
            and signal.source == "llm"
            and signal.severity == Severity.CRITICAL
            and signal.confidence > cfg.critical_confidence_threshold
        ):
            logger.info("Extractor assessed CRITICAL at %.2f confidence", signal.confidence)
            return FlagHint(
                flag_type="AI_CRITICAL_ASSESSMENT",
                severity=Severity.CRITICAL,
                reason=f"Assessed as critical with {round(signal.confidence * 100)}% confidence",
            )
        return None

    @staticmethod
    def _clarification(
        signal: SignalRecord, rules: RuleSet, condition: ConditionCode
    ) -> AskMoreHint | None:
        cfg = rules.config
        if cfg.low_confidence_threshold is not None and cfg.vague_symptoms and signal.source == "llm":
            vague = any(
                v in s for s in signal.symptoms for v in cfg.vague_symptoms
            )
            if vague and signal.confidence < cfg.low_confidence_threshold:
                # A vague reading must never hide an explicit red flag
                if not any(match_predicate(r.predicate, signal)[0] for r in rules.red_flags):
                    return AskMoreHint(
                        questions=clarifying_questions(signal, condition),
                        reason="Need more specific information",
                    )

        return None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Question sets
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

_CONDITION_QUESTIONS: dict[ConditionCode, tuple[str, str]] = {
    ConditionCode.HF: (
        "How are you feeling today?",
        "Have you noticed any changes in your breathing, swelling, or weight?",
    ),
    ConditionCode.COPD: (
        "How is your breathing today?",
        "Have you needed to use your rescue inhaler more than usual?",
    ),
    ConditionCode.AMI: (
        "How are you feeling today?",
        "Any chest discomfort, shortness of breath, or unusual fatigue?",
    ),
    ConditionCode.PNA: (
        "How are you feeling today?",
        "How is your cough and breathing?",
    ),
}
_GENERIC_QUESTIONS = (
    "How are you feeling today?",
    "Any new symptoms since we last talked?",
)


def default_questions(signal: SignalRecord, condition: ConditionCode) -> list[str]:
    """Opening questions for ASK_MORE, softened by the patient's sentiment."""
    if signal.sentiment in ("distressed", "concerned"):
        prefix = "I understand you're concerned. "
    elif signal.sentiment == "positive":
        prefix = "That's good to hear. "
    else:
        prefix = ""
    first, second = _CONDITION_QUESTIONS.get(condition, _GENERIC_QUESTIONS)
    return [f"{prefix}{first}", second]


def clarifying_questions(signal: SignalRecord, condition: ConditionCode) -> list[str]:
    questions: list[str] = []

    if any("discomfort" in s for s in signal.symptoms):
        questions.append(
            "Can you be more specific about the discomfort? "
            "Is it more like pain, pressure, tightness, or something else?"
        )
    if any("off" in s or "weird" in s for s in signal.symptoms):
        questions.append("Can you describe what feels 'off'? Where do you feel it?")

    if condition == ConditionCode.HF:
        if not questions:
            questions.append(
                "Can you tell me more about what you're experiencing? "
                "Is it related to breathing, swelling, or something else?"
            )
        questions.append("On a scale of 1-10, how severe is this feeling?")
    elif condition == ConditionCode.COPD:
        questions.append("Is this affecting your breathing? Can you describe how?")

    if signal.pain_score is None and len(questions) < 2:
        questions.append("How severe would you rate this on a scale of 1-10?")

    return questions[:MAX_QUESTIONS]
