"""
Signal Extractor: turns one patient message (+ prior turns) into a SignalRecord.

Three implementations share the ``SignalExtractor`` contract:

  LLMSignalExtractor      Gemini in JSON mode, low temperature
  KeywordSignalExtractor  deterministic keyword / regex reading of the same schema
  FallbackSignalExtractor policy object: primary under a timeout, keyword
                          extractor on any failure

Both concrete extractors resolve references against the conversation
history ("it's worse" after "my ankles are swollen") and never invent
numbers: a vague "gained some weight" maps to the generic "gained weight"
pattern, never to "gained 3 pounds".
"""

from __future__ import annotations

import asyncio
import logging
import os
import random
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from google.genai import types
from pydantic import ValidationError

from transitcare.engine.enums import (
    CONDITION_NAMES,
    ConditionCode,
    EducationTier,
    MessageRole,
    Severity,
)
from transitcare.engine.errors import ExtractionError
from transitcare.engine.llm_utils import llm_call, parse_json_object
from transitcare.engine.rules import generic_pattern_for, is_numeric_pattern
from transitcare.engine.signals import ConversationTurn, SignalRecord

logger = logging.getLogger("engine.extractors")


@dataclass
class ExtractionRequest:
    text: str
    condition: ConditionCode
    education_tier: EducationTier = EducationTier.MEDIUM
    history: list[ConversationTurn] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)

    @property
    def numeric_patterns(self) -> list[str]:
        return [p for p in self.patterns if is_numeric_pattern(p)]


class SignalExtractor(ABC):
    """Contract shared by every extractor implementation."""

    name: str = ""

    @abstractmethod
    async def extract(self, request: ExtractionRequest) -> SignalRecord:
        """Raise ExtractionError when no usable SignalRecord can be produced."""


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Number grounding (shared by both extractors)
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

_NUMBER = re.compile(r"\d+(?:\.\d+)?")

NUMBER_WORDS: dict[str, str] = {
    "one": "1", "two": "2", "three": "3", "four": "4", "five": "5",
    "six": "6", "seven": "7", "eight": "8", "nine": "9", "ten": "10",
}


def _numbers_said(text: str, history: list[ConversationTurn]) -> set[str]:
    """Every number the patient actually said, digits or words, this turn or earlier."""
    said: set[str] = set()
    corpus = [text] + [t.content for t in history if t.role == MessageRole.USER]
    for chunk in corpus:
        lowered = chunk.lower()
        said.update(_NUMBER.findall(lowered))
        for word, digit in NUMBER_WORDS.items():
            if re.search(rf"\b{word}\b", lowered):
                said.add(digit)
    return said


def ground_numbers(signal: SignalRecord, request: ExtractionRequest) -> SignalRecord:
    """Replace normalised phrases whose numbers the patient never said."""
    said = _numbers_said(request.text, request.history)

    def _grounded(phrase: str) -> str | None:
        numbers = _NUMBER.findall(phrase)
        if not numbers or all(n in said for n in numbers):
            return phrase
        generic = generic_pattern_for(phrase, request.patterns)
        logger.info("Ungrounded number in %r, using generic %r", phrase, generic)
        return generic

    phrases = [p.strip() for p in signal.normalized_text.split(",") if p.strip()]
    fixed: list[str] = []
    for phrase in phrases:
        g = _grounded(phrase)
        if g and g not in fixed:
            fixed.append(g)

    symptoms: list[str] = []
    for s in signal.symptoms:
        g = _grounded(s)
        if g and g not in symptoms:
            symptoms.append(g)

    return signal.model_copy(update={
        "normalized_text": ", ".join(fixed),
        "symptoms": symptoms,
    })


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  LLM extractor
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

EXTRACTION_SYSTEM_PROMPT = """\
You are a medical AI specialised in parsing patient symptom reports for \
{condition_name} ({condition}) patients after hospital discharge.

Extract structured information from the patient's latest message, using the \
conversation history to resolve what the patient is referring to.
Example: AGENT "Is it pain or discomfort?" / PATIENT "it's pain for sure", \
with earlier context "off in my chest" → chest pain.

PROTOCOL PATTERNS TO DETECT:
{patterns}

NORMALISATION:
- If the message matches the MEANING of a pattern above, put that pattern in \
normalized_text using the EXACT phrasing from the list.
- Convert "lbs" to "pounds" and keep numbers the patient actually said.

NEGATION:
- Never report symptoms the patient denies ("no chest pain", "not dizzy").

NUMERIC PATTERNS:
- Patterns requiring numbers: {numeric_patterns}
- Use a numeric pattern ONLY if the patient said that number.
- If the patient is vague ("some weight", "a little", "a bit") use the GENERIC \
pattern without numbers. NEVER invent numbers.

Patient reading level: {education_tier}.

Return ONLY a JSON object:
{{"intent": "symptom_report|question|medication_question|general",
  "symptoms": ["..."],
  "severity": "NONE|LOW|MODERATE|HIGH|CRITICAL",
  "sentiment": "positive|neutral|concerned|distressed",
  "confidence": 0.0-1.0,
  "normalized_text": "comma-separated exact patterns",
  "pain_score": null or 0-10,
  "weight_change": null or "gained|lost|stable",
  "medication_adherence": null or "adherent|missed|unknown",
  "temperature": null or degrees Fahrenheit,
  "breathing_status": null or "normal|stable|improved|worse|impaired",
  "exacerbation": null or true/false,
  "complications": ["..."]}}\
"""


class LLMSignalExtractor(SignalExtractor):
    """Primary extractor backed by the text-understanding collaborator."""

    name = "llm"

    def __init__(
        self,
        llm_client=None,
        model_name: str | None = None,
        timeout: float = 15.0,
    ) -> None:
        self._client = llm_client
        self._model_name = model_name or os.getenv("EXTRACTION_MODEL", "gemini-2.0-flash")
        self._timeout = timeout

    @property
    def client(self):
        if self._client is None:
            try:
                from google import genai
                self._client = genai.Client(api_key=os.getenv("GOOGLE_API_KEY"))
            except Exception as exc:
                logger.error("Failed to create Gemini client: %s", exc)
        return self._client

    def build_contents(self, request: ExtractionRequest) -> list[types.Content]:
        contents: list[types.Content] = []
        for turn in request.history:
            contents.append(types.Content(
                role="user" if turn.role == MessageRole.USER else "model",
                parts=[types.Part(text=turn.content)],
            ))
        contents.append(types.Content(role="user", parts=[types.Part(text=request.text)]))
        return contents

    def build_system_prompt(self, request: ExtractionRequest) -> str:
        patterns = "\n".join(f"- {p}" for p in request.patterns) or "No patterns configured"
        return EXTRACTION_SYSTEM_PROMPT.format(
            condition=request.condition.value,
            condition_name=CONDITION_NAMES.get(request.condition, request.condition.value),
            patterns=patterns,
            numeric_patterns=", ".join(request.numeric_patterns) or "none",
            education_tier=request.education_tier.value,
        )

    async def extract(self, request: ExtractionRequest) -> SignalRecord:
        if self.client is None:
            raise ExtractionError("no LLM client available")

        config = types.GenerateContentConfig(
            response_mime_type="application/json",
            system_instruction=self.build_system_prompt(request),
            temperature=0.1,
        )
        try:
            response = await llm_call(
                self.client, self._model_name, self.build_contents(request),
                config=config, timeout=self._timeout, max_retries=0,
            )
        except Exception as exc:
            raise ExtractionError(f"extraction call failed: {exc}") from exc

        try:
            data = parse_json_object(response.text or "")
            data["raw_text"] = request.text
            data["source"] = "llm"
            signal = SignalRecord.model_validate(data)
        except (ValueError, TypeError, ValidationError) as exc:
            raise ExtractionError(f"malformed extraction result: {exc}") from exc

        return ground_numbers(signal, request)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Keyword extractor
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

SYMPTOM_LEXICON: dict[str, list[str]] = {
    "chest pain": ["chest pain", "chest hurts", "pain in my chest", "chest pressure", "chest tightness"],
    "shortness of breath": [
        "short of breath", "shortness of breath", "can't breathe", "cant breathe",
        "cannot breathe", "trouble breathing", "hard to breathe", "breathless", "winded",
    ],
    "swelling": ["swelling", "swollen", "puffy", "edema"],
    "weight gain": ["gained weight", "weight gain", "put on weight", "gained some weight", "gained a little weight"],
    "dizziness": ["dizzy", "dizziness", "lightheaded", "light headed", "light-headed"],
    "fatigue": ["tired", "fatigue", "exhausted", "no energy", "weak"],
    "cough": ["cough", "coughing"],
    "fever": ["fever", "feverish", "chills"],
    "nausea": ["nausea", "nauseous", "queasy"],
    "vomiting": ["vomit", "vomiting", "throwing up", "threw up"],
    "palpitations": ["palpitations", "heart racing", "racing heart", "heart pounding", "fluttering"],
    "confusion": ["confused", "confusion", "disoriented"],
    "bleeding": ["bleeding", "blood in"],
    "wheezing": ["wheeze", "wheezing"],
    "sputum change": ["green mucus", "yellow mucus", "phlegm", "sputum"],
    "orthopnea": ["can't lie flat", "cannot lie flat", "extra pillows", "sleep sitting up"],
    "pain": ["pain", "hurts", "aching", "sore"],
    "discomfort": ["discomfort", "uncomfortable"],
    "feeling off": ["feel off", "feeling off", "feel weird", "feeling weird", "not right"],
}

COMPLICATION_LEXICON: dict[str, list[str]] = {
    "wound infection": ["wound is red", "incision is red", "infected", "pus", "oozing"],
    "bleeding": ["bleeding", "blood in"],
    "blood clot": ["calf pain", "leg is swollen and warm", "blood clot"],
}

CRITICAL_KEYWORDS = ["chest pain", "can't breathe", "cant breathe", "cannot breathe", "emergency", "unconscious", "severe"]
HIGH_KEYWORDS = ["pain", "swelling", "fever", "dizz", "nausea", "vomit", "bleeding"]
MODERATE_KEYWORDS = ["tired", "weak", "difficulty", "concern", "fatigue", "cough"]

# Whole words that negate a phrase when they appear shortly before it
NEGATIONS = frozenset({
    "no", "not", "never", "none", "nor", "without", "free", "less",
    "deny", "denies", "denied",
    "don't", "dont", "doesn't", "doesnt", "didn't", "didnt",
    "isn't", "isnt", "aren't", "arent", "wasn't", "wasnt",
    "haven't", "havent", "hasn't", "hasnt",
})
NEGATION_WINDOW = 4

REFERRING_WORDS = re.compile(r"\b(it|it's|its|that|this|they|those)\b")

_CLAUSE_SPLIT = re.compile(r"[.,;!?]|\bbut\b")
_TOKEN = re.compile(r"[a-z']+")

_PAIN_SCORE = [
    re.compile(r"(\d{1,2}(?:\.\d)?)\s*(?:/|out of)\s*10"),
    re.compile(r"pain\D{0,20}?(?:is|at|about|around|of)\s*(?:a\s*)?(\d{1,2})\b"),
]
# A number followed by a duration is how long, not how hot
_NOT_DURATION = r"(?!\.?\d)(?!\s*(?:days?|weeks?|months?|years?|hours?|hrs?|minutes?|mins?|times?|nights?)\b)"
_TEMPERATURE = [
    re.compile(r"(?:temp(?:erature)?|fever)\D{0,20}?(\d{2,3}(?:\.\d)?)" + _NOT_DURATION),
    re.compile(r"(\d{2,3}(?:\.\d)?)\s*(?:°|degrees|deg\b)"),
]
TEMPERATURE_RANGES = ((35.0, 43.0), (95.0, 110.0))
_WEIGHT_AMOUNT = re.compile(
    r"(?:gained|gain|up|put on)\D{0,15}?(\d+(?:\.\d)?|" + "|".join(NUMBER_WORDS) + r")\s*(?:pounds?|lbs?)"
)
# "about 3 pounds" answering an earlier weight question
_BARE_POUNDS = re.compile(r"\b(\d+(?:\.\d)?|" + "|".join(NUMBER_WORDS) + r")\s*(?:pounds?|lbs?)\b")
_WEIGHT_GAIN = re.compile(r"\b(gain(?:ed)?|put on)\b.{0,20}\bweight\b|\bweight\b.{0,15}\b(up|gone up|increas)")
_WEIGHT_LOSS = re.compile(r"\blost\b.{0,20}\bweight\b|\bweight\b.{0,15}\b(down|dropp)")
_WEIGHT_STABLE = re.compile(
    r"\bweight\b.{0,15}\b(stable|same|steady|unchanged|fine|normal)\b|no (?:weight (?:gain|change)|change in (?:my )?weight)"
)

_MED_MISSED = re.compile(
    r"\b(missed|skipped|forgot|forget|ran out|run out|stopped taking|haven't taken|havent taken|not taking|can't afford)\b"
)
_MED_ADHERENT = re.compile(
    r"\b(taking|took|take)\b.{0,20}\b(meds|medications?|pills|tablets|water pill|inhaler)\b"
)

_BREATH_IMPAIRED = re.compile(r"can'?t breathe|cannot breathe|struggling to breathe|gasping")
_BREATH_WORSE = re.compile(
    r"breathing\b.{0,15}\bworse|more short of breath|harder to breathe|more breathless"
)
_BREATH_BETTER = re.compile(r"breathing\b.{0,15}\bbetter|breathing\b.{0,15}\bimprov")
_BREATH_NORMAL = re.compile(
    r"breathing\b.{0,15}\b(fine|good|normal|ok|okay|great)\b"
    r"|no (?:trouble|problems?|issues?|difficulty) breathing|no shortness of breath|not short of breath"
)

_EXACERBATION = re.compile(r"\b(flare|flare-up|flare up|exacerbation|attack)\b")

_DISTRESSED = ["scared", "terrified", "panic", "emergency", "help me", "can't breathe", "unbearable"]
_CONCERNED = ["worried", "concerned", "nervous", "not sure", "anxious", "worse"]
_POSITIVE = ["fine", "good", "great", "well", "better", "no issues", "no problems"]

_MED_WORDS = ["med", "pill", "dose", "tablet", "prescription", "inhaler", "water pill"]


def _clauses(text: str) -> list[str]:
    return [c.strip() for c in _CLAUSE_SPLIT.split(text.lower()) if c.strip()]


def _phrase_regex(phrase: str) -> re.Pattern:
    # Anchor at a word start so "well" does not match inside "swelling"
    prefix = r"\b" if phrase[:1].isalnum() else ""
    return re.compile(prefix + re.escape(phrase))


def _negated_at(clause: str, start: int) -> bool:
    before = _TOKEN.findall(clause[:start])[-NEGATION_WINDOW:]
    return any(token in NEGATIONS for token in before)


def _mentions(text: str, phrase: str) -> list[bool]:
    """Negation flag for every mention of ``phrase`` in ``text``, clause by clause."""
    regex = _phrase_regex(phrase)
    return [
        _negated_at(clause, m.start())
        for clause in _clauses(text)
        for m in regex.finditer(clause)
    ]


def _is_negated(text: str, phrase: str) -> bool:
    """True if the first mention of ``phrase`` is negated."""
    mentions = _mentions(text, phrase)
    return bool(mentions) and mentions[0]


def _present(text: str, phrase: str) -> bool:
    """True if ``phrase`` occurs somewhere in ``text`` without being negated."""
    return any(not negated for negated in _mentions(text, phrase))


def _first_number(patterns: list[re.Pattern], text: str) -> float | None:
    for pattern in patterns:
        m = pattern.search(text)
        if m:
            try:
                return float(m.group(1))
            except ValueError:
                continue
    return None


def _temperature(text: str) -> float | None:
    """First temperature reading that falls in a plausible °C or °F range."""
    for pattern in _TEMPERATURE:
        for m in pattern.finditer(text):
            value = float(m.group(1))
            if any(low <= value <= high for low, high in TEMPERATURE_RANGES):
                return value
            logger.info("Ignoring implausible temperature %s", m.group(1))
    return None


class KeywordSignalExtractor(SignalExtractor):
    """
    Deterministic reading of a message over the SignalRecord schema.

    Used when the LLM collaborator is unavailable.  Confidence is drawn
    from [0.7, 1.0) to mark the record as unverified but usable.
    """

    name = "fallback"

    CONFIDENCE_FLOOR = 0.7
    CONFIDENCE_SPAN = 0.299

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    async def extract(self, request: ExtractionRequest) -> SignalRecord:
        return self.read(request)

    def read(self, request: ExtractionRequest) -> SignalRecord:
        text = request.text
        lowered = text.lower()

        symptoms = self._symptoms(lowered)
        if not symptoms and REFERRING_WORDS.search(lowered):
            carried = self._symptom_from_history(request.history)
            if carried:
                logger.info("Resolved reference to earlier symptom %r", carried)
                symptoms = [carried]

        pounds = self._pounds_gained(lowered, request.history)
        normalized = self._normalize(lowered, request, pounds)
        weight_change = self._weight_change(lowered, pounds)
        if weight_change == "gained" and "weight gain" not in symptoms:
            symptoms.append("weight gain")

        return SignalRecord(
            intent=self._intent(lowered, symptoms),
            symptoms=symptoms,
            severity=self._severity(lowered, symptoms),
            sentiment=self._sentiment(lowered),
            confidence=self.CONFIDENCE_FLOOR + self.CONFIDENCE_SPAN * self._rng.random(),
            raw_text=text,
            normalized_text=", ".join(normalized),
            pain_score=self._pain_score(lowered),
            weight_change=weight_change,
            medication_adherence=self._adherence(lowered),
            temperature=_temperature(lowered),
            breathing_status=self._breathing(lowered),
            exacerbation=self._exacerbation(lowered),
            complications=[
                tag for tag, phrases in COMPLICATION_LEXICON.items()
                if any(_present(lowered, p) for p in phrases)
            ],
            source="fallback",
        )

    # ── Field readers ──

    @staticmethod
    def _symptoms(lowered: str) -> list[str]:
        found: list[str] = []
        for tag, phrases in SYMPTOM_LEXICON.items():
            if any(_present(lowered, p) for p in phrases):
                found.append(tag)
        # "chest pain" already covers generic pain
        if "chest pain" in found and "pain" in found:
            found.remove("pain")
        return found

    def _symptom_from_history(self, history: list[ConversationTurn]) -> str | None:
        for turn in reversed(history):
            if turn.role != MessageRole.USER:
                continue
            earlier = self._symptoms(turn.content.lower())
            if earlier:
                return earlier[0]
        return None

    @staticmethod
    def _pounds_gained(lowered: str, history: list[ConversationTurn]) -> str | None:
        """Pounds gained as a digit string, read from this message only."""
        m = _WEIGHT_AMOUNT.search(lowered)
        if m is None:
            # A bare amount counts when the conversation was already about weight
            m = _BARE_POUNDS.search(lowered)
            if m is None or not any(
                "weight" in t.content.lower() or "pounds" in t.content.lower()
                for t in history[-4:]
            ):
                return None
        value = m.group(1)
        return NUMBER_WORDS.get(value, value)

    @staticmethod
    def _normalize(lowered: str, request: ExtractionRequest, pounds: str | None) -> list[str]:
        """Protocol patterns present in the text, with numbers only if the patient said them."""
        matched: list[str] = []

        for pattern in request.patterns:
            if is_numeric_pattern(pattern):
                continue
            if _present(lowered, pattern):
                matched.append(pattern)

        if pounds is not None:
            phrase = f"gained {pounds} pounds"
            matched.append(phrase)
        elif _WEIGHT_GAIN.search(lowered) and not _is_negated(lowered, "weight"):
            generic = generic_pattern_for("gained weight", request.patterns)
            if generic and generic not in matched:
                matched.append(generic)

        return matched

    @staticmethod
    def _pain_score(lowered: str) -> float | None:
        value = _first_number(_PAIN_SCORE, lowered)
        if value is None or not 0 <= value <= 10:
            return None
        return value

    @staticmethod
    def _weight_change(lowered: str, pounds: str | None) -> str | None:
        if _WEIGHT_STABLE.search(lowered):
            return "stable"
        if pounds is not None or (
            _WEIGHT_GAIN.search(lowered) and not _is_negated(lowered, "weight")
        ):
            return "gained"
        if _WEIGHT_LOSS.search(lowered):
            return "lost"
        return None

    @staticmethod
    def _adherence(lowered: str) -> str | None:
        if _MED_MISSED.search(lowered):
            return "missed"
        if _MED_ADHERENT.search(lowered):
            return "adherent"
        return None

    @staticmethod
    def _breathing(lowered: str) -> str | None:
        if _BREATH_IMPAIRED.search(lowered):
            return "impaired"
        if _BREATH_WORSE.search(lowered):
            return "worse"
        if _BREATH_BETTER.search(lowered):
            return "improved"
        if _BREATH_NORMAL.search(lowered):
            return "normal"
        return None

    @staticmethod
    def _exacerbation(lowered: str) -> bool | None:
        m = _EXACERBATION.search(lowered)
        if not m:
            return None
        return not _is_negated(lowered, m.group(1))

    @staticmethod
    def _severity(lowered: str, symptoms: list[str]) -> Severity:
        reported = " ".join(symptoms)
        if "chest pain" in symptoms or any(_present(lowered, k) for k in CRITICAL_KEYWORDS):
            return Severity.CRITICAL
        if any(k in reported for k in HIGH_KEYWORDS):
            return Severity.HIGH
        if any(k in reported for k in MODERATE_KEYWORDS):
            return Severity.MODERATE
        if symptoms:
            return Severity.LOW
        return Severity.NONE

    @staticmethod
    def _sentiment(lowered: str) -> str:
        if any(w in lowered for w in _DISTRESSED):
            return "distressed"
        if any(w in lowered for w in _CONCERNED):
            return "concerned"
        mentions = [negated for w in _POSITIVE for negated in _mentions(lowered, w)]
        # "not doing well" is a concern, not a positive report
        if any(mentions):
            return "concerned"
        if mentions:
            return "positive"
        return "neutral"

    @staticmethod
    def _intent(lowered: str, symptoms: list[str]) -> str:
        if "?" in lowered:
            if any(w in lowered for w in _MED_WORDS):
                return "medication_question"
            return "question"
        if symptoms:
            return "symptom_report"
        return "general"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Fallback policy
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class FallbackSignalExtractor(SignalExtractor):
    """
    Runs the primary extractor under a hard timeout and hands over to the
    fallback on any failure.  The turn always gets a SignalRecord.
    """

    name = "fallback_policy"

    def __init__(
        self,
        primary: SignalExtractor,
        fallback: SignalExtractor | None = None,
        timeout: float = 15.0,
    ) -> None:
        self.primary = primary
        self.fallback = fallback or KeywordSignalExtractor()
        self.timeout = timeout

    async def extract(self, request: ExtractionRequest) -> SignalRecord:
        try:
            return await asyncio.wait_for(self.primary.extract(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "%s extractor timed out after %.1fs, using %s",
                self.primary.name, self.timeout, self.fallback.name,
            )
        except Exception as exc:
            logger.warning(
                "%s extractor failed (%s), using %s",
                self.primary.name, exc, self.fallback.name,
            )
        return await self.fallback.extract(request)


def summarize_signal(signal: SignalRecord) -> dict[str, Any]:
    """Compact log-friendly view of a signal."""
    return {
        "source": signal.source,
        "intent": signal.intent,
        "symptoms": signal.symptoms,
        "severity": signal.severity.value,
        "confidence": round(signal.confidence, 2),
        "normalized": signal.normalized_text,
    }
