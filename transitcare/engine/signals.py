"""
Per-turn value objects: the structured signal extracted from one patient
utterance, the conversation turns it was extracted against, and the
triage verdict (DecisionHint) the rule evaluator produces from it.

None of these are persisted; they live for the duration of one turn.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from transitcare.engine.enums import MessageRole, Severity, parse_severity


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Conversation context
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ConversationTurn(BaseModel):
    role: MessageRole
    content: str


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Signal record
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

Intent = Literal["symptom_report", "question", "medication_question", "general"]
Sentiment = Literal["positive", "neutral", "concerned", "distressed"]
WeightChange = Literal["gained", "lost", "stable"]
Adherence = Literal["adherent", "missed", "unknown"]
BreathingState = Literal["normal", "stable", "improved", "worse", "impaired"]


class SignalRecord(BaseModel):
    """Structured clinical reading of one patient message."""

    intent: Intent = "general"
    symptoms: list[str] = Field(default_factory=list)
    severity: Severity = Severity.NONE
    sentiment: Sentiment = "neutral"
    confidence: float = Field(ge=0.0, le=1.0)
    raw_text: str
    # Protocol pattern phrases the patient's words were normalised to
    normalized_text: str = ""

    # Condition-specific optional fields
    pain_score: Optional[float] = Field(default=None, ge=0, le=10)
    weight_change: Optional[WeightChange] = None
    medication_adherence: Optional[Adherence] = None
    temperature: Optional[float] = None
    breathing_status: Optional[BreathingState] = None
    exacerbation: Optional[bool] = None
    complications: list[str] = Field(default_factory=list)

    source: Literal["llm", "fallback"] = "llm"

    @field_validator("symptoms", "complications", mode="before")
    @classmethod
    def _normalise_tags(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        return [str(v).strip().lower() for v in value if str(v).strip()]

    @field_validator("severity", mode="before")
    @classmethod
    def _coerce_severity(cls, value: Any) -> Severity:
        return parse_severity(value, default=Severity.NONE)

    @field_validator("normalized_text", mode="before")
    @classmethod
    def _join_normalized(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, list):
            return ", ".join(str(v) for v in value)
        return str(value)

    def text_corpus(self) -> str:
        """Lower-cased raw text, normalised text and symptom tags, space-joined."""
        return " ".join([
            self.normalized_text.lower(),
            " ".join(self.symptoms),
            self.raw_text.lower(),
        ])


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Decision hint (tagged variant)
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class FlagHint(BaseModel):
    action: Literal["FLAG"] = "FLAG"
    flag_type: str
    severity: Severity
    reason: str = ""
    matched_pattern: Optional[str] = None
    follow_up: list[str] = Field(default_factory=list)


class CloseHint(BaseModel):
    action: Literal["CLOSE"] = "CLOSE"
    reason: str = "Patient is doing well"
    matched_pattern: Optional[str] = None


class AskMoreHint(BaseModel):
    action: Literal["ASK_MORE"] = "ASK_MORE"
    questions: list[str] = Field(default_factory=list)
    reason: Optional[str] = None


DecisionHint = Annotated[
    Union[FlagHint, CloseHint, AskMoreHint],
    Field(discriminator="action"),
]

_hint_adapter: TypeAdapter = TypeAdapter(DecisionHint)


def parse_hint(data: Any) -> FlagHint | CloseHint | AskMoreHint:
    """Validate a stored hint dict back into its variant."""
    return _hint_adapter.validate_python(data)
