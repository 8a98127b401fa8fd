"""Validated shapes of AI analysis output, one model per mode.

Unknown keys returned by the model are ignored; missing or mistyped
required keys fail validation and the analysis is treated as malformed.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

EmotionalRisk = Literal["low", "medium", "high"]


class _ResultHeader(BaseModel):
    """Fields shared by every mode."""

    model_config = ConfigDict(extra="ignore")

    intent: str = Field(min_length=1)
    tone: str = Field(min_length=1)
    category: str = Field(min_length=1)
    emotional_risk: EmotionalRisk
    recommended_timing: str = Field(min_length=1)
    interest_level: str | None = None

    @field_validator("emotional_risk", mode="before")
    @classmethod
    def _lowercase_risk(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("interest_level", mode="before")
    @classmethod
    def _stringify_interest(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class SnapshotResult(_ResultHeader):
    """Quick read of a message with two reply options."""

    suggested_replies: list[str] = Field(min_length=2)


class ExpandedResult(_ResultHeader):
    """Snapshot plus an explanation and a third reply option.

    ``explanation`` may arrive as a list of bullet strings; it is joined
    into one newline-separated string.
    """

    explanation: str = Field(min_length=1)
    suggested_replies: list[str] = Field(min_length=3)
    details: dict[str, Any] | None = None

    @field_validator("explanation", mode="before")
    @classmethod
    def _join_bullets(cls, v: Any) -> Any:
        if isinstance(v, list):
            return "\n".join(str(item).strip() for item in v if str(item).strip())
        return v


class DeepExplanation(BaseModel):
    """Structured breakdown of the message."""

    model_config = ConfigDict(extra="ignore")

    meaning_breakdown: str
    emotional_context: str
    relationship_signals: str
    hidden_patterns: str


class DeepReplies(BaseModel):
    """One suggested reply per style."""

    model_config = ConfigDict(extra="ignore")

    playful: str
    confident: str
    safe: str
    bold: str
    escalation: str


class ConversationStep(BaseModel):
    """One step of the suggested conversation plan."""

    model_config = ConfigDict(extra="ignore")

    you: str | None = None
    them_reaction: str | None = None
    you_next: str | None = None

    @model_validator(mode="after")
    def _require_content(self) -> "ConversationStep":
        if not any((self.you, self.them_reaction, self.you_next)):
            raise ValueError(
                "conversation step needs one of you, them_reaction or you_next"
            )
        return self


class DeepResult(_ResultHeader):
    """Full breakdown, five reply styles and a three-step conversation plan."""

    explanation: DeepExplanation
    suggested_replies: DeepReplies
    conversation_flow: list[ConversationStep] = Field(min_length=3, max_length=3)
    escalation_advice: str = Field(min_length=1)
    risk_mitigation: str = Field(min_length=1)
    details: dict[str, Any] | None = None


AnalysisResult = SnapshotResult | ExpandedResult | DeepResult
