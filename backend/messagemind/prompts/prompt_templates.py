"""Analysis prompt templates.

One system prompt per analysis mode. Each tells the model exactly which
JSON keys to return; the response parser validates the same shape.
Token budgets vary slightly by tier for the expanded and deep modes.
"""

from collections.abc import Sequence
from dataclasses import dataclass

from messagemind.core.llm_sanitization import sanitize_llm_input
from messagemind.providers.llm.base import LLMMessage, TaskType
from messagemind.services.pricing import AnalysisMode, AnalysisToggles, Tier

# =============================================================================
# System Prompts
# =============================================================================

_COACH_PREAMBLE = (
    "You are MessageMind, a dating and texting coach. You read a message the "
    "user received and help them understand it and reply well. Be warm, "
    "practical and honest. Never encourage manipulation or pressure."
)

_SNAPSHOT_SYSTEM_PROMPT = f"""{_COACH_PREAMBLE}

Give a quick read of the message inside <message> tags.

Respond with a single JSON object with these keys:
- "intent": what the sender most likely wants (one sentence)
- "tone": one or two words
- "category": e.g. casual, flirty, planning, conflict, distant
- "emotional_risk": "low", "medium" or "high"
- "recommended_timing": when to reply
- "interest_level": "low", "medium" or "high"
- "suggested_replies": a list of 2 short replies"""

_EXPANDED_SYSTEM_PROMPT = f"""{_COACH_PREAMBLE}

Analyze the message inside <message> tags in more depth.

Respond with a single JSON object with these keys:
- "intent": what the sender most likely wants (one sentence)
- "tone": one or two words
- "category": e.g. casual, flirty, planning, conflict, distant
- "emotional_risk": "low", "medium" or "high"
- "recommended_timing": when to reply
- "interest_level": "low", "medium" or "high"
- "explanation": 2-4 short bullet strings explaining your read
- "suggested_replies": a list of 3 replies with different styles"""

_DEEP_SYSTEM_PROMPT = f"""{_COACH_PREAMBLE}

Give a full breakdown of the message inside <message> tags.

Respond with a single JSON object with these keys:
- "intent", "tone", "category", "recommended_timing", "interest_level": short strings
- "emotional_risk": "low", "medium" or "high"
- "explanation": object with "meaning_breakdown", "emotional_context",
  "relationship_signals" and "hidden_patterns"
- "suggested_replies": object with "playful", "confident", "safe", "bold"
  and "escalation" replies
- "conversation_flow": exactly 3 steps, each an object with any of "you",
  "them_reaction" and "you_next"
- "escalation_advice": how and when to move things forward
- "risk_mitigation": how to avoid misreading the situation"""

_EXPLANATION_ADDENDUM = (
    "\n\nThe user asked for an explanation: add a \"details\" object with a "
    '"why" key that explains the reasoning behind your suggested replies.'
)

_IMAGE_NOTE = (
    "\n\nThe user attached screenshots, referenced inside <image_refs> tags. "
    "Treat them as part of the conversation."
)

# =============================================================================
# Template Selection
# =============================================================================


@dataclass(frozen=True)
class PromptTemplate:
    """System prompt and sampling settings for one analysis.

    Attributes:
        system: System prompt text.
        max_tokens: Output token cap.
        temperature: Sampling temperature.
    """

    system: str
    max_tokens: int
    temperature: float


# Pro only reaches expanded when its policy enables supports_mode_toggle
# (the deep toggle then steps up to expanded); the default pro policy
# routes everything to snapshot.
_EXPANDED_MAX_TOKENS: dict[Tier, int] = {Tier.PRO: 220, Tier.PLUS: 320}
_DEEP_MAX_TOKENS: dict[Tier, int] = {Tier.MAX: 520}

TASK_FOR_MODE: dict[AnalysisMode, TaskType] = {
    AnalysisMode.SNAPSHOT: TaskType.SNAPSHOT_ANALYSIS,
    AnalysisMode.EXPANDED: TaskType.EXPANDED_ANALYSIS,
    AnalysisMode.DEEP: TaskType.DEEP_ANALYSIS,
}


def get_prompt_template(
    mode: AnalysisMode,
    tier: Tier,
    toggles: AnalysisToggles | None = None,
) -> PromptTemplate:
    """Select the prompt template for a resolved mode and tier.

    Args:
        mode: Resolved analysis mode.
        tier: Account tier (adjusts token budgets).
        toggles: Request toggles; the explanation toggle extends the prompt.

    Returns:
        PromptTemplate for the analysis.
    """
    if mode is AnalysisMode.SNAPSHOT:
        template = PromptTemplate(_SNAPSHOT_SYSTEM_PROMPT, 150, 0.7)
    elif mode is AnalysisMode.EXPANDED:
        template = PromptTemplate(
            _EXPANDED_SYSTEM_PROMPT, _EXPANDED_MAX_TOKENS.get(tier, 350), 0.7
        )
    else:
        template = PromptTemplate(
            _DEEP_SYSTEM_PROMPT, _DEEP_MAX_TOKENS.get(tier, 600), 0.8
        )

    if toggles is not None and toggles.explanation:
        template = PromptTemplate(
            template.system + _EXPLANATION_ADDENDUM,
            template.max_tokens,
            template.temperature,
        )
    return template


def build_analysis_messages(
    template: PromptTemplate,
    input_text: str | None,
    image_refs: Sequence[str] = (),
) -> list[LLMMessage]:
    """Build the system and user messages for an analysis call.

    The message text and image references are sanitized before they are
    placed inside delimiter tags.

    Args:
        template: Selected prompt template.
        input_text: Message text to analyze (may be empty for image-only).
        image_refs: Image references attached to the request.

    Returns:
        [system message, user message].
    """
    system = template.system
    parts = [f"<message>\n{sanitize_llm_input((input_text or '').strip())}\n</message>"]
    if image_refs:
        system += _IMAGE_NOTE
        refs = "\n".join(sanitize_llm_input(ref) for ref in image_refs)
        parts.append(f"<image_refs>\n{refs}\n</image_refs>")

    return [
        LLMMessage(role="system", content=system),
        LLMMessage(role="user", content="\n\n".join(parts)),
    ]
