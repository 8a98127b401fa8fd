"""Credit calculator for analysis requests.

Computes how many credits an analysis costs from the account tier, the
resolved mode, the submitted input and the request toggles. Pure function:
no I/O, no clock, no randomness. Input limits are enforced upstream by the
orchestrator before this is called.

Paid tiers:
    base_total = text cost + image cost + floor(trimmed_len / chunk size)
    total      = surcharge policy applied to base_total

The free tier always returns the flat nominal charge. Free usage is gated
by the monthly quota counter, not by the balance.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from messagemind.services.pricing import (
    AnalysisMode,
    AnalysisToggles,
    PricingConfig,
    SurchargePolicy,
    Tier,
)

_CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class CostBreakdown:
    """Component costs for client display and ledger detail.

    Attributes:
        text: Short or long text cost (0 without text).
        image: Image cost (per-image cost times image count).
        extra: Long-input penalty.
        base_total: text + image + extra.
        multiplier: Deep-mode multiplier applied, if any.
        surcharge: Flat surcharge added, if any.
        nominal: Flat nominal charge (free tier only).
    """

    text: int = 0
    image: int = 0
    extra: int = 0
    base_total: int = 0
    multiplier: Decimal | None = None
    surcharge: int = 0
    nominal: int = 0

    def to_dict(self) -> dict:
        """JSON-safe representation (multiplier as string)."""
        return {
            "text": self.text,
            "image": self.image,
            "extra": self.extra,
            "base_total": self.base_total,
            "multiplier": str(self.multiplier) if self.multiplier is not None else None,
            "surcharge": self.surcharge,
            "nominal": self.nominal,
        }


@dataclass(frozen=True)
class CreditQuote:
    """Result of a credit calculation.

    Attributes:
        total_credits: Credits required for the analysis.
        breakdown: Component costs.
        estimated_tokens: Advisory output token estimate. Never billed.
    """

    total_credits: int
    breakdown: CostBreakdown
    estimated_tokens: int


def estimate_tokens(
    mode: AnalysisMode,
    text_length: int,
    image_count: int,
    pricing: PricingConfig,
) -> int:
    """Advisory token budget for logging and capacity planning.

    Args:
        mode: Resolved analysis mode.
        text_length: Trimmed input text length.
        image_count: Number of image references.
        pricing: Pricing table with baselines and image placeholder size.

    Returns:
        Mode baseline plus roughly one token per four input characters.
    """
    effective_chars = text_length + image_count * pricing.image_placeholder_chars
    return pricing.token_baselines[mode] + math.ceil(effective_chars / _CHARS_PER_TOKEN)


def calculate_credits(
    tier: Tier,
    mode: AnalysisMode,
    input_text: str | None,
    images: Sequence[str],
    toggles: AnalysisToggles,
    pricing: PricingConfig,
) -> CreditQuote:
    """Calculate the credits required for an analysis.

    Args:
        tier: Account tier.
        mode: Resolved analysis mode (output of the mode router).
        input_text: Raw input text, may be None or empty.
        images: Image references.
        toggles: Request toggles.
        pricing: Pricing table.

    Returns:
        CreditQuote with total, breakdown and token estimate.

    Raises:
        KeyError: If the tier is not configured in the pricing table.
    """
    policy = pricing.policy_for(tier)
    text_length = len((input_text or "").strip())
    image_count = len(images)
    tokens = estimate_tokens(mode, text_length, image_count, pricing)

    if policy.surcharge is SurchargePolicy.FLAT_NOMINAL:
        nominal = pricing.free_nominal_charge
        return CreditQuote(
            total_credits=nominal,
            breakdown=CostBreakdown(nominal=nominal),
            estimated_tokens=tokens,
        )

    if text_length == 0:
        text_cost = 0
    elif text_length <= pricing.short_text_threshold:
        text_cost = pricing.short_text_cost
    else:
        text_cost = pricing.long_text_cost
    image_cost = pricing.image_cost * image_count
    extra = text_length // pricing.extra_chunk_size
    base_total = text_cost + image_cost + extra

    total = base_total
    multiplier: Decimal | None = None
    surcharge = 0
    if policy.surcharge is SurchargePolicy.MULTIPLY_IN_DEEP_MODE and mode is AnalysisMode.DEEP:
        multiplier = pricing.deep_multiplier
        total = math.ceil(Decimal(base_total) * multiplier)
    elif policy.surcharge is SurchargePolicy.FLAT_ON_DEEP_TOGGLE and toggles.deep:
        surcharge = pricing.deep_toggle_surcharge
        total = base_total + surcharge

    return CreditQuote(
        total_credits=total,
        breakdown=CostBreakdown(
            text=text_cost,
            image=image_cost,
            extra=extra,
            base_total=base_total,
            multiplier=multiplier,
            surcharge=surcharge,
        ),
        estimated_tokens=tokens,
    )
