"""Tier and pricing configuration for analysis metering.

Defines the tiers, analysis modes, per-tier capability policies, and the
immutable pricing table threaded through the credit calculator, the mode
router and the orchestrator. Nothing here reads global state: callers pass
a ``PricingConfig`` explicitly, and tests build alternate fixtures with
``dataclasses.replace``.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from types import MappingProxyType

# =============================================================================
# Enums
# =============================================================================


class Tier(str, Enum):
    """Subscription levels, from most restricted to most permissive."""

    FREE = "free"
    PRO = "pro"
    PLUS = "plus"
    MAX = "max"


class AnalysisMode(str, Enum):
    """Analysis depth, from simplest to most detailed.

    Values:
        SNAPSHOT: Short read of the message with two reply options.
        EXPANDED: Adds an explanation and a third reply option.
        DEEP: Full breakdown, five reply styles and a conversation plan.
    """

    SNAPSHOT = "snapshot"
    EXPANDED = "expanded"
    DEEP = "deep"


class SurchargePolicy(str, Enum):
    """How a tier adjusts the base credit total.

    Values:
        FLAT_NOMINAL: Always charge the nominal amount (free tier).
        NONE: Base total passes through unchanged.
        FLAT_ON_DEEP_TOGGLE: Add a flat surcharge when the deep toggle is set.
        MULTIPLY_IN_DEEP_MODE: Multiply (rounding up) when the resolved mode is deep.
    """

    FLAT_NOMINAL = "flat_nominal"
    NONE = "none"
    FLAT_ON_DEEP_TOGGLE = "flat_on_deep_toggle"
    MULTIPLY_IN_DEEP_MODE = "multiply_in_deep_mode"


# =============================================================================
# Data Models
# =============================================================================


@dataclass(frozen=True)
class AnalysisToggles:
    """User-selected request toggles.

    Attributes:
        deep: Deep/expanded surcharge toggle. Forces deep mode on tiers
            that support it.
        explanation: Ask for an explanation block. Never surcharged.
    """

    deep: bool = False
    explanation: bool = False


@dataclass(frozen=True)
class TierPolicy:
    """Capabilities and pricing behavior of one tier.

    Attributes:
        tier: The tier this policy describes.
        daily_allowance: Credits restored by the daily reset.
        monthly_free_analyses: Free analyses per calendar month (free tier).
        deep_allowed: Whether deep mode may be requested.
        images_allowed: Whether image references may be submitted.
        supports_mode_toggle: Whether toggles influence mode selection.
            False means toggles are accepted but ignored by the router.
        surcharge: How the base total is adjusted.
        model: Model identifier used for this tier's analyses.
    """

    tier: Tier
    daily_allowance: int
    monthly_free_analyses: int
    deep_allowed: bool
    images_allowed: bool
    supports_mode_toggle: bool
    surcharge: SurchargePolicy
    model: str


@dataclass(frozen=True)
class PricingConfig:
    """Immutable pricing table.

    Attributes:
        tiers: Policy per tier.
        short_text_threshold: Trimmed length at or below which text is "short".
        short_text_cost: Credits for short text.
        long_text_cost: Credits for text above the threshold.
        image_cost: Credits per image reference.
        extra_chunk_size: Characters per extra-input credit.
        image_placeholder_chars: Characters an image counts as.
        token_baselines: Output token baseline per mode.
        max_input_chars: Upper bound on text length plus image placeholders.
        free_nominal_charge: Display charge for the free tier.
        deep_toggle_surcharge: Flat surcharge for FLAT_ON_DEEP_TOGGLE tiers.
        deep_multiplier: Multiplier for MULTIPLY_IN_DEEP_MODE tiers.
    """

    tiers: Mapping[Tier, TierPolicy]
    short_text_threshold: int = 200
    short_text_cost: int = 5
    long_text_cost: int = 12
    image_cost: int = 30
    extra_chunk_size: int = 500
    image_placeholder_chars: int = 1000
    token_baselines: Mapping[AnalysisMode, int] = field(
        default_factory=lambda: MappingProxyType(
            {
                AnalysisMode.SNAPSHOT: 100,
                AnalysisMode.EXPANDED: 200,
                AnalysisMode.DEEP: 600,
            }
        )
    )
    max_input_chars: int = 2000
    free_nominal_charge: int = 1
    deep_toggle_surcharge: int = 12
    deep_multiplier: Decimal = Decimal("1.2")

    def policy_for(self, tier: Tier) -> TierPolicy:
        """Return the policy for a tier.

        Args:
            tier: Tier to look up.

        Returns:
            TierPolicy for the tier.

        Raises:
            KeyError: If the tier is not configured. This is a configuration
                error, not a request error.
        """
        return self.tiers[tier]


DEFAULT_MODEL = "llama-3.3-70b-versatile"


def build_pricing_config(
    *,
    default_model: str = DEFAULT_MODEL,
    model_overrides: Mapping[str, str] | None = None,
) -> PricingConfig:
    """Build the production pricing table.

    Args:
        default_model: Model used by every tier unless overridden.
        model_overrides: Optional tier value to model identifier mapping.

    Returns:
        PricingConfig with the default tier policies.
    """
    overrides = dict(model_overrides or {})

    def _model(tier: Tier) -> str:
        return overrides.get(tier.value, default_model)

    policies = {
        Tier.FREE: TierPolicy(
            tier=Tier.FREE,
            daily_allowance=0,
            monthly_free_analyses=1,
            deep_allowed=False,
            images_allowed=False,
            supports_mode_toggle=False,
            surcharge=SurchargePolicy.FLAT_NOMINAL,
            model=_model(Tier.FREE),
        ),
        Tier.PRO: TierPolicy(
            tier=Tier.PRO,
            daily_allowance=100,
            monthly_free_analyses=0,
            deep_allowed=False,
            images_allowed=False,
            supports_mode_toggle=False,
            surcharge=SurchargePolicy.NONE,
            model=_model(Tier.PRO),
        ),
        Tier.PLUS: TierPolicy(
            tier=Tier.PLUS,
            daily_allowance=180,
            monthly_free_analyses=0,
            deep_allowed=True,
            images_allowed=True,
            supports_mode_toggle=True,
            surcharge=SurchargePolicy.FLAT_ON_DEEP_TOGGLE,
            model=_model(Tier.PLUS),
        ),
        Tier.MAX: TierPolicy(
            tier=Tier.MAX,
            daily_allowance=300,
            monthly_free_analyses=0,
            deep_allowed=True,
            images_allowed=True,
            supports_mode_toggle=True,
            surcharge=SurchargePolicy.MULTIPLY_IN_DEEP_MODE,
            model=_model(Tier.MAX),
        ),
    }
    return PricingConfig(tiers=MappingProxyType(policies))


DEFAULT_PRICING = build_pricing_config()
"""Production pricing with every tier on the default model."""
