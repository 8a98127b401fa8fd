"""Mode router: decides which analysis mode and model actually run.

Pure function of the tier policy, the input shape, the toggles and the
user's requested mode.

Rules by tier:
- free: always snapshot.
- pro: snapshot. Toggles are accepted but ignored while the policy has
  ``supports_mode_toggle=False`` (the default); the decision records that.
  With the capability on, the deep toggle steps up to expanded, since
  pro has no deep mode.
- plus: deep toggle forces deep (same capability check); otherwise short
  text without images is snapshot and anything else is expanded.
- max: honors the requested mode; without one, images mean deep, short
  text without images means expanded, anything else deep.
"""

from dataclasses import dataclass

from messagemind.services.pricing import (
    AnalysisMode,
    AnalysisToggles,
    PricingConfig,
    Tier,
    TierPolicy,
)


@dataclass(frozen=True)
class RoutingDecision:
    """Resolved mode and model for an analysis.

    Attributes:
        mode: Mode the analysis runs in.
        model: Model identifier for the AI call.
        toggles_ignored: True when toggles were set but the tier's policy
            does not let them influence mode selection.
    """

    mode: AnalysisMode
    model: str
    toggles_ignored: bool = False


def _toggled_mode(policy: TierPolicy, toggles: AnalysisToggles) -> AnalysisMode | None:
    """Mode forced by the deep toggle, if the tier lets toggles route.

    Tiers without deep mode step up to expanded instead.
    """
    if not (toggles.deep and policy.supports_mode_toggle):
        return None
    return AnalysisMode.DEEP if policy.deep_allowed else AnalysisMode.EXPANDED


def route_mode(
    tier: Tier,
    text_length: int,
    has_images: bool,
    toggles: AnalysisToggles,
    requested_mode: AnalysisMode | None,
    pricing: PricingConfig,
) -> RoutingDecision:
    """Resolve the analysis mode and model.

    Args:
        tier: Account tier.
        text_length: Trimmed input text length.
        has_images: Whether any image references were submitted.
        toggles: Request toggles.
        requested_mode: Mode the user asked for, if any.
        pricing: Pricing table with tier policies.

    Returns:
        RoutingDecision with mode and model.

    Raises:
        KeyError: If the tier is not configured (programmer error).
    """
    policy = pricing.policy_for(tier)
    is_short = text_length <= pricing.short_text_threshold and not has_images
    any_toggle = toggles.deep or toggles.explanation

    if tier is Tier.FREE:
        mode = AnalysisMode.SNAPSHOT
    elif tier is Tier.PRO:
        mode = _toggled_mode(policy, toggles) or AnalysisMode.SNAPSHOT
    elif tier is Tier.PLUS:
        mode = _toggled_mode(policy, toggles) or (
            AnalysisMode.SNAPSHOT if is_short else AnalysisMode.EXPANDED
        )
    elif tier is Tier.MAX:
        if requested_mode is not None:
            mode = requested_mode
        elif has_images:
            mode = AnalysisMode.DEEP
        elif is_short:
            mode = AnalysisMode.EXPANDED
        else:
            mode = AnalysisMode.DEEP
    else:
        raise KeyError(f"Unrecognized tier: {tier!r}")

    return RoutingDecision(
        mode=mode,
        model=policy.model,
        toggles_ignored=any_toggle and not policy.supports_mode_toggle,
    )
