"""
Pricing Tier Calculator
=======================
Volume-based pricing for resources: the rate changes as the consumed
quantity crosses tier boundaries.

Example:
    first 10 hours at 50/hr, next 40 hours at 45/hr, after 50 hours 40/hr::

        tiers = [
            PricingTier(from_quantity=0, to_quantity=10, rate=50),
            PricingTier(from_quantity=10, to_quantity=50, rate=45),
            PricingTier(from_quantity=50, to_quantity=None, rate=40),
        ]
        calculate_tiered_cost(60, tiers, default_rate=55).total_cost  # 2700.0
"""

from typing import Iterable, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, Field


class PricingTier(BaseModel):
    """One band of a tier table. ``to_quantity=None`` means unbounded."""

    from_quantity: float = Field(..., description="Start of the band (inclusive)")
    to_quantity: Optional[float] = Field(default=None, description="End of the band (exclusive)")
    rate: float
    unit_type: str = Field(default="hr")
    currency: str = Field(default="USD")


class TierCharge(BaseModel):
    tier: PricingTier
    quantity_in_tier: float
    cost_in_tier: float


class PricingTierResult(BaseModel):
    total_cost: float
    breakdown: List[TierCharge]
    currency: str


TierInput = Union[PricingTier, dict]


def _coerce_tiers(tiers: Optional[Iterable[TierInput]]) -> List[PricingTier]:
    if not tiers:
        return []
    return [t if isinstance(t, PricingTier) else PricingTier.model_validate(t) for t in tiers]


def calculate_tiered_cost(
    quantity: float,
    tiers: Optional[Sequence[TierInput]],
    default_rate: float,
    currency: str = "USD",
) -> PricingTierResult:
    """
    Cost of ``quantity`` units under a tier table.

    Tiers are consumed in ``from_quantity`` order. Whatever is left once the
    bounded tiers are exhausted is billed at the last tier's rate. Without
    tiers the whole quantity is billed flat at ``default_rate``.
    """
    parsed = _coerce_tiers(tiers)

    if quantity <= 0:
        return PricingTierResult(
            total_cost=0.0,
            breakdown=[],
            currency=parsed[0].currency if parsed else currency,
        )

    if not parsed:
        flat = PricingTier(
            from_quantity=0,
            to_quantity=None,
            rate=default_rate,
            unit_type="hr",
            currency=currency,
        )
        cost = quantity * default_rate
        return PricingTierResult(
            total_cost=cost,
            breakdown=[TierCharge(tier=flat, quantity_in_tier=quantity, cost_in_tier=cost)],
            currency=currency,
        )

    sorted_tiers = sorted(parsed, key=lambda t: t.from_quantity)

    breakdown: List[TierCharge] = []
    remaining = quantity
    total = 0.0

    for tier in sorted_tiers:
        if remaining <= 0:
            break

        consumed = quantity - remaining
        tier_end = tier.to_quantity if tier.to_quantity is not None else float("inf")
        in_tier = min(remaining, max(0.0, min(tier_end, quantity) - max(tier.from_quantity, consumed)))

        if quantity > tier.from_quantity and in_tier > 0:
            cost = in_tier * tier.rate
            total += cost
            breakdown.append(TierCharge(tier=tier, quantity_in_tier=in_tier, cost_in_tier=cost))
            remaining -= in_tier

    if remaining > 0:
        last = sorted_tiers[-1]
        cost = remaining * last.rate
        total += cost
        breakdown.append(TierCharge(tier=last, quantity_in_tier=remaining, cost_in_tier=cost))

    return PricingTierResult(total_cost=total, breakdown=breakdown, currency=parsed[0].currency)


def get_effective_rate(
    quantity: float,
    tiers: Optional[Sequence[TierInput]],
    default_rate: float,
) -> float:
    """Weighted average rate per unit for ``quantity``."""
    if not tiers or quantity <= 0:
        return default_rate

    return calculate_tiered_cost(quantity, tiers, default_rate).total_cost / quantity


def validate_pricing_tiers(tiers: Sequence[TierInput]) -> Tuple[bool, List[str]]:
    """
    Check a tier table for structural problems.

    Returns:
        ``(valid, errors)``; tier numbers in messages are 1-based positions
        after sorting by ``from_quantity``.
    """
    if not isinstance(tiers, (list, tuple)):
        return False, ["Tiers must be an array"]

    if not tiers:
        return True, []

    sorted_tiers = sorted(_coerce_tiers(tiers), key=lambda t: t.from_quantity)
    errors: List[str] = []

    for i, tier in enumerate(sorted_tiers):
        n = i + 1

        if tier.from_quantity < 0:
            errors.append(f"Tier {n}: fromQuantity cannot be negative")

        if tier.to_quantity is not None and tier.to_quantity <= tier.from_quantity:
            errors.append(f"Tier {n}: toQuantity must be greater than fromQuantity")

        if tier.rate < 0:
            errors.append(f"Tier {n}: rate cannot be negative")

        if i < len(sorted_tiers) - 1:
            next_tier = sorted_tiers[i + 1]
            if tier.to_quantity is None:
                errors.append(f"Tier {n}: Only the last tier can have unlimited toQuantity")
            elif tier.to_quantity != next_tier.from_quantity:
                errors.append(
                    f"Tier {n}: Gap between tiers (ends at {tier.to_quantity:g}, "
                    f"next starts at {next_tier.from_quantity:g})"
                )

    if sorted_tiers[0].from_quantity != 0:
        errors.append("First tier must start at 0")

    return not errors, errors
