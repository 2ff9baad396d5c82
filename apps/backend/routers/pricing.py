"""
Pricing Router
==============
Stateless tiered-cost calculator used by the resource editor.
"""

from fastapi import APIRouter, Depends

from auth import get_current_user
from models import User
from schemas import PricingCalculateRequest, PricingCalculateResponse
from services.pricing import calculate_tiered_cost, get_effective_rate, validate_pricing_tiers

router = APIRouter()


@router.post("/calculate", response_model=PricingCalculateResponse)
async def calculate(body: PricingCalculateRequest, user: User = Depends(get_current_user)):
    """
    Price ``quantity`` against a tier table.

    The tier table is validated alongside the calculation; an invalid
    table still produces a result so the editor can show both.
    """
    valid, errors = validate_pricing_tiers(body.tiers)
    result = calculate_tiered_cost(body.quantity, body.tiers, body.default_rate, body.currency)
    return PricingCalculateResponse(
        total_cost=result.total_cost,
        breakdown=result.breakdown,
        currency=result.currency,
        effective_rate=get_effective_rate(body.quantity, body.tiers, body.default_rate),
        valid=valid,
        errors=errors,
    )
