"""
Exchange Rates Router
=====================
Stored ECB reference rates, conversion and manual sync.
"""

from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, require_system_admin
from database import get_db
from models import User
from routers.deps import get_exchange_service
from schemas import ConversionResponse, ExchangeRateResponse, ExchangeRateSyncResponse, SyncResultResponse
from services import exchange_rates
from services.exchange_rates import ExchangeRateService

router = APIRouter()


@router.get("", response_model=List[ExchangeRateResponse])
async def list_rates(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    """Latest stored rate per currency (EUR base)."""
    return await exchange_rates.latest_rates(db)


@router.get("/convert", response_model=ConversionResponse)
async def convert(
    amount: float = Query(...),
    from_currency: str = Query(..., alias="from", min_length=3, max_length=3),
    to_currency: str = Query(..., alias="to", min_length=3, max_length=3),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    converted, rate = await exchange_rates.convert(db, amount, from_currency, to_currency)
    return ConversionResponse(
        amount=amount,
        from_currency=from_currency.upper(),
        to_currency=to_currency.upper(),
        converted=converted,
        rate=rate,
    )


@router.post("/sync", response_model=SyncResultResponse)
async def sync_rates(
    user: User = Depends(require_system_admin),
    db: AsyncSession = Depends(get_db),
    service: ExchangeRateService = Depends(get_exchange_service),
):
    result = await service.sync_exchange_rates(db)
    await db.commit()
    return SyncResultResponse(
        success=result.success,
        rates_updated=result.rates_updated,
        rates_date=result.rates_date,
        error=result.error,
    )


@router.get("/syncs", response_model=List[ExchangeRateSyncResponse])
async def sync_log(
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await exchange_rates.recent_syncs(db, limit)
