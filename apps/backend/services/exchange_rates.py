"""
Exchange Rate Service
=====================
Daily reference rates from the European Central Bank.

ECB publishes one EUR-based rate per currency every working day around
16:00 CET. Rates are stored per (base, target, date); conversions between
two non-EUR currencies go through EUR.
"""

import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

import httpx
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

import metrics as app_metrics
from circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from config import Settings, get_settings
from exceptions import ExternalServiceError, NotFoundError, ValidationError
from logging_config import get_logger
from models import ExchangeRate, ExchangeRateSync

logger = get_logger(__name__)

BASE_CURRENCY = "EUR"
MAX_SYNC_INTERVAL_SECONDS = 24 * 3600


class TransientFetchError(Exception):
    """ECB answered with a 5xx or the connection failed; worth retrying."""
    pass


@dataclass
class SyncResult:
    success: bool
    rates_updated: int = 0
    rates_date: Optional[date] = None
    error: Optional[str] = None


def parse_ecb_rates(xml_text: str) -> Tuple[date, Dict[str, float]]:
    """
    Parse the ECB daily reference XML.

    Returns:
        ``(rates_date, {currency: rate})`` with EUR as the implicit base

    Raises:
        ValidationError: If the document has no dated rate cube
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ValidationError(f"Malformed exchange rate document: {e}")

    for cube in root.iter():
        if not cube.tag.endswith("Cube") or "time" not in cube.attrib:
            continue

        rates: Dict[str, float] = {}
        for child in cube:
            currency = child.attrib.get("currency")
            rate = child.attrib.get("rate")
            if currency and rate:
                try:
                    rates[currency.upper()] = float(rate)
                except ValueError:
                    logger.warning("Skipping unparsable rate", currency=currency, rate=rate)
        return date.fromisoformat(cube.attrib["time"]), rates

    raise ValidationError("Exchange rate document contains no rates")


def seconds_until_next_sync(
    now: Optional[datetime] = None,
    hour: int = 17,
    tz: str = "Europe/Berlin",
) -> float:
    """
    Seconds from ``now`` to the next ``hour:00`` wall-clock time in ``tz``.

    Always strictly positive and never more than 24 hours. Naive ``now``
    values are taken as UTC.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    zone = ZoneInfo(tz)
    local = now.astimezone(zone)
    target = local.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= local:
        target = (local + timedelta(days=1)).replace(hour=hour, minute=0, second=0, microsecond=0)

    # Subtract in UTC; same-zone aware arithmetic ignores DST offsets
    delta = (target.astimezone(timezone.utc) - now.astimezone(timezone.utc)).total_seconds()
    if delta <= 0:
        delta = MAX_SYNC_INTERVAL_SECONDS
    return min(delta, MAX_SYNC_INTERVAL_SECONDS)


class ExchangeRateService:
    """
    Fetch and store ECB rates.

    Example:
        ```python
        service = ExchangeRateService()
        async with get_session_factory()() as session:
            result = await service.sync_exchange_rates(session)
            await session.commit()
        ```
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport
        self.breaker = CircuitBreaker(
            name="ecb",
            failure_threshold=3,
            recovery_timeout=300.0,
            expected_exception=TransientFetchError,
        )

    @retry(
        retry=retry_if_exception_type(TransientFetchError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            "ECB fetch failed, retrying",
            attempt=retry_state.attempt_number,
            sleep=retry_state.next_action.sleep,
        ),
    )
    async def _download(self) -> str:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(30.0, connect=10.0),
            transport=self._transport,
        ) as client:
            try:
                response = await client.get(self.settings.exchange_rate_url)
            except httpx.TransportError as e:
                raise TransientFetchError(f"ECB unreachable: {e.__class__.__name__}") from e

        if response.status_code >= 500:
            raise TransientFetchError(f"ECB returned HTTP {response.status_code}")
        if response.status_code >= 400:
            raise ExternalServiceError(f"ECB returned HTTP {response.status_code}", service="ecb")
        return response.text

    async def fetch_rates(self) -> Tuple[date, Dict[str, float]]:
        """
        Download and parse today's rates.

        Raises:
            ExternalServiceError: Provider unavailable after retries
        """
        try:
            xml_text = await self.breaker.call(self._download)
        except CircuitBreakerOpenError as e:
            raise ExternalServiceError(str(e), service="ecb", original_error=e)
        except TransientFetchError as e:
            raise ExternalServiceError(str(e), service="ecb", original_error=e)
        return parse_ecb_rates(xml_text)

    async def sync_exchange_rates(self, session: AsyncSession) -> SyncResult:
        """
        Fetch, upsert and record the run. Never raises; the caller commits.
        """
        started = time.perf_counter()
        try:
            rates_date, rates = await self.fetch_rates()
            # Savepoint keeps the session usable for the failure record
            async with session.begin_nested():
                updated = await store_rates(session, rates_date, rates)
        except Exception as e:
            logger.error("Exchange rate sync failed", error=str(e), exc_info=True)
            app_metrics.exchange_rate_syncs_total.labels(status="failed").inc()
            session.add(ExchangeRateSync(status="failed", rates_updated=0, error=str(e)[:1000]))
            await session.flush()
            return SyncResult(success=False, error=str(e))

        session.add(ExchangeRateSync(status="success", rates_date=rates_date, rates_updated=updated))
        await session.flush()
        app_metrics.exchange_rate_syncs_total.labels(status="success").inc()
        logger.info(
            "Exchange rates synced",
            rates_date=str(rates_date),
            rates_updated=updated,
            latency_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return SyncResult(success=True, rates_updated=updated, rates_date=rates_date)


async def store_rates(session: AsyncSession, rates_date: date, rates: Dict[str, float]) -> int:
    """Insert or update one row per currency for ``rates_date``."""
    existing = {
        row.target_currency: row
        for row in (await session.execute(
            select(ExchangeRate).where(
                ExchangeRate.base_currency == BASE_CURRENCY,
                ExchangeRate.date == rates_date,
            )
        )).scalars().all()
    }

    for currency, rate in rates.items():
        row = existing.get(currency)
        if row is None:
            session.add(ExchangeRate(
                base_currency=BASE_CURRENCY,
                target_currency=currency,
                rate=rate,
                date=rates_date,
                source="ECB",
            ))
        else:
            row.rate = rate

    await session.flush()
    return len(rates)


async def latest_rates(session: AsyncSession) -> List[ExchangeRate]:
    """Most recent stored rate for every currency."""
    newest = (
        select(ExchangeRate.target_currency, func.max(ExchangeRate.date).label("max_date"))
        .where(ExchangeRate.base_currency == BASE_CURRENCY)
        .group_by(ExchangeRate.target_currency)
        .subquery()
    )
    result = await session.execute(
        select(ExchangeRate)
        .join(
            newest,
            (ExchangeRate.target_currency == newest.c.target_currency)
            & (ExchangeRate.date == newest.c.max_date),
        )
        .where(ExchangeRate.base_currency == BASE_CURRENCY)
        .order_by(ExchangeRate.target_currency)
    )
    return list(result.scalars().all())


async def _rate_from_base(session: AsyncSession, currency: str) -> float:
    if currency == BASE_CURRENCY:
        return 1.0
    rate = (await session.execute(
        select(ExchangeRate.rate)
        .where(ExchangeRate.base_currency == BASE_CURRENCY, ExchangeRate.target_currency == currency)
        .order_by(ExchangeRate.date.desc())
        .limit(1)
    )).scalar_one_or_none()
    if rate is None:
        raise NotFoundError("Exchange rate", currency)
    return rate


async def convert(session: AsyncSession, amount: float, from_currency: str, to_currency: str) -> Tuple[float, float]:
    """
    Convert ``amount`` using the latest stored rates.

    Returns:
        ``(converted_amount, applied_rate)``

    Raises:
        NotFoundError: No stored rate for one of the currencies
    """
    source = from_currency.upper()
    target = to_currency.upper()
    if source == target:
        return amount, 1.0

    rate = await _rate_from_base(session, target) / await _rate_from_base(session, source)
    return round(amount * rate, 6), rate


async def recent_syncs(session: AsyncSession, limit: int = 20) -> List[ExchangeRateSync]:
    result = await session.execute(
        select(ExchangeRateSync).order_by(ExchangeRateSync.sync_date.desc(), ExchangeRateSync.id.desc()).limit(limit)
    )
    return list(result.scalars().all())
