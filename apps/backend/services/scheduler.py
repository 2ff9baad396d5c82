"""
Exchange Rate Scheduler
=======================
Background task syncing ECB rates once a day at 17:00 Europe/Berlin,
shortly after the ECB publishes.
"""

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from config import Settings, get_settings
from logging_config import get_logger
from services.exchange_rates import ExchangeRateService, SyncResult, seconds_until_next_sync

logger = get_logger(__name__)


class ExchangeRateScheduler:
    """
    Daily sync loop.

    Example:
        ```python
        scheduler = ExchangeRateScheduler(ExchangeRateService(), get_session_factory())
        scheduler.start()
        ...
        await scheduler.stop()
        ```
    """

    def __init__(
        self,
        service: ExchangeRateService,
        session_factory: async_sessionmaker,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.service = service
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self._sleep = sleep
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop; calling it again while running does nothing."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="exchange-rate-scheduler")
        logger.info(
            "Exchange rate scheduler started",
            hour=self.settings.exchange_sync_hour,
            timezone=self.settings.exchange_sync_timezone,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Exchange rate scheduler stopped")

    async def run_once(self) -> Optional[SyncResult]:
        """One sync in its own session; errors are logged, never raised."""
        try:
            async with self.session_factory() as session:
                result = await self.service.sync_exchange_rates(session)
                await session.commit()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Scheduled exchange rate sync crashed", error=str(e), exc_info=True)
            return None
        finally:
            self.runs += 1
        return result

    async def _run(self) -> None:
        if self.settings.run_exchange_sync_on_startup:
            await self._sleep(self.settings.exchange_sync_startup_delay_seconds)
            await self.run_once()

        while True:
            delay = seconds_until_next_sync(
                self._clock(),
                hour=self.settings.exchange_sync_hour,
                tz=self.settings.exchange_sync_timezone,
            )
            logger.info("Next exchange rate sync scheduled", in_seconds=round(delay))
            await self._sleep(delay)
            await self.run_once()
