"""
Finance Models
==============
Daily exchange rates and the sync log.
"""

from sqlalchemy import Column, Date, DateTime, Float, Integer, String, Text, UniqueConstraint

from .base import Base, utcnow


class ExchangeRate(Base):
    """One reference rate: 1 ``base_currency`` = ``rate`` ``target_currency``."""
    __tablename__ = "exchange_rates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    base_currency = Column(String(3), nullable=False, default="EUR")
    target_currency = Column(String(3), nullable=False)
    rate = Column(Float, nullable=False)
    date = Column(Date, nullable=False)
    source = Column(String(20), nullable=False, default="ECB")
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("base_currency", "target_currency", "date", name="uq_rate_per_day"),
    )


class ExchangeRateSync(Base):
    __tablename__ = "exchange_rate_syncs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    status = Column(String(20), nullable=False, doc="success or failed")
    sync_date = Column(DateTime, nullable=False, default=utcnow)
    rates_date = Column(Date, nullable=True)
    rates_updated = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
