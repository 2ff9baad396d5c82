"""
Shared Router Dependencies
==========================
Long-lived clients created in the lifespan and kept on ``app.state``.
"""

from fastapi import Request

from services.chat_hub import ChatHub
from services.exchange_rates import ExchangeRateService
from services.sms import TwilioSmsClient


def get_sms_client(request: Request) -> TwilioSmsClient:
    return request.app.state.sms_client


def get_exchange_service(request: Request) -> ExchangeRateService:
    return request.app.state.exchange_service


def get_chat_hub(request: Request) -> ChatHub:
    return request.app.state.chat_hub
