"""
API Routers
===========
FastAPI routers for the Ganttium backend.
"""

from .auth import router as auth_router
from .chat import router as chat_router
from .chat import ws_router as chat_ws_router
from .documents import router as documents_router
from .exchange_rates import router as exchange_rates_router
from .notifications import router as notifications_router
from .organizations import router as organizations_router
from .pricing import router as pricing_router
from .projects import router as projects_router
from .resources import router as resources_router
from .system import router as system_router
from .tracking import router as tracking_router

__all__ = [
    "auth_router",
    "chat_router",
    "chat_ws_router",
    "documents_router",
    "exchange_rates_router",
    "notifications_router",
    "organizations_router",
    "pricing_router",
    "projects_router",
    "resources_router",
    "system_router",
    "tracking_router",
]
