"""Slash Negotiation Engine - API Routers"""
from .webhooks import router as webhooks_router
from .negotiations import router as negotiations_router

__all__ = [
    "webhooks_router",
    "negotiations_router",
]
