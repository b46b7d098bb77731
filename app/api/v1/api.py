"""
API v1 router.
"""
from fastapi import APIRouter
from app.api.v1.endpoints import health, integrations, webhooks, widget_data

api_router = APIRouter()

# Routers carry their own prefixes
api_router.include_router(widget_data.router)
api_router.include_router(integrations.router)
api_router.include_router(webhooks.router)
api_router.include_router(health.router, tags=["health"])
