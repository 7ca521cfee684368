"""
API router. Aggregates all route modules.
"""
from fastapi import APIRouter
from reengage.api.reengagement import router as reengagement_router
from reengage.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(reengagement_router)
api_router.include_router(health_router)
