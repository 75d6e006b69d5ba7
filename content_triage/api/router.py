"""
Top-level API router.
Combines all sub-routers into a single router.
"""

from fastapi import APIRouter

from content_triage.api.analysis import router as analysis_router
from content_triage.api.health import router as health_router
from content_triage.api.queue import router as queue_router

api_router = APIRouter()

api_router.include_router(health_router)
api_router.include_router(analysis_router)
api_router.include_router(queue_router)
