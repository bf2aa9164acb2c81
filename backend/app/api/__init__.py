############################################################
#
# switchyard - Messages API Translation Gateway
#
# __init__.py: API endpoints package and router configuration
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""API endpoints for switchyard."""

from fastapi import APIRouter

from backend.app.api.health import router as health_router
from backend.app.api.messages_api import router as messages_router

# Create main API router
api_router = APIRouter()

# Include all sub-routers
api_router.include_router(health_router)
api_router.include_router(messages_router)

__all__ = ["api_router"]
