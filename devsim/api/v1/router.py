"""
API v1 Router
Main router for all API v1 endpoints
"""

from fastapi import APIRouter

from devsim.api.v1.endpoints import connections, devices, projects

api_router = APIRouter()

# Device management and transmission endpoints
api_router.include_router(
    devices.router,
    prefix="/devices",
    tags=["devices"]
)

# Project management and bulk transmission endpoints
api_router.include_router(
    projects.router,
    prefix="/projects",
    tags=["projects"]
)

# Connection management endpoints
api_router.include_router(
    connections.router,
    prefix="/connections",
    tags=["connections"]
)
