"""
API v1 Router

Gym-scoped endpoints live under /gyms; platform administration under /admin.
"""

from fastapi import APIRouter

from . import admin, gyms

router = APIRouter()

router.include_router(gyms.router, prefix="/gyms", tags=["Gyms"])
router.include_router(admin.router, prefix="/admin", tags=["Administration"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/gyms/available",
            "/gyms/set-active",
            "/gyms/current",
            "/gyms/{gymId}/members",
            "/admin/gyms",
            "/admin/users",
        ],
    }
