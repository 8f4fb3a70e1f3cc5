from fastapi import APIRouter

from lendsafe.api.v1.routers import health, me, pending_actions, role_assignments

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(me.router)
api_router.include_router(role_assignments.router)
api_router.include_router(pending_actions.router)

__all__ = ["api_router"]
