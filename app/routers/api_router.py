from fastapi import APIRouter
from app.routers import admin, audit, auth, leave, notifications, reports, users

# Centralized API router hub
# Routers are aggregated here, and main.py only imports this single hub.
api_router = APIRouter()

api_router.include_router(auth.router, tags=["Authentication"])
api_router.include_router(users.router, tags=["Users"])
api_router.include_router(leave.router, tags=["Leaves"])
api_router.include_router(admin.router, tags=["Administration"])
api_router.include_router(notifications.router, tags=["Notifications"])
api_router.include_router(audit.router, tags=["Audit"])
api_router.include_router(reports.router, tags=["Reports"])
