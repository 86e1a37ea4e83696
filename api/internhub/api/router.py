from fastapi import APIRouter

from internhub.api.routes import admin, conversations, health, realtime

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(conversations.router, prefix="/conversations", tags=["messaging"])
api_router.include_router(admin.router, prefix="/admin", tags=["moderation"])
api_router.include_router(realtime.router, tags=["realtime"])
