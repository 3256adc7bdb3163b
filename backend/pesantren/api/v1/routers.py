# backend/pesantren/api/v1/routers.py
from fastapi import APIRouter
from pesantren.api.v1 import auth, chat

# Main API router (/api)
api_router = APIRouter(prefix="/api")

# 1. Auth (login issues the session token every chat call needs)
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])

# 2. Chat (messages, delivery status, realtime stream)
api_router.include_router(chat.router, prefix="/chat", tags=["chat"])
