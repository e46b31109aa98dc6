"""API routes."""

from fastapi import APIRouter

from app.api.routes import escalations

api_router = APIRouter()

# Protected routes (auth required)
api_router.include_router(escalations.router, prefix="/escalations", tags=["escalations"])
