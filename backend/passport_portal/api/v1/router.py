from fastapi import APIRouter
from passport_portal.api.v1.endpoints.admin import admin_router

api_router = APIRouter()


@api_router.get("/health", tags=["Health"])
async def health_check():
    """Simple health check endpoint for load balancer"""
    return {"status": "healthy", "service": "passport-portal"}


api_router.include_router(admin_router)
