from fastapi import APIRouter
from app.api.endpoints import auth, projects, public_projects

api_router = APIRouter()


@api_router.get("/health", tags=["Health"])
async def health_check():
    """Simple health check endpoint for load balancer"""
    return {"status": "healthy", "service": "plote-backend"}


api_router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
api_router.include_router(projects.router, prefix="/projects", tags=["Projects"])
api_router.include_router(public_projects.router, prefix="/public-projects", tags=["Public Projects"])
