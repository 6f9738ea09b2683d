"""API router composition for all route groups."""

from fastapi import APIRouter

from .routes import proxy, search, sources

api_router = APIRouter()
api_router.include_router(search.router, prefix="/search", tags=["search"])
api_router.include_router(proxy.router, prefix="/proxy", tags=["proxy"])
api_router.include_router(sources.router, prefix="/sources", tags=["sources"])
