"""API Routers package."""

from app.routers import health as health_router
from app.routers import progression as progression_router

__all__ = ["health_router", "progression_router"]
