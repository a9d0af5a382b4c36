"""
Control panel routers
"""
from .metrics import router as metrics_router
from .pages import router as pages_router
from .settings import router as settings_router

__all__ = ["metrics_router", "pages_router", "settings_router"]
