# Routes package __init__.py - re-exports routers for main.py convenience
from .books import router as books_router
from .practice import router as practice_router
from .review import router as review_router
from .curveball import router as curveball_router
from .admin import router as admin_router

__all__ = ['books_router', 'practice_router', 'review_router', 'curveball_router', 'admin_router']
