# mentorship_matching/routers/__init__.py
from . import auth_router
from . import program_router
from . import matching_router
from . import match_router

__all__ = [
    "auth_router",
    "program_router",
    "matching_router",
    "match_router"
]
