"""
GrantMatch API Routers
FastAPI router modules for the grant matching service.
"""
from backend.api import ai_matching

__all__ = ["ai_matching"]
