"""
FastAPI routers for the shorts service.
"""

from app.routers import accounts, health, shorts

__all__ = ["health", "accounts", "shorts"]
