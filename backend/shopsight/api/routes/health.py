"""
Health check route. No authentication.
"""

from fastapi import APIRouter

from shopsight import __version__

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    return {"status": "ok", "version": __version__}
