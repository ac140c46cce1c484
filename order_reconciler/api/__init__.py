"""HTTP API for the order reconciler."""
from .main import create_app

__all__ = ["create_app"]
