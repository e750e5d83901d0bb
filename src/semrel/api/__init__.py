"""HTTP API over the semrel registry."""

from .main import create_app

__all__ = ["create_app"]
