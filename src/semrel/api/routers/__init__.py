"""API routers."""

from . import similarity

__all__ = ["similarity"]
