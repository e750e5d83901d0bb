"""
Dependency injection for API endpoints.

The registry is created by create_app() and kept on app.state; routes
receive it (or a metric's engine) through these dependencies rather than
through a module-level global.
"""

from typing import Annotated

from fastapi import Depends, Request

from ..query.engine import QueryEngine
from ..registry import SRRegistry


def get_registry(request: Request) -> SRRegistry:
    """Registry attached to the running application."""
    return request.app.state.registry


RegistryDependency = Annotated[SRRegistry, Depends(get_registry)]


def get_engine(language: str, metric: str, registry: RegistryDependency) -> QueryEngine:
    """
    Engine for the path's language and metric.

    Raises:
        NotFoundError: If the metric is not registered (404)
    """
    return registry.engine(language, metric)


EngineDependency = Annotated[QueryEngine, Depends(get_engine)]
