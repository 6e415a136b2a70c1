"""
Dependency helpers for the HTTP routes.

Services live on app.state.container, built in the lifespan handler.
"""

from fastapi import Request

from ..container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container
