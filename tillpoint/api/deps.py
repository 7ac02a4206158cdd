"""
FastAPI dependencies shared by the v1 routers.
"""
from typing import Optional

from fastapi import Header, Request

from tillpoint.services.container import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    """Services built by the application factory."""
    return request.app.state.services


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    """
    Acting staff id, as established by the authentication layer in front of
    this service. Absent for system calls.
    """
    return x_user_id
