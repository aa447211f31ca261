"""Shared FastAPI dependencies."""

from typing import Any

from fastapi import Depends, Request

from leadmarket.container import Services
from leadmarket.core.exceptions import ForbiddenError, NotFoundError, UnauthorizedError
from leadmarket.core.logging import bind_contractor_id
from leadmarket.core.security import load_session_cookie
from leadmarket.models.contractor import Contractor

SESSION_COOKIE_NAME = "leadmarket_session"


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_session(request: Request) -> dict[str, Any]:
    """Dependency: identity asserted by the external provider, from the signed session cookie."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        raise UnauthorizedError("Not authenticated")
    payload = load_session_cookie(cookie)
    if not payload or not payload.get("uid"):
        raise UnauthorizedError("Invalid or expired session")
    return payload


async def get_current_contractor(session: dict[str, Any] = Depends(get_session)) -> Contractor:
    if session.get("role") != "contractor":
        raise ForbiddenError("Contractor only")
    contractor = await Contractor.get(session["uid"])
    if not contractor:
        raise NotFoundError("Contractor profile not found")
    bind_contractor_id(contractor.id)
    return contractor


async def require_approved_contractor(contractor: Contractor = Depends(get_current_contractor)) -> Contractor:
    if not contractor.is_approved:
        raise ForbiddenError("Contractor account is not approved")
    return contractor


def require_admin(session: dict[str, Any] = Depends(get_session)) -> str:
    """Dependency: require role admin; returns the admin uid."""
    if session.get("role") != "admin":
        raise ForbiddenError("Admin only")
    return session["uid"]
