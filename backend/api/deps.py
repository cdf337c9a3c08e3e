"""
FastAPI dependencies: shared services and the staff session.
"""

import json
from dataclasses import dataclass
from typing import Optional

from fastapi import Cookie, Depends, Request
from sqlalchemy.orm import Session

from database import get_db
from models import Tenant
from services.chat_orchestrator import ChatOrchestrator
from services.errors import Forbidden, Unauthorized
from services.tenants import resolve_tenant

STAFF_ROLES = ("admin", "inbox")


def get_orchestrator(request: Request) -> ChatOrchestrator:
    """The process-wide orchestrator built in the application lifespan."""
    return request.app.state.orchestrator


@dataclass
class StaffSession:
    city_id: str
    city_code: str
    role: str


def parse_session_cookie(raw: Optional[str]) -> Optional[StaffSession]:
    """Parse the JSON session cookie; None when missing or malformed."""
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None

    city_id = data.get("cityId")
    city_code = data.get("cityCode")
    role = data.get("role")
    if not city_id or not city_code or role not in STAFF_ROLES:
        return None
    return StaffSession(city_id=str(city_id), city_code=str(city_code), role=role)


def require_staff(session: Optional[str] = Cookie(default=None)) -> StaffSession:
    """Mandatory staff session, raises 401 if the cookie is missing or invalid."""
    staff = parse_session_cookie(session)
    if staff is None:
        raise Unauthorized("No valid session")
    return staff


def require_staff_tenant(
    city_code: str,
    staff: StaffSession = Depends(require_staff),
    db: Session = Depends(get_db),
) -> Tenant:
    """Resolve the path's tenant and check the session belongs to it (403 otherwise)."""
    tenant = resolve_tenant(db, city_code)
    if staff.city_id != tenant.id:
        raise Forbidden("Session does not belong to this city")
    return tenant
