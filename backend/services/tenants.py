"""Tenant resolution: slug first, then uppercased code."""

import structlog
from sqlalchemy.orm import Session

from models import Tenant
from services.errors import TenantNotFound

logger = structlog.get_logger(__name__)


def resolve_tenant(db: Session, identifier: str) -> Tenant:
    """Map an external city identifier to a Tenant.

    Raises:
        TenantNotFound: if neither the slug nor the uppercased code matches.
    """
    identifier = (identifier or "").strip()
    if not identifier:
        raise TenantNotFound(identifier)

    tenant = db.query(Tenant).filter(Tenant.slug == identifier).first()
    match_type = "slug"

    if tenant is None:
        tenant = db.query(Tenant).filter(Tenant.code == identifier.upper()).first()
        match_type = "code"

    if tenant is None:
        logger.warning("tenant_not_found", city_id=identifier)
        raise TenantNotFound(identifier)

    logger.debug("tenant_resolved", city_id=identifier, match_type=match_type, city_code=tenant.code)
    return tenant
