from fastapi import APIRouter, Depends, Query
from typing import Optional, Dict, Any
import logging

from merchant_pipeline.core.auth_dependencies import AgentIdentity, get_admin_agent
from merchant_pipeline.core.service_container import ServiceContainer, get_services

router = APIRouter(prefix="/audits", tags=["Audits"])

logger = logging.getLogger(__name__)


@router.get("", status_code=200)
async def list_audits(
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=1000),
    action: Optional[str] = Query(default=None),
    actor: Optional[str] = Query(default=None),
    application_id: Optional[str] = Query(default=None),
    status: Optional[str] = Query(default=None),
    agent: AgentIdentity = Depends(get_admin_agent),
    services: ServiceContainer = Depends(get_services),
):
    filters: Dict[str, Any] = {
        "action": action,
        "actor": actor,
        "application_id": application_id,
        "status": status,
    }
    return await services.audit.get_audits(skip=skip, limit=limit, filters=filters)
