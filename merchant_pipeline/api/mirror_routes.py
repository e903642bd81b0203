from fastapi import APIRouter, Depends

from merchant_pipeline.core.auth_dependencies import AgentIdentity, get_current_agent
from merchant_pipeline.core.service_container import ServiceContainer, get_services
from merchant_pipeline.schemas.merchant_schema import MerchantApplicationData, MirrorSyncRequest

router = APIRouter(prefix="/mirror", tags=["CRM Mirror"])


# Reconciles the CRM mirror record for one application
@router.post("/sync")
async def sync_mirror(
    payload: MirrorSyncRequest,
    agent: AgentIdentity = Depends(get_current_agent),
    services: ServiceContainer = Depends(get_services),
):
    data = MerchantApplicationData.model_validate(payload.data)
    ok = await services.crm.sync(
        payload.application_id,
        payload.action,
        data,
        agent_email=payload.agent_email or agent.email,
        merchant_email=payload.merchant_email,
    )
    return {"ok": ok}
