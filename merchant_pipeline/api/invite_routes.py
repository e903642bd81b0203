import logging

from fastapi import APIRouter, Depends

from merchant_pipeline.core.auth_dependencies import AgentIdentity, get_admin_agent, get_current_agent
from merchant_pipeline.core.service_container import ServiceContainer, get_services
from merchant_pipeline.schemas.merchant_schema import (
    BatchInviteRequest,
    GenerateInviteRequest,
    ResendInviteRequest,
    SendInviteRequest,
)

router = APIRouter(prefix="/invites", tags=["Invites"])

logger = logging.getLogger(__name__)


# Sends invites to a list of merchant emails in paced batches
@router.post("/batch")
async def send_batch_invites(
    payload: BatchInviteRequest,
    agent: AgentIdentity = Depends(get_current_agent),
    services: ServiceContainer = Depends(get_services),
):
    result = await services.invites.dispatch(payload.emails, agent, payload.strategy)
    await services.audit.record(
        action="batch_invite",
        actor=agent.email,
        details={"successful": len(result.successful), "failed": len(result.failed), "skipped": len(result.skipped)},
        status="successful" if not result.failed else "failed",
    )
    return result.to_response()


# Creates a single invite (direct) or a draft for agent pre-fill
@router.post("/generate")
async def generate_invite(
    payload: GenerateInviteRequest,
    agent: AgentIdentity = Depends(get_current_agent),
    services: ServiceContainer = Depends(get_services),
):
    return await services.applications.generate_invite(payload, agent)


# Emails an existing invite link to one or more merchant addresses
@router.post("/{application_id}/send")
async def send_invite(
    application_id: str,
    payload: SendInviteRequest,
    agent: AgentIdentity = Depends(get_current_agent),
    services: ServiceContainer = Depends(get_services),
):
    return await services.applications.send_invite(application_id, payload.emails, agent)


# Replaces an expired invite with a fresh one
@router.post("/resend")
async def resend_invite(
    payload: ResendInviteRequest,
    agent: AgentIdentity = Depends(get_admin_agent),
    services: ServiceContainer = Depends(get_services),
):
    return await services.applications.resend_invite(payload.expired_application_id, agent)


# Lists the calling agent's most recent invites
@router.get("/mine")
async def my_invites(
    agent: AgentIdentity = Depends(get_current_agent),
    services: ServiceContainer = Depends(get_services),
):
    return await services.applications.list_invites(agent)
