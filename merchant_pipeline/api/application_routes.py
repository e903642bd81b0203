from typing import Optional

from fastapi import APIRouter, Depends, Query

from merchant_pipeline.core.auth_dependencies import AgentIdentity, get_admin_agent, get_current_agent
from merchant_pipeline.core.service_container import ServiceContainer, get_services
from merchant_pipeline.schemas.merchant_schema import (
    AgentUpdateRequest,
    ApplicationStatusEnum,
    DraftRequest,
    NotesUpdateRequest,
    PrefillRequest,
    StatusUpdateRequest,
)

router = APIRouter(prefix="/applications", tags=["Applications"])


# Lists applications visible to the caller, newest first
@router.get("")
async def list_applications(
    page: int = Query(default=1, ge=1, le=1000),
    limit: int = Query(default=20, ge=1, le=100),
    status: Optional[ApplicationStatusEnum] = Query(default=None),
    agent: AgentIdentity = Depends(get_current_agent),
    services: ServiceContainer = Depends(get_services),
):
    return await services.applications.list_applications(agent, page, limit, status)


# Saves agent pre-filled data and optionally sends it to the merchant
@router.post("/{application_id}/prefill")
async def save_prefill(
    application_id: str,
    payload: PrefillRequest,
    agent: AgentIdentity = Depends(get_current_agent),
    services: ServiceContainer = Depends(get_services),
):
    return await services.applications.save_prefill(application_id, payload, agent)


@router.post("/{application_id}/draft")
async def save_draft(
    application_id: str,
    payload: DraftRequest,
    agent: AgentIdentity = Depends(get_current_agent),
    services: ServiceContainer = Depends(get_services),
):
    return await services.applications.save_draft(application_id, payload, agent)


# Called when the merchant opens their invite link
@router.post("/{application_id}/open")
async def open_application(application_id: str, services: ServiceContainer = Depends(get_services)):
    return await services.applications.open_application(application_id)


@router.put("/{application_id}/status")
async def update_status(
    application_id: str,
    payload: StatusUpdateRequest,
    agent: AgentIdentity = Depends(get_admin_agent),
    services: ServiceContainer = Depends(get_services),
):
    return await services.applications.update_status(application_id, payload.status, agent)


@router.put("/{application_id}/notes")
async def update_notes(
    application_id: str,
    payload: NotesUpdateRequest,
    agent: AgentIdentity = Depends(get_current_agent),
    services: ServiceContainer = Depends(get_services),
):
    return await services.applications.update_notes(application_id, payload.notes, agent)


@router.put("/{application_id}/agent")
async def update_agent(
    application_id: str,
    payload: AgentUpdateRequest,
    agent: AgentIdentity = Depends(get_admin_agent),
    services: ServiceContainer = Depends(get_services),
):
    return await services.applications.update_agent(application_id, payload.agent_email, payload.agent_name, agent)


@router.delete("/{application_id}")
async def delete_application(
    application_id: str,
    agent: AgentIdentity = Depends(get_admin_agent),
    services: ServiceContainer = Depends(get_services),
):
    return await services.applications.delete_application(application_id, agent)
