from fastapi import APIRouter, Depends, status

from merchant_pipeline.core.auth_dependencies import AgentIdentity, get_current_agent
from merchant_pipeline.core.service_container import ServiceContainer, get_services
from merchant_pipeline.helpers.response_builder import build_upload_request_response
from merchant_pipeline.schemas.merchant_schema import UploadRequestCreate, UploadRequestSubmit

router = APIRouter(prefix="/upload-requests", tags=["Upload Requests"])


# Asks the merchant for additional documents
@router.post("", status_code=status.HTTP_201_CREATED)
async def create_upload_request(
    payload: UploadRequestCreate,
    agent: AgentIdentity = Depends(get_current_agent),
    services: ServiceContainer = Depends(get_services),
):
    record = await services.record_store.get(payload.application_id)
    services.applications.ensure_access(record, agent)
    request = await services.record_store.create_upload_request(payload.application_id, payload.requested_files, agent.email)
    return {"success": True, "request": build_upload_request_response(request)}


# Public: the merchant's upload page loads the request
@router.get("/{request_id}")
async def get_upload_request(request_id: str, services: ServiceContainer = Depends(get_services)):
    request = await services.record_store.get_upload_request(request_id)
    return build_upload_request_response(request)


# Public: the merchant submits links to the files they uploaded
@router.post("/{request_id}/submit")
async def submit_upload_request(
    request_id: str,
    payload: UploadRequestSubmit,
    services: ServiceContainer = Depends(get_services),
):
    request = await services.record_store.complete_upload_request(
        request_id, [(item.document_type, item.file_url) for item in payload.files]
    )
    return {"success": True, "request": build_upload_request_response(request)}
