from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from merchant_pipeline.core.auth_dependencies import AgentIdentity, get_current_agent
from merchant_pipeline.core.service_container import ServiceContainer, get_services
from merchant_pipeline.services.download_proxy import attachment_header

router = APIRouter(tags=["Downloads"])


# Proxies a stored document back as an attachment
@router.get("/download")
async def download_file(
    url: str = Query(...),
    filename: Optional[str] = Query(default=None),
    agent: AgentIdentity = Depends(get_current_agent),
    services: ServiceContainer = Depends(get_services),
):
    content, content_type = await services.downloads.fetch(url)
    return Response(
        content=content,
        media_type=content_type,
        headers={"Content-Disposition": attachment_header(filename)},
    )
