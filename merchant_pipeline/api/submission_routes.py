import json
import logging
from typing import List

from fastapi import APIRouter, Depends, Request, UploadFile
from pydantic import ValidationError
from starlette.datastructures import UploadFile as StarletteUploadFile

from merchant_pipeline.core.exceptions import PreconditionError
from merchant_pipeline.core.service_container import ServiceContainer, get_services
from merchant_pipeline.schemas.merchant_schema import MerchantApplicationData
from merchant_pipeline.schemas.upload_schema import FilePayload
from merchant_pipeline.workers.submission_worker import process_submission

router = APIRouter(prefix="/applications", tags=["Submissions"])

logger = logging.getLogger(__name__)

FILE_FIELD_PREFIX = "file_"


# Parses the multipart `data` field into the canonical application model
def parse_application_data(raw: str) -> MerchantApplicationData:
    if not raw:
        raise PreconditionError("No data field found in form data")
    if not isinstance(raw, str):
        raise PreconditionError("The data field must be a JSON string, not a file")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise PreconditionError(f"Invalid JSON in data field: {e.msg}")
    if not isinstance(payload, dict):
        raise PreconditionError("The data field must be a JSON object")
    try:
        return MerchantApplicationData.model_validate(payload)
    except ValidationError as e:
        raise PreconditionError(f"Invalid application data: {e.errors()[0].get('msg')}", 422)


async def collect_files(form) -> List[FilePayload]:
    files: List[FilePayload] = []
    for key, value in form.multi_items():
        if not key.startswith(FILE_FIELD_PREFIX) or not isinstance(value, (UploadFile, StarletteUploadFile)):
            continue
        if not value.filename:
            continue
        files.append(FilePayload(
            document_type=key[len(FILE_FIELD_PREFIX):],
            filename=value.filename,
            content=await value.read(),
            content_type=value.content_type,
        ))
    return files


# Submits a merchant application with its documents
@router.post("/submit")
async def submit_application(request: Request, services: ServiceContainer = Depends(get_services)):
    form = await request.form()
    data = parse_application_data(form.get("data"))
    files = await collect_files(form)
    return await process_submission(data, files, services)
