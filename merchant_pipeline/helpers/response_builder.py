from typing import Any, Dict, Optional

from beanie.odm.fields import PydanticObjectId

from merchant_pipeline.database.models import MerchantApplication, FileUploadRequest
from merchant_pipeline.schemas.merchant_schema import MerchantApplicationData

_INTERNAL_FIELDS = {"id", "revision_id"}


def convert_objectid(obj):
    """Convert PydanticObjectId fields to strings."""
    if isinstance(obj, dict):
        return {key: convert_objectid(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [convert_objectid(item) for item in obj]
    elif isinstance(obj, PydanticObjectId):
        return str(obj)
    return obj


def record_to_data(record: MerchantApplication) -> MerchantApplicationData:
    """Canonical view of a stored application, as the satellites consume it."""
    fields = record.model_dump(exclude=_INTERNAL_FIELDS | {"notes", "status"})
    fields["id"] = record.application_id
    return MerchantApplicationData.model_validate(fields)


def build_application_response(record: MerchantApplication, uploads: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    response = record.model_dump(mode="json", exclude=_INTERNAL_FIELDS)
    response["id"] = record.application_id
    if uploads is not None:
        response["uploads"] = uploads
    return convert_objectid(response)


def build_upload_request_response(request: FileUploadRequest) -> Dict[str, Any]:
    return {
        "id": request.request_id,
        "application_id": request.application_id,
        "requested_files": request.requested_files,
        "is_active": request.is_active,
        "created_at": request.created_at.isoformat() if request.created_at else None,
        "completed_at": request.completed_at.isoformat() if request.completed_at else None,
    }
