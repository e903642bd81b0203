from merchant_pipeline.database.models.merchant_application_model import MerchantApplication
from merchant_pipeline.database.models.merchant_upload_model import MerchantUpload
from merchant_pipeline.database.models.file_upload_request_model import FileUploadRequest
from merchant_pipeline.database.models.audit_log_model import AuditLog

__all__ = ["MerchantApplication", "MerchantUpload", "FileUploadRequest", "AuditLog"]
