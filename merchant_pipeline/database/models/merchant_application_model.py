from beanie import Document, Indexed
from pydantic import Field
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
from uuid import uuid4

from merchant_pipeline.schemas.merchant_schema import ApplicationStatusEnum, UploadStatusEnum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MerchantApplication(Document):
    application_id: Indexed(str, unique=True) = Field(default_factory=lambda: str(uuid4()), description="Unique identifier of the merchant application")
    status: ApplicationStatusEnum = Field(ApplicationStatusEnum.draft, description="Lifecycle status of the application")

    agent_email: Optional[str] = Field(None, description="Email of the agent who owns the application")
    agent_name: Optional[str] = Field(None, description="Display name of the owning agent")

    dba_name: Optional[str] = Field(None, description="Doing-business-as name")
    dba_email: Optional[str] = Field(None, description="Merchant contact email")
    ownership_type: Optional[str] = None
    legal_name: Optional[str] = None
    federal_tax_id: Optional[str] = None
    dba_phone: Optional[str] = None
    website_url: Optional[str] = None
    paperless_statements: bool = False

    dba_address_line1: Optional[str] = None
    dba_address_line2: Optional[str] = None
    dba_city: Optional[str] = None
    dba_state: Optional[str] = None
    dba_zip: Optional[str] = None
    dba_zip_extended: Optional[str] = None

    legal_differs: bool = False
    legal_address_line1: Optional[str] = None
    legal_address_line2: Optional[str] = None
    legal_city: Optional[str] = None
    legal_state: Optional[str] = None
    legal_zip: Optional[str] = None
    legal_zip_extended: Optional[str] = None

    monthly_volume: float = Field(0.0, description="Expected monthly card volume in dollars")
    average_ticket: float = 0.0
    highest_ticket: float = 0.0
    pct_card_swiped: float = 0.0
    pct_manual_imprint: float = 0.0
    pct_manual_no_imprint: float = 0.0
    business_type: Optional[str] = None
    refund_policy: Optional[str] = None
    previous_processor: Optional[str] = None
    reason_for_termination: Optional[str] = None
    seasonal_business: bool = False
    seasonal_months: List[str] = Field(default_factory=list)
    uses_fulfillment_house: bool = False
    uses_third_parties: bool = False
    third_parties_list: Optional[str] = None
    accept_amex: bool = False
    accept_debit: bool = False
    accept_ebt: bool = False
    rate_program: Optional[str] = None
    rate_program_value: Optional[str] = None
    terminals: List[Dict[str, Any]] = Field(default_factory=list, description="Selected terminals with agent pricing")

    principals: List[Dict[str, Any]] = Field(default_factory=list, description="Business principals (owners and officers)")

    managing_member_same_as: bool = False
    managing_member_reference: Optional[str] = None
    managing_member_first_name: Optional[str] = None
    managing_member_last_name: Optional[str] = None
    managing_member_email: Optional[str] = None
    managing_member_phone: Optional[str] = None
    managing_member_position: Optional[str] = None

    authorized_contact_same_as: bool = False
    authorized_contact_name: Optional[str] = None
    authorized_contact_email: Optional[str] = None
    authorized_contact_phone: Optional[str] = None

    technical_contact_same_as: bool = False
    technical_contact_name: Optional[str] = None
    technical_contact_email: Optional[str] = None
    technical_contact_phone: Optional[str] = None

    bank_name: Optional[str] = None
    routing_number: Optional[str] = None
    account_number: Optional[str] = None
    batch_time: Optional[str] = None

    agreement_scrolled: bool = False
    signature_full_name: Optional[str] = None
    signature_date: Optional[str] = None
    certification_ack: bool = False

    upload_status: Optional[UploadStatusEnum] = Field(None, description="complete when every file stored, partial otherwise")
    upload_errors: Optional[str] = Field(None, description="Semicolon-joined upload failures and skips")
    notes: List[Dict[str, Any]] = Field(default_factory=list, description="Reviewer notes")

    opened_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    status_updated_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "merchant_applications"
        indexes = ["agent_email", "dba_email", "status"]

    class Config:
        json_encoders = {datetime: lambda v: v.isoformat()}
