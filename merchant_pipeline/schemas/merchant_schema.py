from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel
from enum import Enum
from typing import List, Dict, Any, Optional


class ApplicationStatusEnum(str, Enum):
    draft = "draft"
    invited = "invited"
    opened = "opened"
    submitted = "submitted"
    resent = "resent"
    approved = "approved"
    rejected = "rejected"
    on_hold = "on_hold"


class EventAction(str, Enum):
    invite_created = "invite_created"
    prefill_saved = "prefill_saved"
    invite_sent = "invite_sent"
    application_submitted = "application_submitted"


class UploadStatusEnum(str, Enum):
    complete = "complete"
    partial = "partial"


class UploadTypeEnum(str, Enum):
    file = "file"
    url = "url"


class SendStrategy(str, Enum):
    grouped = "grouped"
    sequential = "sequential"


# Forward path of the lifecycle; a status may only move to an equal or later rank
STATUS_RANK = {
    ApplicationStatusEnum.draft: 0,
    ApplicationStatusEnum.invited: 1,
    ApplicationStatusEnum.opened: 2,
    ApplicationStatusEnum.submitted: 3,
}

REVIEW_STATES = {
    ApplicationStatusEnum.approved,
    ApplicationStatusEnum.rejected,
    ApplicationStatusEnum.on_hold,
}


def can_transition(current: ApplicationStatusEnum, target: ApplicationStatusEnum) -> bool:
    """Whether ``current`` may move to ``target``.

    draft -> invited -> opened -> submitted is monotonic. ``resent`` is a
    terminal side branch from invited/opened/submitted. Review states are
    reachable from submitted and from each other.
    """
    current = ApplicationStatusEnum(current)
    target = ApplicationStatusEnum(target)
    if current == target:
        return True
    if current == ApplicationStatusEnum.resent:
        return False
    if target == ApplicationStatusEnum.resent:
        return current in (ApplicationStatusEnum.invited, ApplicationStatusEnum.opened, ApplicationStatusEnum.submitted)
    if target in REVIEW_STATES:
        return current == ApplicationStatusEnum.submitted or current in REVIEW_STATES
    if current in REVIEW_STATES:
        return False
    return STATUS_RANK[target] >= STATUS_RANK[current]


NUMERIC_FIELDS = (
    "monthly_volume",
    "average_ticket",
    "highest_ticket",
    "pct_card_swiped",
    "pct_manual_imprint",
    "pct_manual_no_imprint",
)

BOOLEAN_FIELDS = (
    "paperless_statements",
    "legal_differs",
    "seasonal_business",
    "uses_fulfillment_house",
    "uses_third_parties",
    "accept_amex",
    "accept_debit",
    "accept_ebt",
    "managing_member_same_as",
    "authorized_contact_same_as",
    "technical_contact_same_as",
    "agreement_scrolled",
    "certification_ack",
)

# Never stored during agent pre-fill; the merchant supplies them on submit
SENSITIVE_FIELDS = (
    "routing_number",
    "account_number",
    "federal_tax_id",
    "signature_full_name",
    "signature_date",
    "certification_ack",
    "agreement_scrolled",
)

SENSITIVE_PRINCIPAL_FIELDS = ("ssn", "gov_id_number")

DEFAULT_BATCH_TIME = "10:45 PM EST"


def parse_number(value: Any) -> float:
    """Safe numeric parse: currency symbols and separators are ignored, anything else is 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = "".join(ch for ch in str(value) if ch.isdigit() or ch in ".-")
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


class CamelModel(BaseModel):
    """Accepts both camelCase (wizard payloads) and snake_case (stored rows)."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "ignore"


class Principal(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    position: Optional[str] = None
    equity: Optional[float] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    dob: Optional[str] = None
    ssn: Optional[str] = None
    gov_id_type: Optional[str] = None
    gov_id_number: Optional[str] = None
    gov_id_expiration: Optional[str] = None
    gov_id_state: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    zip_extended: Optional[str] = None

    @field_validator("equity", mode="before")
    @classmethod
    def _equity(cls, v):
        if v is None or v == "":
            return None
        return parse_number(v)

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part).strip()


class Terminal(CamelModel):
    name: str
    price: float = 0.0
    original_price: Optional[float] = None

    @field_validator("price", mode="before")
    @classmethod
    def _price(cls, v):
        return parse_number(v)

    @field_validator("original_price", mode="before")
    @classmethod
    def _original_price(cls, v):
        if v is None or v == "":
            return None
        return parse_number(v)


class UploadRef(CamelModel):
    upload_type: UploadTypeEnum = UploadTypeEnum.file
    url: Optional[str] = None


class MerchantApplicationData(CamelModel):
    """Canonical application payload.

    Every route parses untyped input into this model once; services only see
    this type. Blank strings become None so that absent optional fields are
    persisted as null.
    """
    id: Optional[str] = None
    status: Optional[ApplicationStatusEnum] = None

    agent_email: Optional[str] = None
    agent_name: Optional[str] = None

    # Merchant information
    dba_name: Optional[str] = None
    dba_email: Optional[str] = None
    ownership_type: Optional[str] = None
    legal_name: Optional[str] = None
    federal_tax_id: Optional[str] = None
    dba_phone: Optional[str] = None
    website_url: Optional[str] = None
    paperless_statements: bool = False

    # DBA address
    dba_address_line1: Optional[str] = None
    dba_address_line2: Optional[str] = None
    dba_city: Optional[str] = None
    dba_state: Optional[str] = None
    dba_zip: Optional[str] = None
    dba_zip_extended: Optional[str] = None

    # Legal address
    legal_differs: bool = False
    legal_address_line1: Optional[str] = None
    legal_address_line2: Optional[str] = None
    legal_city: Optional[str] = None
    legal_state: Optional[str] = None
    legal_zip: Optional[str] = None
    legal_zip_extended: Optional[str] = None

    # Processing profile
    monthly_volume: float = 0.0
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
    terminals: List[Terminal] = Field(default_factory=list)

    principals: List[Principal] = Field(default_factory=list)

    # Managing member
    managing_member_same_as: bool = False
    managing_member_reference: Optional[str] = None
    managing_member_first_name: Optional[str] = None
    managing_member_last_name: Optional[str] = None
    managing_member_email: Optional[str] = None
    managing_member_phone: Optional[str] = None
    managing_member_position: Optional[str] = None

    # Authorized contact
    authorized_contact_same_as: bool = False
    authorized_contact_name: Optional[str] = None
    authorized_contact_email: Optional[str] = None
    authorized_contact_phone: Optional[str] = None

    # Technical contact
    technical_contact_same_as: bool = False
    technical_contact_name: Optional[str] = None
    technical_contact_email: Optional[str] = None
    technical_contact_phone: Optional[str] = None

    # Banking
    bank_name: Optional[str] = None
    routing_number: Optional[str] = None
    account_number: Optional[str] = None
    batch_time: Optional[str] = None

    # Signature
    agreement_scrolled: bool = False
    signature_full_name: Optional[str] = None
    signature_date: Optional[str] = None
    certification_ack: bool = False

    uploads: Dict[str, UploadRef] = Field(default_factory=dict)
    notes: Optional[List[Dict[str, Any]]] = None

    @field_validator(*NUMERIC_FIELDS, mode="before")
    @classmethod
    def _numeric(cls, v):
        return parse_number(v)

    @field_validator(*BOOLEAN_FIELDS, mode="before")
    @classmethod
    def _boolean(cls, v):
        if v is None or v == "":
            return False
        if isinstance(v, str):
            return v.strip().lower() in ("true", "yes", "1", "on")
        return bool(v)

    @field_validator("seasonal_months", mode="before")
    @classmethod
    def _months(cls, v):
        if v is None or v == "":
            return []
        if isinstance(v, str):
            return [m.strip() for m in v.split(",") if m.strip()]
        return v

    @field_validator("terminals", "principals", mode="before")
    @classmethod
    def _lists(cls, v):
        return v or []

    @field_validator("uploads", mode="before")
    @classmethod
    def _uploads(cls, v):
        return v or {}

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("dba_email", "agent_email", mode="after")
    @classmethod
    def _lower_email(cls, v):
        return v.lower() if v else v

    def record_fields(self, include_unset: bool = True) -> Dict[str, Any]:
        """Fields as stored on the application record (snake_case)."""
        data = self.model_dump(
            exclude={"id", "uploads", "status", "notes"},
            exclude_unset=not include_unset,
            mode="json",
        )
        if include_unset and not data.get("batch_time"):
            data["batch_time"] = DEFAULT_BATCH_TIME
        return data

    def without_sensitive_fields(self) -> "MerchantApplicationData":
        """Copy with banking, tax id, signature and principal identity numbers removed."""
        cleaned = self.model_copy(deep=True)
        for name in SENSITIVE_FIELDS:
            default = False if name in BOOLEAN_FIELDS else None
            setattr(cleaned, name, default)
            cleaned.model_fields_set.discard(name)
        for principal in cleaned.principals:
            for name in SENSITIVE_PRINCIPAL_FIELDS:
                setattr(principal, name, None)
        return cleaned


# ---- Request / response models -------------------------------------------

class GenerateInviteRequest(CamelModel):
    merchant_email: Optional[str] = None
    agent_name: Optional[str] = None


class BatchInviteRequest(CamelModel):
    emails: List[Any]
    strategy: SendStrategy = SendStrategy.grouped


class ResendInviteRequest(CamelModel):
    expired_application_id: str


class SendInviteRequest(CamelModel):
    emails: List[Any]


class PrefillRequest(CamelModel):
    form_data: Dict[str, Any]
    principals: Optional[List[Dict[str, Any]]] = None
    merchant_email: Optional[str] = None
    action: str = "save"


class DraftRequest(CamelModel):
    form_data: Dict[str, Any] = Field(default_factory=dict)
    principals: Optional[List[Dict[str, Any]]] = None


class StatusUpdateRequest(CamelModel):
    status: ApplicationStatusEnum


class NotesUpdateRequest(CamelModel):
    notes: List[Dict[str, Any]]


class AgentUpdateRequest(CamelModel):
    agent_name: Optional[str] = None
    agent_email: Optional[str] = None


class MirrorSyncRequest(CamelModel):
    application_id: str
    action: EventAction
    data: Dict[str, Any] = Field(default_factory=dict)
    agent_email: Optional[str] = None
    merchant_email: Optional[str] = None


class UploadRequestCreate(CamelModel):
    application_id: str
    requested_files: List[str]


class UploadRequestFile(CamelModel):
    document_type: str
    file_url: str
    file_name: Optional[str] = None


class UploadRequestSubmit(CamelModel):
    files: List[UploadRequestFile]
