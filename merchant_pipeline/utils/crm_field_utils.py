from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from merchant_pipeline.schemas.merchant_schema import (
    DEFAULT_BATCH_TIME,
    EventAction,
    MerchantApplicationData,
    Principal,
    UploadTypeEnum,
)

# Airtable column holding the pipeline's application id; searched and written by the mirror
MIRROR_ID_FIELD = "Application ID"

MIRROR_STATUS_LABELS = {
    EventAction.invite_created: "Pending",
    EventAction.prefill_saved: "Pending",
    EventAction.invite_sent: "Pending Signature",
    EventAction.application_submitted: "Underwriting",
}

UPLOAD_LABELS = {
    "businessLicense": "Uploads — Business License",
    "taxId": "Uploads — Tax Id",
    "articlesOfIncorporation": "Uploads — Articles of Incorporation",
    "interiorExteriorPhotos": "Uploads — Interior/Exterior Photos",
    "otherSupportingPapers": "Uploads — Other Supporting Papers",
    "twoConsecutiveStatements": "Uploads — Two Consecutive Statements",
    "voidedCheck": "Uploads — Voided Check",
}


def format_number(value: Any) -> str:
    """Render a number the way the CRM shows it: 25.0 -> '25', 12.5 -> '12.5'."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_currency(value: float) -> str:
    return f"${value:.2f}"


def format_percent(value: float) -> str:
    return f"{value:.2f}%"


def format_address(line1: Optional[str], line2: Optional[str], city: Optional[str], state: Optional[str],
                   zip_code: Optional[str], zip_extended: Optional[str]) -> str:
    """'1 Main St, Suite 2, Austin TX 78701-1234' with empty segments dropped."""
    zip_part = "-".join(part for part in (zip_code, zip_extended) if part)
    locality = " ".join(part for part in (city, state, zip_part) if part)
    return ", ".join(part for part in (line1, line2, locality) if part)


def dba_address(data: MerchantApplicationData) -> str:
    return format_address(data.dba_address_line1, data.dba_address_line2, data.dba_city,
                          data.dba_state, data.dba_zip, data.dba_zip_extended)


def legal_address(data: MerchantApplicationData) -> str:
    return format_address(data.legal_address_line1, data.legal_address_line2, data.legal_city,
                          data.legal_state, data.legal_zip, data.legal_zip_extended)


def principals_summary(principals: List[Principal]) -> str:
    lines = []
    for index, principal in enumerate(principals, start=1):
        bits = []
        if principal.full_name:
            bits.append(f"{index}. {principal.full_name}")
        if principal.position:
            bits.append(f"Position: {principal.position}")
        if principal.equity is not None:
            bits.append(f"Equity: {format_number(principal.equity)}%")
        if principal.email:
            bits.append(f"Email: {principal.email}")
        lines.append(" | ".join(bits))
    return "\n".join(lines)


def terminals_summary(data: MerchantApplicationData) -> str:
    lines = []
    for terminal in data.terminals:
        line = f"{terminal.name}: {format_currency(terminal.price)}"
        if terminal.original_price and terminal.original_price != terminal.price:
            line = f"{line} | Original: {format_currency(terminal.original_price)}"
        lines.append(line)
    return "\n".join(lines)


def _as_number(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    digits = value.strip()
    return int(digits) if digits.isdigit() else None


def _iso_date(now: datetime) -> str:
    return now.date().isoformat()


# Maps canonical application data onto the CRM column vocabulary
def map_mirror_fields(
    data: MerchantApplicationData,
    application_id: str,
    action: EventAction,
    agent_email: Optional[str] = None,
    merchant_email: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    fields: Dict[str, Any] = {MIRROR_ID_FIELD: application_id}

    status_label = MIRROR_STATUS_LABELS.get(EventAction(action))
    if status_label:
        fields["Status"] = status_label

    if agent_email:
        fields["Partner Email"] = agent_email
    if merchant_email:
        fields["Business Email"] = merchant_email
    if data.dba_name:
        fields["Merchant Name (DBA)"] = data.dba_name
    if data.dba_email:
        fields["Business Email"] = data.dba_email
    if data.dba_phone:
        fields["Phone"] = data.dba_phone
    if data.monthly_volume:
        fields["Volume"] = format_currency(data.monthly_volume)
    if data.ownership_type:
        fields["Ownership Type"] = data.ownership_type
    if data.federal_tax_id:
        fields["Federal Tax ID"] = data.federal_tax_id
    if data.website_url:
        fields["Merchant Website"] = data.website_url
    if data.business_type:
        fields["Business Type of Merchant"] = data.business_type
        fields["Industry Type"] = data.business_type
    if data.average_ticket:
        fields["Average Ticket"] = data.average_ticket
    if data.highest_ticket:
        fields["Highest Ticket"] = data.highest_ticket
    if data.pct_card_swiped:
        fields["Percentage of Card Swiped Transactions"] = format_percent(data.pct_card_swiped)
    if data.pct_manual_imprint:
        fields["Manual with Imprint"] = format_percent(data.pct_manual_imprint)
    if data.pct_manual_no_imprint:
        fields["Manual without Imprint"] = format_percent(data.pct_manual_no_imprint)
    if data.refund_policy:
        fields["Refund Policy"] = data.refund_policy
    if data.previous_processor:
        fields["Credit Processor"] = data.previous_processor
    if data.reason_for_termination:
        fields["Reason for Termination"] = data.reason_for_termination

    address = dba_address(data)
    if address:
        fields["DBA Address"] = address
    address = legal_address(data)
    if address and data.legal_differs:
        fields["Legal Address"] = address

    if data.principals:
        summary = principals_summary(data.principals)
        fields["Owners and Officers Information"] = summary
        fields["Business Principals"] = summary
        if data.principals[0].full_name:
            fields["Full Name"] = data.principals[0].full_name

    managing_member = " ".join(
        part for part in (data.managing_member_first_name, data.managing_member_last_name) if part
    ).strip()
    if managing_member:
        fields["Managing Member Info"] = " ".join(
            part for part in (managing_member, data.managing_member_email, data.managing_member_phone) if part
        )
    if data.authorized_contact_name:
        fields["Authorized Contact Info"] = " ".join(
            part for part in (data.authorized_contact_name, data.authorized_contact_email) if part
        )
    if data.technical_contact_name:
        fields["Technical Contact Info"] = " ".join(
            part for part in (data.technical_contact_name, data.technical_contact_email) if part
        )

    if data.bank_name:
        fields["Bank Name"] = data.bank_name
    routing = _as_number(data.routing_number)
    if routing is not None:
        fields["Routing / ABA #"] = routing
    account = _as_number(data.account_number)
    if account is not None:
        fields["Checking / Saving Account #"] = account
    if data.batch_time:
        fields["Batch Time (EST)"] = data.batch_time

    if action == EventAction.application_submitted:
        fields["Submitted Date"] = _iso_date(now)
    fields["Status Update"] = _iso_date(now)
    fields["Last Modified"] = _iso_date(now)
    return fields


def _principal_breakout(principals: List[Principal], index: int) -> Dict[str, str]:
    prefix = f"Principal {index + 1}"
    principal = principals[index] if index < len(principals) else None
    if principal is None:
        return {f"{prefix} {key}": "" for key in ("Name", "Email", "Position", "Equity")}
    return {
        f"{prefix} Name": principal.full_name,
        f"{prefix} Email": principal.email or "",
        f"{prefix} Position": principal.position or "",
        f"{prefix} Equity": format_number(principal.equity),
    }


# Flattens a submitted application for the automation webhook
def build_submission_payload(
    application_id: str,
    data: MerchantApplicationData,
    uploaded_files: Dict[str, str],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    managing_member = " ".join(
        part for part in (data.managing_member_first_name, data.managing_member_last_name) if part
    ).strip()

    record: Dict[str, Any] = {
        "action": "merchant_application_submitted",
        "merchant_application_submitted": True,
        "Application Id": application_id,
        "Submitted At": now.isoformat(),

        "Agent Email": data.agent_email or "",
        "Agent Name": data.agent_name or "",
        "Dba Name": data.dba_name or "",
        "Dba Email": data.dba_email or "",
        "Dba Phone": data.dba_phone or "",
        "Ownership Type": data.ownership_type or "",
        "Legal Name": data.legal_name or "",
        "Federal Tax Id": data.federal_tax_id or "",
        "Website": data.website_url or "",

        "DBA Address": dba_address(data),
        "Legal Address": legal_address(data) if data.legal_differs else "",

        "Business Type": data.business_type or "",
        "Monthly Volume": data.monthly_volume,
        "Average Ticket": data.average_ticket,
        "Highest Ticket": data.highest_ticket,
        "Pct Card Swiped": data.pct_card_swiped,
        "Pct Manual Imprint": data.pct_manual_imprint,
        "Pct Manual No Imprint": data.pct_manual_no_imprint,
        "Refund Policy": data.refund_policy or "",
        "Previous Processor": data.previous_processor or "",
        "Reason For Termination": data.reason_for_termination or "",
        "Seasonal Business": data.seasonal_business,
        "Seasonal Months": ", ".join(data.seasonal_months),
        "Uses Fulfillment House": data.uses_fulfillment_house,
        "Uses Third Parties": data.uses_third_parties,
        "Third Parties List": data.third_parties_list or "",

        "Terminals": terminals_summary(data),
        "Principals": principals_summary(data.principals),

        "Managing Member — Same As": data.managing_member_same_as,
        "Managing Member — Reference": data.managing_member_reference or "",
        "Managing Member — Name": managing_member,
        "Managing Member — Email": data.managing_member_email or "",
        "Managing Member — Phone": data.managing_member_phone or "",
        "Managing Member — Position": data.managing_member_position or "",

        "Authorized Contact — Same As": data.authorized_contact_same_as,
        "Authorized Contact — Name": data.authorized_contact_name or "",
        "Authorized Contact — Email": data.authorized_contact_email or "",
        "Authorized Contact — Phone": data.authorized_contact_phone or "",

        "Technical Contact — Same As": data.technical_contact_same_as,
        "Technical Contact — Name": data.technical_contact_name or "",
        "Technical Contact — Email": data.technical_contact_email or "",
        "Technical Contact — Phone": data.technical_contact_phone or "",

        "Bank Name": data.bank_name or "",
        "Routing Number": data.routing_number or "",
        "Account Number": data.account_number or "",
        "Batch Time": data.batch_time or DEFAULT_BATCH_TIME,

        "Signed Name": data.signature_full_name or "",
        "Signed Date": data.signature_date or "",
    }
    record.update(_principal_breakout(data.principals, 0))
    record.update(_principal_breakout(data.principals, 1))

    # Agent supplied links first, stored files win on the same key
    for doc_type, ref in data.uploads.items():
        if ref.upload_type == UploadTypeEnum.url and ref.url and doc_type in UPLOAD_LABELS:
            record[UPLOAD_LABELS[doc_type]] = ref.url
    for doc_type, url in uploaded_files.items():
        if url and doc_type in UPLOAD_LABELS:
            record[UPLOAD_LABELS[doc_type]] = url
    return record
