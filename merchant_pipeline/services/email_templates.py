from html import escape
from typing import Dict, List, Optional

from pydantic import BaseModel

from merchant_pipeline.schemas.merchant_schema import MerchantApplicationData, Terminal

INVITE_SUBJECT = "You're Invited to Apply for Lumino Merchant Services"
PREFILL_SUBJECT = "Your Pre-filled Lumino Merchant Application is Ready"
RESEND_SUBJECT = "Your Renewed Lumino Merchant Application is Ready"
SUBMISSION_ADMIN_SUBJECT = "New Merchant Application"
SUBMISSION_MERCHANT_SUBJECT = "Lumino Merchant Application Received"
BATCH_FAILURE_SUBJECT = "Merchant Invite Batch - Some Failures Reported"

_WRAPPER = '<div style="font-family: sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto;">{body}</div>'
_BUTTON = (
    '<div style="text-align: center; margin: 30px 0;">'
    '<a href="{link}" style="background-color: #007bff; color: white; padding: 15px 30px; '
    'text-decoration: none; border-radius: 5px; font-weight: bold;">Complete Your Application</a>'
    '</div>'
)


class EmailTemplate(BaseModel):
    subject: str
    html: str


def invite_link(base_url: str, application_id: str) -> str:
    return f"{base_url.rstrip('/')}?id={application_id}"


def invite_email(link: str) -> EmailTemplate:
    body = (
        '<div style="text-align: center; margin-bottom: 30px;">'
        '<h1 style="color: #1a1a1a; font-size: 28px;">LUMINO</h1>'
        '<p style="color: #666; font-size: 14px;">Payments with Purpose</p></div>'
        "<h2 style=\"color: #1a1a1a;\">You're Invited to Apply for Merchant Services!</h2>"
        "<p>Hello,</p>"
        "<p>You've been invited to apply for Lumino's merchant payment processing services.</p>"
        f"{_BUTTON.format(link=escape(link, quote=True))}"
        "<p>The application takes approximately 10-15 minutes to complete. Our underwriting team will "
        "review your submission and contact you within 24-48 hours.</p>"
        '<p>If you have any questions, feel free to contact our <a href="mailto:support@golumino.com">merchant team</a>.</p>'
    )
    return EmailTemplate(subject=INVITE_SUBJECT, html=_WRAPPER.format(body=body))


def _terminal_price_html(terminal: Terminal) -> str:
    price = f"${terminal.price:.2f}"
    original = terminal.original_price
    if original is None or terminal.price == original:
        return f'<p style="margin: 0; font-weight: bold;">Price: {price}</p>'
    struck = f'<span style="text-decoration: line-through; color: #777; margin-left: 8px;">${original:.2f}</span>'
    if terminal.price == 0:
        return f'<p style="margin: 0; font-weight: bold; color: #28a745;">Price: FREE {struck}</p>'
    discount = (original - terminal.price) / original * 100 if original else 0
    return (
        f'<p style="margin: 0; font-weight: bold;">Price: {price} {struck}'
        f'<span style="background-color: #d1e7dd; color: #0f5132; font-size: 12px; margin-left: 8px;">{discount:.0f}% OFF</span></p>'
    )


def terminals_html(terminals: List[Terminal]) -> str:
    if not terminals:
        return ""
    cards = "".join(
        '<div style="border: 1px solid #ddd; padding: 15px; margin: 10px 0; border-radius: 5px; background-color: #f9f9f9;">'
        f'<h4 style="margin: 0 0 5px 0;">{escape(t.name)}</h4>{_terminal_price_html(t)}</div>'
        for t in terminals
    )
    return (
        '<p style="margin-top: 20px; padding-top: 20px; border-top: 1px solid #eee;">'
        "Your account manager has pre-selected the following terminal(s) for your business:</p>"
        f"{cards}"
    )


def prefill_ready_email(link: str, terminals: List[Terminal]) -> EmailTemplate:
    body = (
        '<h2 style="color: #1a1a1a;">Your Merchant Application is Ready to Complete!</h2>'
        "<p>Hello,</p>"
        "<p>Your application for Lumino's merchant services has been pre-filled and is ready for your "
        "final review and signature. Please click the link below to complete the final steps.</p>"
        f"{terminals_html(terminals)}"
        f"{_BUTTON.format(link=escape(link, quote=True))}"
        "<p>This link will expire in 30 days for security purposes.</p>"
    )
    return EmailTemplate(subject=PREFILL_SUBJECT, html=_WRAPPER.format(body=body))


def renewed_invite_email(link: str) -> EmailTemplate:
    body = (
        '<h2 style="color: #1a1a1a;">Your Merchant Application Link has been Renewed!</h2>'
        "<p>Hello,</p>"
        "<p>Your application link for Lumino's merchant services was expired, so we've generated a new one "
        "for you. All your previously entered information has been saved.</p>"
        f"{_BUTTON.format(link=escape(link, quote=True))}"
        "<p>This new link will also expire in 30 days for security purposes.</p>"
    )
    return EmailTemplate(subject=RESEND_SUBJECT, html=_WRAPPER.format(body=body))


def _submitted_terminals_html(terminals: List[Terminal]) -> str:
    if not terminals:
        return ""
    items = "".join(f"<li>{escape(t.name)}: ${t.price:.2f}</li>" for t in terminals)
    return f"<p><strong>Selected Terminals:</strong></p><ul>{items}</ul>"


def submission_admin_email(application_id: str, data: MerchantApplicationData, uploaded_files: Dict[str, str]) -> EmailTemplate:
    body = (
        "<h1>New Merchant Application Received</h1>"
        f"<p><strong>DBA Name:</strong> {escape(data.dba_name or '')}</p>"
        f"<p><strong>Email:</strong> {escape(data.dba_email or '')}</p>"
        f"<p><strong>Phone:</strong> {escape(data.dba_phone or '')}</p>"
        f"<p><strong>Business Type:</strong> {escape(data.business_type or '')}</p>"
        f"<p><strong>Monthly Volume:</strong> ${data.monthly_volume:.2f}</p>"
        f"{_submitted_terminals_html(data.terminals)}"
        f"<p><strong>Uploaded Files:</strong> {len(uploaded_files)} files</p>"
        f"<p><strong>Account Manager:</strong> {escape(data.agent_email or 'Direct')}</p>"
        f"<p><strong>Application ID:</strong> {application_id}</p>"
        "<p>Please review the application in the admin dashboard.</p>"
    )
    return EmailTemplate(subject=SUBMISSION_ADMIN_SUBJECT, html=_WRAPPER.format(body=body))


def submission_merchant_email(application_id: str, data: MerchantApplicationData, support_email: str) -> EmailTemplate:
    body = (
        "<h1>Thank you for your application!</h1>"
        f"<p>Dear {escape(data.dba_name or 'Merchant')},</p>"
        "<p>We have successfully received your merchant application. Our underwriting team will review "
        "your submission and contact you within 24-48 hours.</p>"
        f"{_submitted_terminals_html(data.terminals)}"
        f"<p><strong>Application ID:</strong> {application_id}</p>"
        f"<p>If you have any questions, please contact us at {escape(support_email)}</p>"
        "<p>Best regards,<br>The Lumino Team</p>"
    )
    return EmailTemplate(subject=SUBMISSION_MERCHANT_SUBJECT, html=_WRAPPER.format(body=body))


def batch_failure_email(successful: int, failed: List[Dict[str, str]], note: Optional[str] = None) -> EmailTemplate:
    failed_list = "\n".join(f"• {escape(item['email'])}: {escape(item['error'])}" for item in failed)
    body = (
        "<h2>Invite Batch Summary</h2>"
        f"<p><strong>Successful:</strong> {successful}</p>"
        f"<p><strong>Failed:</strong> {len(failed)}</p>"
        "<h3>Failed Invites:</h3>"
        f'<pre style="background: #f5f5f5; padding: 15px; border-radius: 5px;">{failed_list}</pre>'
        f"<p>{escape(note or 'Please review these failures and retry if needed.')}</p>"
    )
    return EmailTemplate(subject=BATCH_FAILURE_SUBJECT, html=_WRAPPER.format(body=body))
