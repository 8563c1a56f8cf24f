# backend/services/notification_service.py
import asyncio
import logging
import os
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Any, Dict, Optional

import jinja2
from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from models.complaint_models import Complaint, NotificationOutcome, StaffMember

logger = logging.getLogger(__name__)

ASSIGNMENT_TEMPLATE = "field_staff_assignment.html"


class NotificationService:
    """
    Tells field staff about new work by email and SMS.

    Delivery is best effort: each channel is skipped when it is not
    configured, and failures are collected on the returned
    NotificationOutcome instead of being raised.
    """

    def __init__(self, twilio_client: Optional[Client] = None):
        # SMTP configuration
        self.smtp_server = os.getenv("SMTP_SERVER", "smtp.gmail.com")
        self.smtp_port = int(os.getenv("SMTP_PORT", "587"))
        self.smtp_username = os.getenv("SMTP_USERNAME")
        self.smtp_password = os.getenv("SMTP_PASSWORD")

        # Default sender information
        self.from_email = os.getenv("FROM_EMAIL", "noreply@urbaneye.local")
        self.from_name = os.getenv("FROM_NAME", "UrbanEye Dispatch")

        self.twilio_account_sid = os.getenv("TWILIO_ACCOUNT_SID")
        self.twilio_auth_token = os.getenv("TWILIO_AUTH_TOKEN")
        self.twilio_phone_number = os.getenv("TWILIO_PHONE_NUMBER")
        self.twilio_client = twilio_client

        self.template_env = self._setup_templates()

    def _setup_templates(self) -> jinja2.Environment:
        """Setup Jinja2 template environment"""
        template_dir = Path(__file__).parent.parent / "templates" / "emails"
        if not (template_dir / ASSIGNMENT_TEMPLATE).exists():
            logger.warning(f"⚠️ Template file missing: {template_dir / ASSIGNMENT_TEMPLATE}")

        return jinja2.Environment(
            loader=jinja2.FileSystemLoader(template_dir),
            autoescape=jinja2.select_autoescape(['html', 'xml'])
        )

    @property
    def email_configured(self) -> bool:
        return bool(self.smtp_username and self.smtp_password)

    def _get_twilio_client(self) -> Optional[Client]:
        if self.twilio_client is None and self.twilio_account_sid and self.twilio_auth_token:
            self.twilio_client = Client(self.twilio_account_sid, self.twilio_auth_token)
        return self.twilio_client

    # ==================== PUBLIC API ====================

    async def notify_assignment(self, complaint: Complaint, staff: StaffMember) -> NotificationOutcome:
        outcome = NotificationOutcome()

        if staff.email and self.email_configured:
            try:
                html_content = self.render_assignment_email(complaint, staff)
                await asyncio.to_thread(
                    self._send_smtp_email,
                    staff.email,
                    f"New Assignment - Complaint ID: {complaint.complaint_id}",
                    html_content,
                )
                outcome.email_sent = True
            except (jinja2.TemplateError, smtplib.SMTPException, OSError) as e:
                logger.error(f"❌ Assignment email to {staff.email} failed: {e}")
                outcome.errors.append(f"email: {e}")

        if staff.phone and self.twilio_phone_number and self._get_twilio_client():
            try:
                await asyncio.to_thread(self._send_sms, staff.phone, self.build_sms_body(complaint))
                outcome.sms_sent = True
            except TwilioException as e:
                logger.error(f"❌ Assignment SMS to {staff.phone} failed: {e}")
                outcome.errors.append(f"sms: {e}")

        if not outcome.delivered and not outcome.errors:
            logger.info(f"No notification channel configured for staff {staff.staff_id}")

        return outcome

    def render_assignment_email(self, complaint: Complaint, staff: StaffMember) -> str:
        template = self.template_env.get_template(ASSIGNMENT_TEMPLATE)
        return template.render(**self._template_data(complaint, staff))

    @staticmethod
    def build_sms_body(complaint: Complaint) -> str:
        return (
            f"UrbanEye: new {complaint.priority.value} priority assignment "
            f"{complaint.complaint_id} - {complaint.title}"
        )

    # ==================== TRANSPORT ====================

    @staticmethod
    def _template_data(complaint: Complaint, staff: StaffMember) -> Dict[str, Any]:
        return {
            "staff_name": staff.name,
            "complaint_id": complaint.complaint_id,
            "title": complaint.title,
            "description": complaint.description,
            "category": complaint.category.value.replace("_", " ").title(),
            "priority": complaint.priority.value.title(),
            "assigned_date": datetime.now().strftime("%B %d, %Y at %I:%M %p"),
            "current_year": datetime.now().year,
        }

    def _send_smtp_email(self, to_email: str, subject: str, html_content: str):
        msg = MIMEMultipart('alternative')
        msg['From'] = f"{self.from_name} <{self.from_email}>"
        msg['To'] = to_email
        msg['Subject'] = subject
        msg.attach(MIMEText(html_content, 'html'))

        with smtplib.SMTP(self.smtp_server, self.smtp_port) as server:
            server.starttls()
            server.login(self.smtp_username, self.smtp_password)
            server.send_message(msg)

        logger.info(f"✅ Email sent successfully to {to_email}")

    def _send_sms(self, phone: str, body: str):
        client = self._get_twilio_client()
        message = client.messages.create(body=body, from_=self.twilio_phone_number, to=phone)
        logger.info(f"✅ SMS sent to {phone} (sid: {message.sid})")
