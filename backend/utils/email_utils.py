"""
Email utility functions for the order workflow.
Handles email templates, sending logic, and customer notifications.
"""

from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Optional
import logging

import aiosmtplib
from jinja2 import Environment
from pydantic import BaseModel

from config.settings import get_settings
from utils.date_utils import format_local

logger = logging.getLogger(__name__)

COMPANY_NAME = "Promark Tech Solutions"
SUPPORT_EMAIL = "support@promarktechsolutions.com"


@dataclass
class EmailConfig:
    """Email configuration settings."""
    smtp_server: str
    smtp_port: int
    username: Optional[str]
    password: Optional[str]
    sender: Optional[str] = None
    use_tls: bool = True
    timeout: int = 30

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_server and self.username and self.password)


class EmailMessage(BaseModel):
    """Email message model."""
    recipients: List[str]
    subject: str
    html_content: Optional[str] = None
    text_content: Optional[str] = None


class EmailTemplate(BaseModel):
    """Email template model."""
    name: str
    subject: str
    html_content: str
    text_content: str


_LAYOUT_OPEN = """
<html>
<body style="font-family: Arial, sans-serif; background: #f4f7fb; padding: 24px;">
<div style="max-width: 600px; margin: 0 auto; background: #ffffff; border-radius: 8px; padding: 24px;">
"""

_LAYOUT_CLOSE = """
<p>Reach us any time at <a href="mailto:{{ support_email }}">{{ support_email }}</a>.</p>
<p style="color: #6b7280;">Regards,<br/>The {{ company }} Team</p>
</div>
</body>
</html>
"""

_PRODUCT_LIST = """
<ul style="list-style-type: none; padding: 0;">
{% for product in products %}
  <li style="margin-bottom: 8px;"><strong>{{ product.productType }}</strong> &middot; Qty: {{ product.qty }}</li>
{% endfor %}
</ul>
"""

DEFAULT_TEMPLATES: Dict[str, EmailTemplate] = {
    "order_approved": EmailTemplate(
        name="order_approved",
        subject="Your Order #{{ order_ref }} Has Been Approved",
        html_content=_LAYOUT_OPEN + """
<h2>Dear {{ customer }},</h2>
<p>Your order <strong>#{{ order_ref }}</strong> has been approved and is moving to the next stage.</p>
""" + _PRODUCT_LIST + _LAYOUT_CLOSE,
        text_content=(
            "Dear {{ customer }},\n\nYour order #{{ order_ref }} has been approved.\n"
            "{% for product in products %}- {{ product.productType }} (Qty: {{ product.qty }})\n{% endfor %}"
            "\nRegards,\n{{ company }}"
        ),
    ),
    "order_dispatch_status": EmailTemplate(
        name="order_dispatch_status",
        subject="Your Order #{{ order_ref }} Has Been {{ status }}",
        html_content=_LAYOUT_OPEN + """
<h2>Dear {{ customer }},</h2>
<p>Your order <strong>#{{ order_ref }}</strong> is now <strong>{{ status }}</strong>.</p>
""" + _PRODUCT_LIST + """
<p>{{ date_label }}: {{ status_date }}</p>
<p>Transporter: {{ transporter }}</p>
<p>Docket No: {{ docket_no }}</p>
""" + _LAYOUT_CLOSE,
        text_content=(
            "Dear {{ customer }},\n\nYour order #{{ order_ref }} is now {{ status }}.\n"
            "{{ date_label }}: {{ status_date }}\nTransporter: {{ transporter }}\nDocket No: {{ docket_no }}\n"
            "\nRegards,\n{{ company }}"
        ),
    ),
    "installation_assignment": EmailTemplate(
        name="installation_assignment",
        subject="Installation Assignment: Order #{{ order_ref }}",
        html_content=_LAYOUT_OPEN + """
<h2>Dear {{ customer }},</h2>
<p>An installation engineer, <strong>{{ engineer }}</strong>, has been assigned to your order
<strong>#{{ order_ref }}</strong>. The installation is scheduled to be completed within the next 2 days.</p>
<p>Please ensure the site is ready for installation. Our engineer will coordinate with you for site availability.</p>
""" + _LAYOUT_CLOSE,
        text_content=(
            "Dear {{ customer }},\n\nAn installation engineer ({{ engineer }}) has been assigned for your order "
            "#{{ order_ref }}.\nThe installation is scheduled to be completed within the next 2 days.\n"
            "\nRegards,\n{{ company }}"
        ),
    ),
}


class EmailService:
    """Renders templates and delivers mail over SMTP."""

    def __init__(self, config: EmailConfig, templates: Optional[Dict[str, EmailTemplate]] = None):
        self.config = config
        self.templates = templates or DEFAULT_TEMPLATES
        self.text_env = Environment(autoescape=False)
        self.html_env = Environment(autoescape=True)

    def render_template(self, template_name: str, data: Dict[str, Any]) -> Dict[str, str]:
        """Render email template with provided data."""
        template = self.templates.get(template_name)
        if template is None:
            raise ValueError(f"Template '{template_name}' not found")

        context = {"company": COMPANY_NAME, "support_email": SUPPORT_EMAIL, **data}
        return {
            "subject": self.text_env.from_string(template.subject).render(**context),
            "html_content": self.html_env.from_string(template.html_content).render(**context),
            "text_content": self.text_env.from_string(template.text_content).render(**context),
        }

    def _build_mime(self, message: EmailMessage) -> MIMEMultipart:
        msg = MIMEMultipart('alternative')
        msg['From'] = self.config.sender or self.config.username
        msg['To'] = ", ".join(message.recipients)
        msg['Subject'] = message.subject
        if message.text_content:
            msg.attach(MIMEText(message.text_content, 'plain'))
        if message.html_content:
            msg.attach(MIMEText(message.html_content, 'html'))
        return msg

    async def send_email_async(self, message: EmailMessage) -> bool:
        """Send email asynchronously. Returns False when delivery failed."""
        if not self.config.is_configured:
            logger.warning(f"SMTP not configured; email '{message.subject}' not sent")
            return False

        try:
            await aiosmtplib.send(
                self._build_mime(message),
                hostname=self.config.smtp_server,
                port=self.config.smtp_port,
                start_tls=self.config.use_tls,
                username=self.config.username,
                password=self.config.password,
                recipients=message.recipients,
                timeout=self.config.timeout,
            )
            logger.info(f"Email sent successfully to {len(message.recipients)} recipients")
            return True

        except Exception as e:
            logger.error(f"Failed to send email '{message.subject}': {e}")
            return False

    async def send_template(self, template_name: str, recipients: List[str], data: Dict[str, Any],
                            subject: Optional[str] = None) -> bool:
        rendered = self.render_template(template_name, data)
        return await self.send_email_async(EmailMessage(
            recipients=recipients,
            subject=subject or rendered["subject"],
            html_content=rendered["html_content"],
            text_content=rendered["text_content"],
        ))


def _order_context(order) -> Dict[str, Any]:
    return {
        "customer": order.customername or "Customer",
        "order_ref": order.order_id or order.id,
        "products": order.products or [],
    }


class OrderMailer:
    """Customer facing order emails."""

    def __init__(self, email_service: EmailService):
        self.email_service = email_service

    async def send_order_approved(self, order) -> bool:
        return await self.email_service.send_template(
            "order_approved", [order.customer_email], _order_context(order)
        )

    async def send_dispatch_status(self, order, status: str) -> bool:
        dispatched = status == "Dispatched"
        return await self.email_service.send_template(
            "order_dispatch_status",
            [order.customer_email],
            {
                **_order_context(order),
                "status": status,
                "date_label": "Dispatch Date" if dispatched else "Delivery Date",
                "status_date": format_local(order.dispatch_date if dispatched else order.receipt_date),
                "transporter": order.transporter or "N/A",
                "docket_no": order.docket_no or "N/A",
            },
        )

    async def send_installation_assignment(self, order, recipient: str, subject: Optional[str] = None) -> bool:
        return await self.email_service.send_template(
            "installation_assignment",
            [recipient],
            {**_order_context(order), "engineer": order.installationeng or "Assigned Engineer"},
            subject=subject,
        )


@lru_cache()
def get_mailer() -> OrderMailer:
    settings = get_settings()
    config = EmailConfig(
        smtp_server=settings.SMTP_SERVER,
        smtp_port=settings.SMTP_PORT,
        username=settings.SMTP_USERNAME,
        password=settings.SMTP_PASSWORD,
        sender=settings.MAIL_FROM,
        use_tls=settings.SMTP_USE_TLS,
    )
    return OrderMailer(EmailService(config))
