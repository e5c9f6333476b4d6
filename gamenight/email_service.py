"""
Email Service using Resend
Builds availability emails from MJML templates and hands them to the transport
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional
from urllib.parse import quote

import resend
from resend.exceptions import ResendError
from mjml import mjml_to_html
from pydantic import BaseModel

from . import config
from .email_templates import (
    availability_prompt_template,
    availability_reminder_template,
    no_consensus_template,
)

logger = logging.getLogger(__name__)

PURPOSE_PROMPT = "availability_prompt"
PURPOSE_REMINDER = "availability_reminder"
PURPOSE_MANUAL_REMINDER = "manual_reminder"
PURPOSE_NO_CONSENSUS = "no_consensus"


class EmailMessage(BaseModel):
    recipient: str
    subject: str
    html: str
    text: str
    group_name: Optional[str] = None
    purpose: str


class EmailResult(BaseModel):
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    result = mjml_to_html(mjml_content)
    # mjml_to_html returns a dict with 'html' and 'errors' keys
    if isinstance(result, dict):
        if result.get("errors"):
            logger.warning(f"MJML compilation warnings: {result['errors']}")
        return result.get("html", "")
    return str(result)


def build_form_url(prompt_id: str, token: str) -> str:
    return f"{config.FRONTEND_URL}/availability/{prompt_id}?token={quote(token, safe='')}"


def format_deadline(deadline: datetime) -> str:
    return deadline.strftime("%A, %B %d at %H:%M UTC")


class ResendMailer:
    """Outbound email transport backed by Resend"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_address: Optional[str] = None,
        timeout: float = config.EMAIL_SEND_TIMEOUT,
    ):
        self.api_key = api_key or config.RESEND_API_KEY
        self.from_address = from_address or config.EMAIL_FROM_ADDRESS
        self.timeout = timeout

    async def send(self, message: EmailMessage) -> EmailResult:
        """
        Send one message. Delivery problems come back as EmailResult(success=False);
        a transport timeout is raised so job handlers can retry it.
        """
        if not self.api_key:
            logger.error("❌ No email service configured - RESEND_API_KEY missing")
            return EmailResult(success=False, error="Email service not configured")

        resend.api_key = self.api_key
        payload = {
            "from": self.from_address,
            "to": [message.recipient],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
            "tags": [{"name": "purpose", "value": message.purpose}],
        }

        try:
            logger.info(f"📧 Sending {message.purpose} email via Resend to: {message.recipient}")
            response = await asyncio.wait_for(
                asyncio.to_thread(resend.Emails.send, payload), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"❌ Email send to {message.recipient} timed out after {self.timeout}s")
            raise
        except ResendError as e:
            logger.error(f"❌ Email send error to {message.recipient}: {e}")
            return EmailResult(success=False, error=str(e))

        message_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
        logger.info(f"✅ Email sent successfully via Resend: {message_id}")
        return EmailResult(success=True, message_id=message_id)


# ============================================
# Message builders
# ============================================


def build_prompt_email(
    recipient: str,
    user_name: str,
    group_name: str,
    prompt_id: str,
    token: str,
    deadline: datetime,
    custom_message: Optional[str] = None,
    game_name: Optional[str] = None,
) -> EmailMessage:
    form_url = build_form_url(prompt_id, token)
    deadline_text = format_deadline(deadline)
    mjml_content = availability_prompt_template(
        user_name, group_name, form_url, deadline_text, custom_message, game_name
    )
    text = (
        f"Hi {user_name},\n\n{group_name} is planning its next game night.\n"
        f"{custom_message + chr(10) if custom_message else ''}"
        f"Share your availability by {deadline_text}:\n{form_url}\n"
    )
    return EmailMessage(
        recipient=recipient,
        subject=f"🎲 {group_name}: when can you play?",
        html=compile_mjml_to_html(mjml_content),
        text=text,
        group_name=group_name,
        purpose=PURPOSE_PROMPT,
    )


def build_reminder_email(
    recipient: str,
    user_name: str,
    group_name: str,
    prompt_id: str,
    token: str,
    deadline: datetime,
    stage: str,
) -> EmailMessage:
    form_url = build_form_url(prompt_id, token)
    deadline_text = format_deadline(deadline)
    mjml_content = availability_reminder_template(user_name, group_name, form_url, deadline_text, stage)
    text = (
        f"Hi {user_name},\n\n{group_name} is still waiting on your availability.\n"
        f"Deadline: {deadline_text}\n{form_url}\n"
    )
    return EmailMessage(
        recipient=recipient,
        subject=f"⏰ Reminder: {group_name} needs your availability",
        html=compile_mjml_to_html(mjml_content),
        text=text,
        group_name=group_name,
        purpose=PURPOSE_MANUAL_REMINDER if stage == "manual" else PURPOSE_REMINDER,
    )


def build_no_consensus_email(
    recipient: str,
    admin_name: str,
    group_name: str,
    prompt_id: str,
    response_count: int,
    min_participants: int,
) -> EmailMessage:
    dashboard_url = f"{config.FRONTEND_URL}/prompts/{prompt_id}/suggestions"
    mjml_content = no_consensus_template(
        admin_name, group_name, response_count, min_participants, dashboard_url
    )
    text = (
        f"Hi {admin_name},\n\nThe availability poll for {group_name} closed without any slot "
        f"reaching {min_participants} players ({response_count} responses).\n{dashboard_url}\n"
    )
    return EmailMessage(
        recipient=recipient,
        subject=f"{group_name}: no time worked for everyone",
        html=compile_mjml_to_html(mjml_content),
        text=text,
        group_name=group_name,
        purpose=PURPOSE_NO_CONSENSUS,
    )
