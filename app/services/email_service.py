"""
Siteline — Email Service.

Sends notification emails rendered from named HTML templates. When SMTP is
not configured, emails are logged but not sent (dev/test mode).

Uses:
    - MAIL_* config (MAIL_SERVER, MAIL_PORT, ...)
    - Falls back to logging-only mode when MAIL_SERVER is unset
    - All emails are recorded in EmailLog for audit

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
"""

from __future__ import annotations

import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app
from markupsafe import escape

from app.models import db
from app.models.scheduling import EmailLog

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

def _layout(header_color: str, heading: str, body: str) -> str:
    return f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <div style="background: {header_color}; color: white; padding: 16px 24px; border-radius: 8px 8px 0 0;">
                <h2 style="margin: 0; font-size: 18px;">{heading}</h2>
            </div>
            <div style="background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0; border-top: none;">
                {body}
            </div>
            <div style="background: #f1f5f9; padding: 12px 24px; border-radius: 0 0 8px 8px;
                        border: 1px solid #e2e8f0; border-top: none; text-align: center;">
                <p style="color: #94a3b8; font-size: 12px; margin: 0;">
                    Siteline · automated project notification
                </p>
            </div>
        </div>
        """


_BUTTON = ('<p><a href="{view_url}" style="background: #2563eb; color: white; padding: 10px 18px; '
           'border-radius: 6px; text-decoration: none;">{button_label}</a></p>')

_TEMPLATES: dict[str, dict[str, str]] = {
    "rfi_assignment": {
        "subject": "[RFI {rfi_number}] {rfi_title} - Assigned to You",
        "html": _layout("#1e293b", "RFI {rfi_number} assigned to you", """
                <p style="color: #64748b;">{assigned_by} assigned you an RFI on <strong>{project_name}</strong>.</p>
                <h3 style="margin: 16px 0 8px; color: #1e293b;">{rfi_title}</h3>
                <p style="color: #64748b; line-height: 1.6;">{rfi_description}</p>
                <p style="color: #64748b;">Priority: <strong>{priority}</strong> · Due: {due_date}</p>
                """ + _BUTTON),
    },
    "rfi_response": {
        "subject": "[RFI {rfi_number}] {response_kind} - {rfi_title}",
        "html": _layout("#1e293b", "New response on RFI {rfi_number}", """
                <p style="color: #64748b;">{responder_name} has {response_verb} on <strong>{project_name}</strong>.</p>
                <blockquote style="border-left: 4px solid #2563eb; margin: 12px 0; padding: 8px 16px; color: #334155;">
                    {response_content}
                </blockquote>
                """ + _BUTTON),
    },
    "rfi_overdue_digest": {
        "subject": "Daily RFI Digest: {count} Overdue {rfi_word}",
        "html": _layout("#dc2626", "Overdue RFIs", """
                <p style="color: #64748b;">Hi {recipient_name}, you have <strong>{count} overdue {rfi_word}</strong>
                that require your attention.</p>
                {rfi_list_html}
                """),
    },
    "submittal_review_required": {
        "subject": "Review Required: {submittal_number} - {submittal_title}",
        "html": _layout("#1e293b", "Submittal review required", """
                <p style="color: #64748b;">Submittal <strong>{submittal_number}</strong> on {project_name}
                is waiting for your {stage_label} review.</p>
                <h3 style="margin: 16px 0 8px; color: #1e293b;">{submittal_title}</h3>
                <p style="color: #64748b;">Spec section {spec_section} · {version}</p>
                """ + _BUTTON),
    },
    "submittal_approved": {
        "subject": "Approved: {submittal_number} - {submittal_title}",
        "html": _layout("#16a34a", "Submittal approved", """
                <p style="color: #64748b;">Submittal <strong>{submittal_number}</strong> ({submittal_title})
                was {decision_label}.</p>
                <p style="color: #334155;">{comments}</p>
                """ + _BUTTON),
    },
    "submittal_revision_required": {
        "subject": "Revision Required: {submittal_number}",
        "html": _layout("#f59e0b", "Revision required", """
                <p style="color: #64748b;">Submittal <strong>{submittal_number}</strong> ({submittal_title})
                needs to be revised and resubmitted.</p>
                <p style="color: #334155;">{comments}</p>
                """ + _BUTTON),
    },
    "submittal_rejected": {
        "subject": "Rejected: {submittal_number}",
        "html": _layout("#dc2626", "Submittal rejected", """
                <p style="color: #64748b;">Submittal <strong>{submittal_number}</strong> ({submittal_title})
                was rejected.</p>
                <p style="color: #334155;">{comments}</p>
                """ + _BUTTON),
    },
    "organization_invite": {
        "subject": "You've been invited to join {org_name} on Siteline",
        "html": _layout("#1e293b", "Invitation to {org_name}", """
                <p style="color: #64748b;">{invited_by} invited you to join <strong>{org_name}</strong>
                as {role}.</p>
                """ + _BUTTON),
    },
}


class EmailService:
    """
    Email sending service with template support.

    In development/test mode (no MAIL_SERVER configured), emails are
    logged to the database but not actually sent via SMTP.
    """

    @staticmethod
    def is_configured() -> bool:
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        return _TEMPLATES.get(template_name)

    @classmethod
    def send(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        subject: str,
        html_body: str,
        template_name: str | None = None,
        category: str = "system",
        project_id: int | None = None,
    ) -> EmailLog:
        """
        Send an email and log it.

        If SMTP is not configured, the email is logged with status='sent'
        to simulate sending without actual delivery. SMTP failures are
        recorded on the log row (status='failed'), never raised.
        """
        log = EmailLog(
            recipient_email=to_email,
            recipient_name=to_name,
            subject=subject[:500],
            template_name=template_name,
            category=category,
            status="queued",
            project_id=project_id,
        )
        db.session.add(log)
        db.session.flush()

        if not cls.is_configured():
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info(
                "Email (log-only mode): to=%s subject='%s' template=%s",
                to_email, subject, template_name,
                extra={"project_id": project_id},
            )
            return log

        try:
            cls._send_smtp(to_email=to_email, to_name=to_name,
                           subject=subject, html_body=html_body)
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info("Email sent: to=%s subject='%s'", to_email, subject)
        except (smtplib.SMTPException, OSError) as exc:
            log.status = "failed"
            log.error_message = str(exc)[:1000]
            logger.error("Email failed: to=%s error=%s", to_email, exc)

        return log

    @classmethod
    def send_from_template(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        template_name: str,
        context: dict[str, Any],
        category: str = "system",
        project_id: int | None = None,
    ) -> EmailLog | None:
        """
        Send an email using a named template.

        Context values are HTML-escaped except keys ending in ``_html``,
        which callers build from already-escaped fragments. Subjects use the
        raw values.
        """
        template = cls.get_template(template_name)
        if not template:
            logger.warning("Email template not found: %s", template_name)
            return None

        html_context = {
            k: (v if k.endswith("_html") else escape("" if v is None else v))
            for k, v in context.items()
        }
        subject = template["subject"].format_map(_SafeDict(context))
        html_body = template["html"].format_map(_SafeDict(html_context))

        return cls.send(
            to_email=to_email,
            to_name=to_name,
            subject=subject,
            html_body=html_body,
            template_name=template_name,
            category=category,
            project_id=project_id,
        )

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None,
                   subject: str, html_body: str) -> None:
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"
