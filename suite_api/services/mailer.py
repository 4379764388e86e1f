"""Operator email via the Mailjet send API."""

from __future__ import annotations

import base64
import html
import json
import logging
from typing import Any, Dict, Mapping, Optional
from urllib import request as urllib_request

from ..config import ADMIN_EMAIL, MAILJET_API_KEY, MAILJET_FROM, MAILJET_SECRET_KEY
from .usage_ledger import ReportSummary

logger = logging.getLogger("api.mailer")

MAILJET_SEND_URL = "https://api.mailjet.com/v3.1/send"


def _parse_mailjet_from(raw: str) -> Dict[str, str]:
    from_email = raw
    from_name = "Student Suite"
    if "<" in raw and ">" in raw:
        before, after = raw.split("<", 1)
        from_name = before.strip().strip('"') or from_name
        from_email = after.split(">", 1)[0].strip() or from_email
    return {"email": from_email, "name": from_name}


def send_mailjet_email(to_email: str, subject: str, html_part: str, *, sender_name: str = "") -> bool:
    if not to_email or not MAILJET_API_KEY or not MAILJET_SECRET_KEY:
        logger.warning("Mailjet not configured; dropping email %r", subject)
        return False

    sender = _parse_mailjet_from(MAILJET_FROM)
    payload = {
        "Messages": [
            {
                "From": {"Email": sender["email"], "Name": sender_name or sender["name"]},
                "To": [{"Email": to_email}],
                "Subject": subject,
                "HTMLPart": html_part,
            }
        ]
    }
    creds = f"{MAILJET_API_KEY}:{MAILJET_SECRET_KEY}".encode("utf-8")
    auth_header = "Basic " + base64.b64encode(creds).decode("utf-8")
    req = urllib_request.Request(
        MAILJET_SEND_URL,
        data=json.dumps(payload).encode("utf-8"),
        headers={
            "Authorization": auth_header,
            "Content-Type": "application/json",
        },
        method="POST",
    )
    try:
        with urllib_request.urlopen(req, timeout=10) as resp:
            return 200 <= int(resp.status) < 300
    except Exception as exc:
        logger.warning("Email send failed subject=%r: %s", subject, exc)
        return False


def _esc(value: Any) -> str:
    return html.escape(str(value if value is not None else ""))


def format_feedback_email(feedback: Mapping[str, Any]) -> Dict[str, str]:
    message = _esc(feedback.get("message")).replace("\n", "<br>")
    subject = f"New Feedback [{feedback.get('category')}] from {feedback.get('displayName')}"
    body = (
        "<h1>New Feedback Received</h1>"
        f"<p><b>From:</b> {_esc(feedback.get('displayName'))} ({_esc(feedback.get('email'))})</p>"
        f"<p><b>User ID:</b> {_esc(feedback.get('userId'))}</p>"
        f"<p><b>Category:</b> {_esc(feedback.get('category'))}</p>"
        f"<p><b>Platform:</b> {_esc(feedback.get('platform'))}</p>"
        f"<p><b>App Version:</b> {_esc(feedback.get('version'))}</p>"
        "<hr>"
        "<h2>Message:</h2>"
        f"<p>{message}</p>"
    )
    return {"subject": subject, "html": body}


def format_monthly_report(summary: ReportSummary) -> Dict[str, str]:
    subject = f"Student Suite Monthly Report for {summary.month}"
    body = (
        f"<h1>Student Suite Report: {summary.month}</h1>"
        f"<p><b>Total Users:</b> {summary.total_users}</p>"
        f"<p><b>Active AI Users:</b> {summary.active_users}</p>"
        "<hr>"
        f"<p><b>Total AI Requests:</b> {summary.total_requests:,}</p>"
        f"<p><b>Total AI Cost:</b> ${summary.total_cost:.4f}</p>"
        f"<p><b>Total Input Tokens:</b> {summary.total_input_tokens:,}</p>"
        f"<p><b>Total Output Tokens:</b> {summary.total_output_tokens:,}</p>"
        "<hr>"
        f"<p><b>Average Requests per Active User:</b> {summary.avg_requests:.2f}</p>"
        f"<p><b>Average Cost per Active User:</b> ${summary.avg_cost:.2f}</p>"
    )
    return {"subject": subject, "html": body}


def send_feedback_email(feedback: Mapping[str, Any], *, to_email: Optional[str] = None) -> bool:
    formatted = format_feedback_email(feedback)
    return send_mailjet_email(
        to_email or ADMIN_EMAIL, formatted["subject"], formatted["html"], sender_name="Student Suite Feedback"
    )


def send_monthly_report(summary: ReportSummary, *, to_email: Optional[str] = None) -> bool:
    formatted = format_monthly_report(summary)
    return send_mailjet_email(
        to_email or ADMIN_EMAIL, formatted["subject"], formatted["html"], sender_name="Student Suite Reports"
    )
