from typing import Optional, Dict, Any
from urllib.parse import urljoin
import time

from flask import current_app, render_template
from flask_mail import Message
from orgassess.extensions import db, mail
from orgassess.models import EmailLog
from . import tokens


def absolute_url(path: str) -> str:
    base = current_app.config["APP_BASE_URL"].rstrip("/") + "/"
    return urljoin(base, path.lstrip("/"))


def _base_context() -> Dict[str, Any]:
    return {
        "product_name": current_app.config.get("PRODUCT_NAME", "Assessment Platform"),
        "support_email": current_app.config.get("SUPPORT_EMAIL"),
    }


def send_email(
    to_email: str,
    subject: str,
    template: str,
    context: Optional[Dict[str, Any]] = None,
    user_id: Optional[int] = None,
) -> Optional[EmailLog]:
    """
    template: basename under templates/email/ without extension (e.g. 'invite', 'reset').
    Renders both HTML and plaintext, logs the attempt to EmailLog (queued -> sent|failed)
    and returns the log row. SMTP errors are logged, never raised.
    """
    ctx = {**_base_context(), **(context or {})}
    msg = Message(recipients=[to_email], subject=subject)
    msg.body = render_template(f"email/{template}.txt", **ctx)
    msg.html = render_template(f"email/{template}.html", **ctx)

    elog = EmailLog(
        user_id=user_id,
        to_email=to_email.lower(),
        template=template,
        subject=subject,
        status="queued",
        meta={},
    )
    db.session.add(elog)
    db.session.flush()

    start = time.perf_counter()
    try:
        mail.send(msg)
    except Exception as ex:  # smtplib/socket errors vary by backend
        latency_ms = int((time.perf_counter() - start) * 1000)
        elog.status = "failed"
        elog.meta = {"error": str(ex)}
        db.session.commit()
        current_app.logger.warning(
            "mail_send",
            extra={
                "event": "mail_send",
                "template": template,
                "to": to_email.lower(),
                "outcome": "smtp_error",
                "latency_ms": latency_ms,
                "smtp_error": str(ex),
            },
        )
        return elog

    latency_ms = int((time.perf_counter() - start) * 1000)
    elog.status = "sent"
    db.session.commit()
    current_app.logger.info(
        "mail_send",
        extra={
            "event": "mail_send",
            "template": template,
            "to": to_email.lower(),
            "outcome": "sent",
            "latency_ms": latency_ms,
        },
    )
    return elog


def send_invite_email(user, temporary_password: str, invited_by=None) -> Optional[EmailLog]:
    token = tokens.generate(tokens.TOKEN_INVITE, user.email.lower())
    ttl = int(current_app.config.get("INVITE_TOKEN_TTL_MINUTES", 4320))
    ctx = {
        "user_name": user.full_name,
        "organization_name": user.organization.name if user.organization else None,
        "invited_by": invited_by.full_name if invited_by else None,
        "email": user.email,
        "temporary_password": temporary_password,
        "action_url": absolute_url(f"auth/set-password?token={token}"),
        "token_ttl_hours": ttl // 60,
    }
    return send_email(
        to_email=user.email,
        subject="You have been invited",
        template="invite",
        context=ctx,
        user_id=user.id,
    )


def send_password_reset_email(user) -> Optional[EmailLog]:
    token = tokens.generate(tokens.TOKEN_RESET, user.email.lower())
    ctx = {
        "user_name": user.full_name,
        "action_url": absolute_url(f"auth/reset?token={token}"),
        "token_ttl_minutes": int(current_app.config.get("RESET_TOKEN_TTL_MINUTES", 120)),
    }
    return send_email(
        to_email=user.email,
        subject="Reset your password",
        template="reset",
        context=ctx,
        user_id=user.id,
    )


def send_ticket_status_email(ticket, old_status: str) -> Optional[EmailLog]:
    owner = ticket.staff_member
    if owner is None or not owner.email:
        return None
    ctx = {
        "user_name": owner.full_name,
        "ticket_number": ticket.ticket_number,
        "subject": ticket.subject,
        "old_status": old_status,
        "new_status": ticket.status,
        "action_url": absolute_url(f"support/tickets/{ticket.id}"),
    }
    return send_email(
        to_email=owner.email,
        subject=f"[{ticket.ticket_number}] status changed to {ticket.status.replace('_', ' ')}",
        template="ticket_status",
        context=ctx,
        user_id=owner.id,
    )
