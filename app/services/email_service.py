from datetime import datetime, timezone
import logging
import smtplib
from email.message import EmailMessage
from sqlalchemy.orm import Session
import uuid
import requests

from app.core.config import settings
from app.models.email_log import EmailLog

logger = logging.getLogger(__name__)

MAX_SEND_ATTEMPTS = 5


def queue_email(db: Session, to_email: str, subject: str, body: str, related_booking_ref: str = "") -> str:
    """Queue and attempt immediate send. Body is stored so the worker can retry on failure."""
    eid = str(uuid.uuid4())
    db.add(
        EmailLog(
            id=eid,
            to_email=to_email,
            subject=subject,
            body=body,
            status="queued",
            attempts=0,
            related_booking_ref=related_booking_ref,
        )
    )
    db.commit()

    log = db.get(EmailLog, eid)
    _attempt(log)
    db.commit()
    return eid


def _attempt(log: EmailLog) -> bool:
    log.attempts = (log.attempts or 0) + 1
    try:
        send_email(log.to_email, log.subject, log.body or "")
    except (OSError, smtplib.SMTPException, requests.RequestException, RuntimeError) as e:
        # Worker will retry via process_email_queue
        logger.warning("Email to %s (%s) failed on attempt %d: %s", log.to_email, log.related_booking_ref, log.attempts, e)
        log.status = "failed"
        return False
    log.status = "sent"
    log.sent_at = datetime.now(timezone.utc)
    return True


def send_email(to_email: str, subject: str, body: str):
    """Send email via SendGrid if configured, otherwise SMTP (MailHog recommended for local)."""

    if settings.SENDGRID_API_KEY:
        _send_via_sendgrid(to_email, subject, body)
        return

    msg = EmailMessage()
    msg["From"] = settings.SMTP_FROM
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as smtp:
        if settings.SMTP_USERNAME:
            smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        smtp.send_message(msg)


def _send_via_sendgrid(to_email: str, subject: str, body: str):
    from_email = settings.SENDGRID_FROM_EMAIL or settings.SMTP_FROM
    payload = {
        "personalizations": [{"to": [{"email": to_email}]}],
        "from": {"email": from_email},
        "subject": subject,
        "content": [{"type": "text/plain", "value": body}],
    }
    r = requests.post(
        "https://api.sendgrid.com/v3/mail/send",
        json=payload,
        headers={"Authorization": f"Bearer {settings.SENDGRID_API_KEY}"},
        timeout=20,
    )
    if r.status_code >= 400:
        raise RuntimeError(f"SendGrid error {r.status_code}: {r.text}")


def send_verification_email(db: Session, booking, code: str) -> str:
    subject = f"Your booking {booking.reference_number}: payment verification code"
    services = "\n".join(f"  - {s.name} x{s.quantity}" for s in booking.services)
    body = (
        f"Dear {booking.first_name} {booking.last_name},\n\n"
        f"Thank you for booking with us. Your reference number is {booking.reference_number}.\n\n"
        f"Flight: {booking.airline} {booking.flight_number} on {booking.departure_date.isoformat()} at {booking.departure_time}\n"
        f"Services:\n{services}\n"
        f"Total: {booking.total_price:.2f} {settings.PAYMENT_CURRENCY.upper()}\n\n"
        f"To confirm your booking and complete the payment, enter this verification code: {code}\n"
    )
    return queue_email(db, booking.email, subject, body, related_booking_ref=booking.reference_number)


def process_pending_emails(db: Session, limit: int = 50) -> dict:
    """Process up to `limit` queued or failed emails; retry send and update status. Returns counts."""
    pending = (
        db.query(EmailLog)
        .filter(
            EmailLog.status.in_(["queued", "failed"]),
            EmailLog.attempts < MAX_SEND_ATTEMPTS,
            EmailLog.body.isnot(None),
            EmailLog.body != "",
        )
        .order_by(EmailLog.created_at.asc())
        .limit(limit)
        .all()
    )
    sent, failed = 0, 0
    for log in pending:
        if _attempt(log):
            sent += 1
        else:
            failed += 1
    if pending:
        db.commit()
    return {"processed": len(pending), "sent": sent, "failed": failed}
