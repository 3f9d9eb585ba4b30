from app.models.email_log import EmailLog
from app.services import email_service


def test_failed_send_is_kept_for_retry(db, monkeypatch):
    def down(to, subject, body):
        raise OSError("connection refused")
    monkeypatch.setattr(email_service, "send_email", down)

    eid = email_service.queue_email(db, "guest@example.com", "Your booking", "code 123456", related_booking_ref="HALA-20250601-1234")

    log = db.get(EmailLog, eid)
    assert log.status == "failed"
    assert log.attempts == 1

    sent = []
    monkeypatch.setattr(email_service, "send_email", lambda to, subject, body: sent.append(to))

    result = email_service.process_pending_emails(db)

    assert result == {"processed": 1, "sent": 1, "failed": 0}
    assert sent == ["guest@example.com"]
    db.refresh(log)
    assert log.status == "sent"
    assert log.sent_at is not None


def test_gives_up_after_max_attempts(db, monkeypatch):
    def down(to, subject, body):
        raise OSError("connection refused")
    monkeypatch.setattr(email_service, "send_email", down)

    eid = email_service.queue_email(db, "guest@example.com", "Your booking", "body")
    for _ in range(email_service.MAX_SEND_ATTEMPTS + 2):
        email_service.process_pending_emails(db)

    assert db.get(EmailLog, eid).attempts == email_service.MAX_SEND_ATTEMPTS
    assert email_service.process_pending_emails(db)["processed"] == 0


def test_booking_confirmation_email_is_logged(client, created_booking, sent_emails, db):
    ref = created_booking["referenceNumber"]

    log = db.query(EmailLog).filter(EmailLog.related_booking_ref == ref).one()

    assert log.status == "sent"
    assert log.to_email == "amira@example.com"
    assert created_booking["verificationCode"] in log.body
