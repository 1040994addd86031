from decimal import Decimal

import pytest

from flowaid.errors import NotificationError
from flowaid.extensions import run_inline
from flowaid.services.notifications import (
    SUBJECT,
    ConfirmationNotifier,
    DonationSummary,
    ResendTransport,
    SmtpTransport,
    build_transport,
)


def _summary(**kw):
    base = dict(
        email="a@b.com",
        product_name="Reusable Pad Kit",
        amount=Decimal("25"),
        quantity=2,
        donation_id="d-123",
    )
    base.update(kw)
    return DonationSummary(**base)


class RecordingTransport:
    def __init__(self, failures=0):
        self.failures = failures
        self.sent = []

    def send(self, to, subject, html, text=None):
        if self.failures:
            self.failures -= 1
            raise NotificationError("smtp down")
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})


def test_receipt_contains_donation_details():
    transport = RecordingTransport()
    notifier = ConfirmationNotifier(transport, submit=run_inline, max_retries=0)

    assert notifier.notify(_summary(donor_name="Ada", school_name="Kibera Girls")).result() is True

    msg = transport.sent[0]
    assert msg["to"] == "a@b.com"
    assert msg["subject"] == SUBJECT
    for fragment in ("Ada", "Kibera Girls", "Reusable Pad Kit", "2 pack(s)", "$25.00", "d-123"):
        assert fragment in msg["html"]
        assert fragment in msg["text"]


def test_defaults_for_missing_names():
    transport = RecordingTransport()
    ConfirmationNotifier(transport, submit=run_inline, max_retries=0).notify(_summary())
    assert "Generous Donor" in transport.sent[0]["html"]
    assert "a school in need" in transport.sent[0]["html"]


def test_html_is_escaped():
    transport = RecordingTransport()
    ConfirmationNotifier(transport, submit=run_inline, max_retries=0).notify(_summary(donor_name="<b>x</b>"))
    assert "<b>x</b>" not in transport.sent[0]["html"]
    assert "&lt;b&gt;x&lt;/b&gt;" in transport.sent[0]["html"]


def test_failures_are_swallowed():
    transport = RecordingTransport(failures=5)
    future = ConfirmationNotifier(transport, submit=run_inline, max_retries=1, retry_backoff=0).notify(_summary())
    assert future.result() is False
    assert transport.sent == []


def test_transient_failure_is_retried():
    transport = RecordingTransport(failures=1)
    future = ConfirmationNotifier(transport, submit=run_inline, max_retries=2, retry_backoff=0).notify(_summary())
    assert future.result() is True
    assert len(transport.sent) == 1


def test_resend_transport_posts_message(mailer):
    ResendTransport("re_key", "FlowAid <hi@flowaid.org>", session=mailer).send("a@b.com", "Hi", "<p>x</p>", "x")
    call = mailer.calls[0]
    assert call["url"] == "https://api.resend.com/emails"
    assert call["headers"]["Authorization"] == "Bearer re_key"
    assert call["json"] == {"from": "FlowAid <hi@flowaid.org>", "to": ["a@b.com"], "subject": "Hi", "html": "<p>x</p>", "text": "x"}


def test_resend_transport_errors(mailer, respond):
    with pytest.raises(NotificationError):
        ResendTransport("", "x@y.org", session=mailer).send("a@b.com", "Hi", "<p/>")

    mailer.queue.append(respond(422, {"message": "bad from"}))
    with pytest.raises(NotificationError):
        ResendTransport("re_key", "x@y.org", session=mailer).send("a@b.com", "Hi", "<p/>")


def test_build_transport_follows_config(app):
    assert isinstance(build_transport(app), ResendTransport)
    app.config["EMAIL_TRANSPORT"] = "smtp"
    assert isinstance(build_transport(app), SmtpTransport)


def test_smtp_transport_uses_flask_mail(app, monkeypatch):
    sent = []
    monkeypatch.setattr("flowaid.extensions.mail.send", lambda msg: sent.append(msg))

    SmtpTransport(app, sender="FlowAid <hi@flowaid.org>").send("a@b.com", "Hi", "<p>x</p>", "x")
    assert sent[0].recipients == ["a@b.com"]
    assert sent[0].html == "<p>x</p>"


def test_summary_from_payload_requires_core_fields():
    with pytest.raises(ValueError) as exc:
        DonationSummary.from_payload({"email": "a@b.com", "amount": 5})
    assert "productName" in str(exc.value)
    assert "donationId" in str(exc.value)

    s = DonationSummary.from_payload(
        {"email": "a@b.com", "productName": "Kit", "amount": 12.5, "quantity": 3, "donationId": "d1"}
    )
    assert s.amount == Decimal("12.5")
    assert s.quantity == 3


def test_missing_api_key_is_not_retried(mailer, monkeypatch):
    sleeps = []
    monkeypatch.setattr("flowaid.services.notifications.time.sleep", sleeps.append)

    transport = ResendTransport("", "x@y.org", session=mailer)
    future = ConfirmationNotifier(transport, submit=run_inline, max_retries=3, retry_backoff=5).notify(_summary())

    assert future.result() is False
    assert sleeps == []
    assert mailer.calls == []


def test_rejected_request_is_not_retried_but_server_error_is(mailer, respond, monkeypatch):
    sleeps = []
    monkeypatch.setattr("flowaid.services.notifications.time.sleep", sleeps.append)
    transport = ResendTransport("re_key", "x@y.org", session=mailer)
    notifier = ConfirmationNotifier(transport, submit=run_inline, max_retries=2, retry_backoff=1)

    mailer.queue.append(respond(422, {"message": "bad from"}))
    assert notifier.notify(_summary()).result() is False
    assert len(mailer.calls) == 1
    assert sleeps == []

    mailer.queue.append(respond(503, {"message": "busy"}))
    assert notifier.notify(_summary()).result() is True
    assert len(mailer.calls) == 3
    assert sleeps == [1]
