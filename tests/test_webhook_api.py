from decimal import Decimal

from flowaid.extensions import db
from flowaid.models import Donation, DonationStatus, LedgerEntry, PaymentEvent, School


def _create(client, payload):
    resp = client.post("/donations", json=payload)
    assert resp.status_code == 200
    return resp.get_json()["donationId"]


def test_duplicate_webhook_credits_school_once(client, anonymous_payload, school):
    donation_id = _create(client, anonymous_payload)
    hook = {"event": "checkout.completed", "data": {"reference": donation_id}}

    for _ in range(3):
        resp = client.post("/payment-callback", json=hook)
        assert resp.status_code == 200
        assert resp.get_json()["success"] is True

    db.session.expire_all()
    assert db.session.get(School, school.id).total_received == Decimal("25.00")
    assert LedgerEntry.query.count() == 1
    assert PaymentEvent.query.count() == 3


def test_unknown_event_acknowledged(client, anonymous_payload):
    donation_id = _create(client, anonymous_payload)
    resp = client.post("/payment-callback", json={"event": "invoice.created", "data": {"reference": donation_id}})
    assert resp.status_code == 200
    assert resp.get_json() == {"success": True, "message": "Webhook processed"}
    assert db.session.get(Donation, donation_id).status == DonationStatus.PROCESSING


def test_garbage_body_acknowledged(client):
    resp = client.post("/payment-callback", data="not json", content_type="text/plain")
    assert resp.status_code == 200
    assert resp.get_json() == {"success": True, "message": "Acknowledged"}


def test_missing_reference_acknowledged(client):
    resp = client.post("/payment-callback", json={"event": "payment.completed", "data": {"status": "ok"}})
    assert resp.status_code == 200
    assert resp.get_json()["message"] == "No reference found"


def test_failure_webhook(client, anonymous_payload, school):
    donation_id = _create(client, anonymous_payload)
    client.post("/payment-callback", json={"event": "checkout.payment.failed", "data": {"reference": donation_id}})

    db.session.expire_all()
    assert db.session.get(Donation, donation_id).status == DonationStatus.FAILED
    assert db.session.get(School, school.id).total_received == Decimal("0")


def test_send_donation_confirmation(client, mailer):
    resp = client.post(
        "/send-donation-confirmation",
        json={
            "email": "a@b.com",
            "donorName": "Ada",
            "productName": "Reusable Pad Kit",
            "amount": 25,
            "quantity": 2,
            "schoolName": "Kibera Girls",
            "donationId": "d-1",
        },
    )
    assert resp.status_code == 202
    assert resp.get_json() == {"success": True}
    assert mailer.calls[0]["json"]["to"] == ["a@b.com"]
    assert "Kibera Girls" in mailer.calls[0]["json"]["html"]


def test_send_donation_confirmation_requires_fields(client, mailer):
    resp = client.post("/send-donation-confirmation", json={"email": "a@b.com", "amount": 5})
    assert resp.status_code == 400
    assert "productName" in resp.get_json()["error"]
    assert mailer.calls == []


def test_send_donation_confirmation_delivery_failure_still_accepted(client, mailer, respond):
    mailer.queue.append(respond(500, {"message": "down"}))
    resp = client.post(
        "/send-donation-confirmation",
        json={"email": "a@b.com", "productName": "Kit", "amount": 5, "quantity": 1, "donationId": "d-2"},
    )
    assert resp.status_code == 202
