import uuid
from decimal import Decimal

import pytest

from flowaid.auth import Caller
from flowaid.errors import NotFound, PersistenceError
from flowaid.extensions import db
from flowaid.forms import DonationRequest
from flowaid.models import Donation, DonationStatus, Product, School, User
from flowaid.services.donations import DonationRecords, build_purpose


def _request(product_id, **kw):
    kw.setdefault("amount", Decimal("25.00"))
    return DonationRequest(product_id=product_id, **kw)


def test_anonymous_donation_created_pending(app, product, school):
    records = DonationRecords()
    d = records.create(
        _request(product.id, is_anonymous=True, anonymous_email="a@b.com", anonymous_name="Ada"),
        None,
    )
    assert d.status == DonationStatus.PENDING
    assert d.donor_id is None
    assert d.anonymous_email == "a@b.com"
    assert d.school_id == school.id
    assert d.currency == "USD"
    assert d.purpose == "Anonymous donation for Reusable Pad Kit from Ada"


def test_registered_donation_attaches_donor_and_mirrors_user(app, product):
    caller = Caller(user_id=str(uuid.uuid4()), email="donor@mail.com", full_name="Dee Donor")
    d = DonationRecords().create(_request(product.id), caller)

    assert d.donor_id == caller.user_id
    assert d.anonymous_email is None
    assert d.purpose == "Donation for Reusable Pad Kit"
    user = db.session.get(User, caller.user_id)
    assert user.email == "donor@mail.com"
    assert user.full_name == "Dee Donor"


def test_missing_product_creates_nothing(app):
    with pytest.raises(NotFound) as exc:
        DonationRecords().create(
            _request(str(uuid.uuid4()), is_anonymous=True, anonymous_email="a@b.com"), None
        )
    assert exc.value.message == "Product not found"
    assert Donation.query.count() == 0


def test_product_link_beats_supplied_school(app, product, school):
    other = School(name="Other School")
    db.session.add(other)
    db.session.commit()

    d = DonationRecords().create(
        _request(product.id, school_id=other.id, is_anonymous=True, anonymous_email="a@b.com"), None
    )
    assert d.school_id == school.id


def test_supplied_school_used_for_unlinked_product(app, school):
    loose = Product(name="Soap", price=Decimal("2"))
    db.session.add(loose)
    db.session.commit()

    d = DonationRecords().create(_request(loose.id, school_id=school.id, is_anonymous=True, anonymous_email="a@b.com"), None)
    assert d.school_id == school.id


def test_unknown_supplied_school_is_not_found(app):
    loose = Product(name="Soap", price=Decimal("2"))
    db.session.add(loose)
    db.session.commit()

    with pytest.raises(NotFound):
        DonationRecords().create(
            _request(loose.id, school_id=str(uuid.uuid4()), is_anonymous=True, anonymous_email="a@b.com"), None
        )


def test_raw_school_field_is_last_resort(app, school):
    legacy = Product(name="Pads", price=Decimal("5"), school=school.id)
    db.session.add(legacy)
    db.session.commit()

    d = DonationRecords().create(_request(legacy.id, is_anonymous=True, anonymous_email="a@b.com"), None)
    assert d.school_id == school.id


def test_unknown_raw_school_leaves_school_empty(app):
    legacy = Product(name="Pads", price=Decimal("5"), school="gone-school")
    db.session.add(legacy)
    db.session.commit()

    d = DonationRecords().create(_request(legacy.id, is_anonymous=True, anonymous_email="a@b.com"), None)
    assert d.school_id is None


def test_registered_donation_without_caller_is_refused(app, product):
    with pytest.raises(PersistenceError):
        DonationRecords().create(_request(product.id), None)
    assert Donation.query.count() == 0


def test_mark_processing_and_failed(app, product):
    records = DonationRecords()
    ok = records.create(_request(product.id, is_anonymous=True, anonymous_email="a@b.com"), None)
    assert records.mark_processing(ok, "gw_ref_1") is True
    assert ok.status == DonationStatus.PROCESSING
    assert ok.transaction_hash == "gw_ref_1"

    # only pending donations can be failed by the creation path
    assert records.mark_failed(ok) is False
    assert ok.status == DonationStatus.PROCESSING

    bad = records.create(_request(product.id, is_anonymous=True, anonymous_email="a@b.com"), None)
    assert records.mark_failed(bad) is True
    assert bad.status == DonationStatus.FAILED


def test_mark_processing_falls_back_to_donation_id(app, product):
    records = DonationRecords()
    d = records.create(_request(product.id, is_anonymous=True, anonymous_email="a@b.com"), None)
    records.mark_processing(d, None)
    assert d.transaction_hash == d.id


def test_find_by_reference_uses_id_then_transaction_hash(app, product):
    records = DonationRecords()
    d = records.create(_request(product.id, is_anonymous=True, anonymous_email="a@b.com"), None)
    records.mark_processing(d, "gw_ref_9")

    assert records.find_by_reference(d.id).id == d.id
    assert records.find_by_reference("gw_ref_9").id == d.id
    assert records.find_by_reference("nothing") is None


def test_read_policy(app, product, owner):
    records = DonationRecords()
    donor = Caller(user_id=str(uuid.uuid4()), email="donor@mail.com")
    stranger = Caller(user_id=str(uuid.uuid4()), email="other@mail.com")
    admin = Caller(user_id=str(uuid.uuid4()), email="admin@mail.com", is_admin=True)
    school_owner = Caller(user_id=owner.id, email=owner.email)

    mine = records.create(_request(product.id), donor)
    anon = records.create(_request(product.id, is_anonymous=True, anonymous_email="a@b.com"), None)

    assert records.can_read(mine, donor)
    assert not records.can_read(mine, stranger)
    assert not records.can_read(anon, donor)
    assert not records.can_read(anon, None)
    assert records.can_read(anon, school_owner)
    assert records.can_read(anon, admin)

    assert {d.id for d in records.visible_to(donor)} == {mine.id}
    assert {d.id for d in records.visible_to(school_owner)} == {mine.id, anon.id}
    assert records.visible_to(stranger).count() == 0


def test_build_purpose_variants():
    assert build_purpose("Kit", False) == "Donation for Kit"
    assert build_purpose("Kit", True) == "Anonymous donation for Kit"
    assert build_purpose("Kit", True, "Ada") == "Anonymous donation for Kit from Ada"
