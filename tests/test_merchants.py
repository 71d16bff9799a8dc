import pytest
from fastapi import HTTPException

from qfifat.merchants import review_request, submit_request
from qfifat.models import UserRole
from qfifat.security import role_of


def _submit(db, user):
    return submit_request(db, user, business_name="ورشة الحلفاء", phone="0661000000", wilaya="بسكرة")


def test_approval_grants_merchant_role(db, customer, admin):
    req = _submit(db, customer)
    assert req.status == "pending"

    req = review_request(db, req.id, approve=True, admin=admin)

    assert req.status == "approved"
    assert req.reviewed_by == admin.id
    assert role_of(db, customer.id) == "merchant"


def test_one_open_request_at_a_time(db, customer):
    _submit(db, customer)
    with pytest.raises(HTTPException) as exc:
        _submit(db, customer)
    assert exc.value.status_code == 409


def test_existing_merchant_cannot_apply(db, merchant):
    with pytest.raises(HTTPException) as exc:
        _submit(db, merchant)
    assert exc.value.status_code == 409


def test_rejection_needs_notes(db, customer, admin):
    req = _submit(db, customer)
    with pytest.raises(HTTPException) as exc:
        review_request(db, req.id, approve=False, admin=admin)
    assert exc.value.status_code == 400

    req = review_request(db, req.id, approve=False, admin=admin, notes="صور المنتجات غير واضحة")
    assert req.status == "rejected"
    assert db.query(UserRole).filter(UserRole.user_id == customer.id).count() == 0

    # Can reapply after a rejection
    assert _submit(db, customer).status == "pending"


def test_reviewed_request_is_final(db, customer, admin):
    req = _submit(db, customer)
    review_request(db, req.id, approve=True, admin=admin)
    with pytest.raises(HTTPException) as exc:
        review_request(db, req.id, approve=False, admin=admin, notes="changed mind")
    assert exc.value.status_code == 409
