from datetime import datetime, timedelta, timezone
from decimal import Decimal

from qfifat.checkout import place_order
from qfifat.models import Order
from qfifat.reviews import submit_review
from qfifat.stats import dashboard_stats

from conftest import auth, checkout_payload, make_product


def test_dashboard_numbers(db, customer, merchant):
    p = make_product(db, price="2000", merchant_id=merchant.id)
    make_product(db, price="900", active=False)
    paid, _ = place_order(db, customer, checkout_payload([(p.id, 1)], method="stripe"))
    place_order(db, customer, checkout_payload([(p.id, 2)]))
    submit_review(db, customer, p.id, 5)

    stats = dashboard_stats(db)

    assert stats["total_orders"] == 2
    assert stats["orders_by_status"]["confirmed"] == 1
    assert stats["orders_by_status"]["pending"] == 1
    assert stats["orders_by_status"]["delivered"] == 0
    # Only the card order is paid: 2000 + 500 shipping
    assert stats["total_revenue"] == Decimal("2500.00")
    assert stats["customers"] == 1
    assert stats["merchants"] == 1
    assert stats["products"] == 2
    assert stats["active_products"] == 1
    assert stats["pending_payments"] == 1
    assert stats["pending_reviews"] == 1
    assert len(stats["revenue_last_7_days"]) == 7


def test_revenue_by_day(db, customer):
    p = make_product(db, price="1000")
    recent, _ = place_order(db, customer, checkout_payload([(p.id, 1)], method="stripe"))
    older, _ = place_order(db, customer, checkout_payload([(p.id, 3)], method="stripe"))

    now = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
    db.query(Order).filter(Order.id == recent.id).update({Order.created_at: now - timedelta(days=1)})
    db.query(Order).filter(Order.id == older.id).update({Order.created_at: now - timedelta(days=9)})
    db.commit()

    stats = dashboard_stats(db, now=now)

    days = {d["day"]: d["revenue"] for d in stats["revenue_last_7_days"]}
    assert days[(now - timedelta(days=1)).date()] == Decimal("1500.00")
    assert stats["last_7_days_total"] == Decimal("1500.00")
    assert stats["previous_7_days_total"] == Decimal("3500.00")


def test_stats_route_is_admin_only(client, db, admin, customer):
    assert client.get("/admin/stats", headers=auth(customer)).status_code == 403
    r = client.get("/admin/stats", headers=auth(admin))
    assert r.status_code == 200
    assert r.json()["total_orders"] == 0
