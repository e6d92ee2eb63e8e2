from datetime import datetime, timedelta
from decimal import Decimal

from storefront.models import AddressDB, OrderDB, OrderItemDB, to_document
from storefront.reports import date_range, revenue_report

NOW = datetime(2024, 5, 20, 15, 30)


async def insert_order(db, created_at, items, status="delivered"):
    subtotal = sum(Decimal(price) * quantity for _, _, price, quantity in items)
    order = OrderDB(
        user_id="user-1",
        items=[OrderItemDB(product_id=pid, name=name, price=Decimal(price), quantity=quantity)
               for pid, name, price, quantity in items],
        shipping_address=AddressDB(street="1 Main St", city="Springfield"),
        payment_method="cod",
        payment_status="paid",
        status=status,
        subtotal=subtotal,
        shipping_fee=Decimal(0),
        total=subtotal,
        created_at=created_at,
    )
    await db.orders.insert_one(to_document(order))


def test_date_range():
    start, end = date_range("day", NOW)
    assert start == datetime(2024, 5, 20)
    assert end == NOW
    assert date_range("week", NOW)[0] == NOW - timedelta(days=7)
    assert date_range("year", NOW)[0] == NOW - timedelta(days=365)
    assert date_range("decade", NOW)[0] == NOW - timedelta(days=30)


async def test_revenue_report_counts_delivered_orders(db):
    await insert_order(db, NOW - timedelta(days=1), [("p1", "Lamp", "30.00", 2)])
    await insert_order(db, NOW - timedelta(days=1, hours=2), [("p2", "Mug", "8.00", 1)])
    await insert_order(db, NOW - timedelta(days=3), [("p1", "Lamp", "30.00", 1)])
    # Outside the window
    await insert_order(db, NOW - timedelta(days=10), [("p1", "Lamp", "30.00", 5)])
    # Not delivered
    await insert_order(db, NOW - timedelta(days=1), [("p2", "Mug", "8.00", 9)], status="shipped")

    report = await revenue_report(db, "week", now=NOW)

    assert report.order_count == 3
    assert report.total_revenue == Decimal("98")
    assert [(d.date, d.order_count) for d in report.daily] == [("2024-05-17", 1), ("2024-05-19", 2)]
    assert report.top_products[0].product_id == "p1"
    assert report.top_products[0].quantity == 3
    assert report.top_products[0].revenue == Decimal("90")
    assert report.top_products[1].name == "Mug"


async def test_revenue_report_empty(db):
    report = await revenue_report(db, "day", now=NOW)
    assert report.daily == []
    assert report.total_revenue == 0
    assert report.top_products == []


async def test_daily_revenue_is_rounded_to_cents(db):
    await insert_order(db, NOW - timedelta(hours=3), [("p1", "Sticker", "0.10", 1)])
    await insert_order(db, NOW - timedelta(hours=2), [("p2", "Pin", "0.20", 1)])

    report = await revenue_report(db, "day", now=NOW)

    assert report.daily[0].revenue == Decimal("0.3")
    assert str(report.total_revenue) == "0.3"
