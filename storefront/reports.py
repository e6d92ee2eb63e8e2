from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase

from shared.utils import to_decimal
from storefront.schemas import DailyRevenue, RevenueReport, TopProduct
from storefront.state import OrderStatus

RANGE_DAYS = {"week": 7, "month": 30, "year": 365}


def date_range(range_: str, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    end = now or datetime.utcnow()
    if range_ == "day":
        return end.replace(hour=0, minute=0, second=0, microsecond=0), end
    # Unknown ranges fall back to the last 30 days
    return end - timedelta(days=RANGE_DAYS.get(range_, 30)), end


async def revenue_report(db: AsyncIOMotorDatabase, range_: str = "month",
                         now: Optional[datetime] = None) -> RevenueReport:
    """Revenue per day and best sellers over delivered orders."""
    start, end = date_range(range_, now)
    match = {"$match": {"created_at": {"$gte": start, "$lte": end}, "status": OrderStatus.DELIVERED.value}}

    daily_docs = await db.orders.aggregate([
        match,
        {"$group": {
            "_id": {
                "year": {"$year": "$created_at"},
                "month": {"$month": "$created_at"},
                "day": {"$dayOfMonth": "$created_at"},
            },
            "revenue": {"$sum": "$total"},
            "order_count": {"$sum": 1},
        }},
        {"$sort": {"_id.year": 1, "_id.month": 1, "_id.day": 1}},
    ]).to_list(length=None)

    top_docs = await db.orders.aggregate([
        match,
        {"$unwind": "$items"},
        {"$group": {
            "_id": "$items.product_id",
            "name": {"$first": "$items.name"},
            "revenue": {"$sum": {"$multiply": ["$items.price", "$items.quantity"]}},
            "quantity": {"$sum": "$items.quantity"},
        }},
        {"$sort": {"revenue": -1}},
        {"$limit": 10},
    ]).to_list(length=None)

    daily = [
        DailyRevenue(
            date="{year:04d}-{month:02d}-{day:02d}".format(**doc["_id"]),
            revenue=to_decimal(round(doc["revenue"], 2)),
            order_count=doc["order_count"],
        )
        for doc in daily_docs
    ]
    return RevenueReport(
        range=range_,
        start=start,
        end=end,
        total_revenue=sum((d.revenue for d in daily), Decimal(0)),
        order_count=sum(d.order_count for d in daily),
        daily=daily,
        top_products=[
            TopProduct(
                product_id=doc["_id"],
                name=doc.get("name"),
                revenue=to_decimal(round(doc["revenue"], 2)),
                quantity=doc["quantity"],
            )
            for doc in top_docs
        ],
    )
