"""Sales figures computed from the transaction collection."""
from datetime import date, datetime, time, timezone
from typing import Optional

from database import db, serialize_document
from schemas import TransactionStatus

REPORT_ROW_LIMIT = 1000
TOP_PRODUCTS_LIMIT = 20


def status_counts() -> list:
    rows = db["transaction"].aggregate([
        {"$group": {"_id": "$status", "count": {"$sum": 1}}},
        {"$sort": {"_id": 1}},
    ])
    return [{"status": row["_id"], "count": row["count"]} for row in rows]


def order_summary(match: dict) -> dict:
    rows = list(db["transaction"].aggregate([
        {"$match": match},
        {"$group": {
            "_id": None,
            "total_transactions": {"$sum": 1},
            "total_revenue": {"$sum": "$total_price"},
            "average_order_value": {"$avg": "$total_price"},
        }},
    ]))
    summary = {
        "total_transactions": 0,
        "total_revenue": 0,
        "average_order_value": 0,
        "total_customers": len(db["transaction"].distinct("user_id", match)),
    }
    if rows:
        summary["total_transactions"] = rows[0]["total_transactions"]
        summary["total_revenue"] = rows[0]["total_revenue"] or 0
        summary["average_order_value"] = round(rows[0]["average_order_value"] or 0, 2)
    return summary


def sales_stats() -> dict:
    return order_summary({"status": TransactionStatus.ACCEPT.value})


def report_filter(start_date: Optional[date], end_date: Optional[date], status: Optional[str]) -> dict:
    match = {}
    if start_date and end_date:
        match["created_at"] = {
            "$gte": datetime.combine(start_date, time.min, tzinfo=timezone.utc),
            "$lte": datetime.combine(end_date, time.max, tzinfo=timezone.utc),
        }
    if status and status != "all":
        match["status"] = TransactionStatus(status).value
    return match


def product_stats(match: dict) -> list:
    rows = db["transaction"].aggregate([
        {"$match": match},
        {"$unwind": "$items"},
        {"$group": {
            "_id": {"product_id": "$items.product_id", "product_name": "$items.product_name"},
            "quantity_sold": {"$sum": "$items.quantity"},
            "total_revenue": {"$sum": "$items.total_price"},
        }},
        {"$sort": {"total_revenue": -1}},
        {"$limit": TOP_PRODUCTS_LIMIT},
    ])
    return [
        {
            "product_id": row["_id"]["product_id"],
            "product_name": row["_id"]["product_name"],
            "quantity_sold": row["quantity_sold"],
            "total_revenue": row["total_revenue"],
        }
        for row in rows
    ]


def sales_report(start_date: Optional[date] = None, end_date: Optional[date] = None, status: Optional[str] = None) -> dict:
    match = report_filter(start_date, end_date, status)
    transactions = (
        db["transaction"].find(match).sort([("created_at", -1), ("_id", -1)]).limit(REPORT_ROW_LIMIT)
    )
    return {
        "summary": order_summary(match),
        "transactions": [serialize_document(t) for t in transactions],
        "product_stats": product_stats(match),
    }
