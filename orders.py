"""
Order lifecycle: building line items and moving a transaction between statuses.

Status flow::

    menunggu pembayaran -> waiting -> accept | reject

``accept`` and ``reject`` are final. Stock is only checked when an order is
placed and is taken from the products when an admin accepts it. The accept
step claims the status with a conditional update, then decrements each
product with ``stock >= quantity`` as part of the filter. If any item is
short, the decrements already applied are put back and the status is
restored, so the order and the catalog are left as they were.
"""
import logging
from collections import OrderedDict
from typing import Iterable, List, Tuple

from bson import ObjectId
from fastapi import HTTPException

from database import db, find_by_id, now_utc
from schemas import TransactionItem, TransactionStatus

logger = logging.getLogger(__name__)


class InsufficientStockError(Exception):
    def __init__(self, product_name: str):
        self.product_name = product_name
        super().__init__(f"Insufficient stock for product: {product_name}")


def build_items(requested: Iterable[Tuple[str, int]]) -> List[TransactionItem]:
    """Price the requested ``(product_id, quantity)`` pairs against current products.

    Repeated products are merged. Raises 404 for unknown products and
    InsufficientStockError when current stock cannot cover the quantity.
    """
    quantities = OrderedDict()
    for product_id, quantity in requested:
        quantities[product_id] = quantities.get(product_id, 0) + quantity

    items = []
    for product_id, quantity in quantities.items():
        product = find_by_id("product", product_id)
        if not product:
            raise HTTPException(status_code=404, detail=f"Product with ID {product_id} not found")
        if product.get("stock", 0) < quantity:
            raise InsufficientStockError(product["name"])
        items.append(TransactionItem(
            product_id=product_id,
            product_name=product["name"],
            quantity=quantity,
            price_per_unit=product["price"],
            total_price=product["price"] * quantity,
        ))
    return items


def order_totals(items: List[TransactionItem]) -> dict:
    return {
        "total_items": len(items),
        "total_quantity": sum(i.quantity for i in items),
        "total_price": sum(i.total_price for i in items),
    }


def _restore_stock(applied: List[dict]):
    for item in applied:
        db["product"].update_one(
            {"_id": ObjectId(item["product_id"])},
            {"$inc": {"stock": item["quantity"]}},
        )


def take_stock(items: List[dict]):
    """Decrement stock for every line item, or for none of them."""
    applied = []
    for item in items:
        if not ObjectId.is_valid(item["product_id"]):
            continue
        product_oid = ObjectId(item["product_id"])
        result = db["product"].update_one(
            {"_id": product_oid, "stock": {"$gte": item["quantity"]}},
            {"$inc": {"stock": -item["quantity"]}, "$set": {"updated_at": now_utc()}},
        )
        if result.matched_count:
            applied.append(item)
            continue
        # products removed from the catalog since ordering have nothing to give back
        if db["product"].count_documents({"_id": product_oid}) == 0:
            continue
        _restore_stock(applied)
        raise InsufficientStockError(item["product_name"])


def parse_status(value) -> TransactionStatus:
    try:
        return TransactionStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in TransactionStatus)
        raise HTTPException(status_code=400, detail=f"Valid status is required ({allowed})")


def change_status(transaction: dict, new_status: TransactionStatus) -> dict:
    """Move ``transaction`` to ``new_status`` and return the updated document."""
    current = TransactionStatus(transaction["status"])
    if current.is_terminal:
        raise HTTPException(
            status_code=400,
            detail=f"Transaction is already '{current.value}' and its status cannot be changed",
        )
    if current == new_status:
        raise HTTPException(status_code=400, detail=f"Transaction is already '{current.value}'")

    claimed = db["transaction"].find_one_and_update(
        {"_id": transaction["_id"], "status": current.value},
        {"$set": {"status": new_status.value, "updated_at": now_utc()}},
    )
    if claimed is None:
        raise HTTPException(status_code=400, detail="Transaction status was changed by another request")

    if new_status == TransactionStatus.ACCEPT:
        try:
            take_stock(claimed.get("items", []))
        except Exception:
            # take_stock has already put back its own decrements
            db["transaction"].update_one(
                {"_id": transaction["_id"], "status": new_status.value},
                {"$set": {"status": current.value, "updated_at": now_utc()}},
            )
            logger.warning("Accepting transaction %s failed, status restored", transaction["_id"])
            raise

    logger.info("Transaction %s: %s -> %s", transaction["_id"], current.value, new_status.value)
    return db["transaction"].find_one({"_id": transaction["_id"]})
