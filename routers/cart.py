import logging
from typing import List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from database import create_document, db, find_by_id, now_utc
from routers.products import category_names
from schemas import CartItem
from security import get_current_user
from uploads import absolute_url

logger = logging.getLogger(__name__)

router = APIRouter()


class QuantityIn(BaseModel):
    quantity: int = 1


class QuantityUpdate(BaseModel):
    quantity: int


def available_product(product_id: str) -> dict:
    product = find_by_id("product", product_id)
    if not product or not product.get("is_active"):
        raise HTTPException(status_code=404, detail="Product not found or not available")
    return product


def cart_lines(user_id: str) -> List[dict]:
    """Cart items of active products joined with product details, newest first."""
    items = list(db["cartitem"].find({"user_id": user_id}).sort([("created_at", -1), ("_id", -1)]))
    ids = [ObjectId(i["product_id"]) for i in items if ObjectId.is_valid(i["product_id"])]
    products = {
        str(p["_id"]): p
        for p in db["product"].find({"_id": {"$in": ids}, "is_active": True})
    }
    names = category_names(p.get("category_id") for p in products.values())

    lines = []
    for item in items:
        product = products.get(item["product_id"])
        if not product:
            continue
        lines.append({
            "id": str(item["_id"]),
            "user_id": item["user_id"],
            "product_id": item["product_id"],
            "quantity": item["quantity"],
            "created_at": item.get("created_at"),
            "updated_at": item.get("updated_at"),
            "product_details": {
                "name": product["name"],
                "price": product["price"],
                "image": product.get("image"),
                "stock": product.get("stock", 0),
                "is_active": product["is_active"],
                "category_name": names.get(product.get("category_id")),
            },
        })
    return lines


def cart_summary(lines: List[dict]) -> dict:
    return {
        "item_count": len(lines),
        "total_quantity": sum(line["quantity"] for line in lines),
        "total_price": sum(line["quantity"] * line["product_details"]["price"] for line in lines),
    }


@router.get("")
def get_cart(request: Request, user=Depends(get_current_user)):
    lines = cart_lines(str(user["_id"]))
    summary = cart_summary(lines)
    for line in lines:
        details = line["product_details"]
        details["image"] = absolute_url(request, details["image"])
    return {"success": True, "data": lines, "summary": summary}


@router.get("/summary")
def get_cart_summary(user=Depends(get_current_user)):
    return {"success": True, "data": cart_summary(cart_lines(str(user["_id"])))}


@router.post("/{product_id}")
def add_to_cart(product_id: str, payload: Optional[QuantityIn] = None, user=Depends(get_current_user)):
    payload = payload or QuantityIn()
    if payload.quantity <= 0:
        raise HTTPException(status_code=400, detail="Quantity must be greater than 0")

    product = available_product(product_id)
    stock = product.get("stock", 0)
    if stock < payload.quantity:
        raise HTTPException(status_code=400, detail="Insufficient stock")

    user_id = str(user["_id"])
    existing = db["cartitem"].find_one({"user_id": user_id, "product_id": product_id})
    if existing:
        quantity = existing["quantity"] + payload.quantity
        if quantity > stock:
            raise HTTPException(status_code=400, detail="Insufficient stock for the requested quantity")
        db["cartitem"].update_one(
            {"_id": existing["_id"]},
            {"$set": {"quantity": quantity, "updated_at": now_utc()}},
        )
        action = "updated"
    else:
        quantity = payload.quantity
        create_document("cartitem", CartItem(user_id=user_id, product_id=product_id, quantity=quantity))
        action = "added"

    return {
        "success": True,
        "message": f"Product {action} to cart",
        "action": action,
        "quantity": quantity,
    }


@router.put("/{product_id}")
def update_cart_item(product_id: str, payload: QuantityUpdate, user=Depends(get_current_user)):
    if payload.quantity < 0:
        raise HTTPException(status_code=400, detail="Valid quantity is required")

    user_id = str(user["_id"])
    if payload.quantity == 0:
        db["cartitem"].delete_one({"user_id": user_id, "product_id": product_id})
        return {"success": True, "message": "Product removed from cart", "action": "removed"}

    product = available_product(product_id)
    if payload.quantity > product.get("stock", 0):
        raise HTTPException(status_code=400, detail="Insufficient stock")

    result = db["cartitem"].update_one(
        {"user_id": user_id, "product_id": product_id},
        {"$set": {"quantity": payload.quantity, "updated_at": now_utc()}},
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="Cart item not found")

    return {
        "success": True,
        "message": "Cart item updated",
        "action": "updated",
        "quantity": payload.quantity,
    }


@router.delete("/{product_id}")
def remove_from_cart(product_id: str, user=Depends(get_current_user)):
    result = db["cartitem"].delete_one({"user_id": str(user["_id"]), "product_id": product_id})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found in cart")
    return {"success": True, "message": "Product removed from cart"}


@router.delete("")
def clear_cart(user=Depends(get_current_user)):
    result = db["cartitem"].delete_many({"user_id": str(user["_id"])})
    return {"success": True, "message": "Cart cleared successfully", "cleared_items": result.deleted_count}
