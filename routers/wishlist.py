import logging

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from database import create_document, db, find_by_id, pagination
from routers.products import category_names
from schemas import Wishlist
from security import get_current_user
from uploads import absolute_url

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
def get_wishlist(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    user=Depends(get_current_user),
):
    user_id = str(user["_id"])
    entries = list(db["wishlist"].find({"user_id": user_id}).sort([("created_at", -1), ("_id", -1)]))
    ids = [ObjectId(e["product_id"]) for e in entries if ObjectId.is_valid(e["product_id"])]
    products = {
        str(p["_id"]): p
        for p in db["product"].find({"_id": {"$in": ids}, "is_active": True})
    }
    names = category_names(p.get("category_id") for p in products.values())

    # entries for deactivated products stay stored but are not listed
    visible = [e for e in entries if e["product_id"] in products]
    total = len(visible)
    start = (page - 1) * limit

    data = []
    for entry in visible[start:start + limit]:
        product = products[entry["product_id"]]
        data.append({
            "id": str(entry["_id"]),
            "user_id": entry["user_id"],
            "product_id": entry["product_id"],
            "created_at": entry.get("created_at"),
            "product_details": {
                "name": product["name"],
                "description": product.get("description"),
                "price": product["price"],
                "image": absolute_url(request, product.get("image")),
                "stock": product.get("stock", 0),
                "is_active": product["is_active"],
                "category_name": names.get(product.get("category_id")),
                "average_rating": product.get("average_rating", 0),
            },
        })

    return {"success": True, "data": data, "pagination": pagination(page, limit, total)}


@router.post("/{product_id}")
def add_to_wishlist(product_id: str, user=Depends(get_current_user)):
    product = find_by_id("product", product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    if not product.get("is_active"):
        raise HTTPException(status_code=400, detail="Product is not available")

    user_id = str(user["_id"])
    if db["wishlist"].find_one({"user_id": user_id, "product_id": product_id}):
        raise HTTPException(status_code=400, detail="Product already in wishlist")

    create_document("wishlist", Wishlist(user_id=user_id, product_id=product_id))
    return {"success": True, "message": "Product added to wishlist"}


@router.delete("/{product_id}")
def remove_from_wishlist(product_id: str, user=Depends(get_current_user)):
    result = db["wishlist"].delete_one({"user_id": str(user["_id"]), "product_id": product_id})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found in wishlist")
    return {"success": True, "message": "Product removed from wishlist"}


@router.get("/check/{product_id}")
def check_wishlist(product_id: str, user=Depends(get_current_user)):
    exists = db["wishlist"].count_documents({"user_id": str(user["_id"]), "product_id": product_id}) > 0
    return {"success": True, "in_wishlist": exists}
