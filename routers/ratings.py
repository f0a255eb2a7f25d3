import logging
from typing import List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from database import create_document, db, find_by_id, now_utc, pagination, serialize_document
from schemas import Rating
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()

NEWEST_FIRST = [("created_at", -1), ("_id", -1)]
HAS_REVIEW = {"review": {"$nin": [None, ""]}}


class RatingIn(BaseModel):
    product_id: str
    rating: int
    review: Optional[str] = None


class RatingUpdate(BaseModel):
    rating: Optional[int] = None
    review: Optional[str] = None


def check_rating_value(value: int):
    if value < 1 or value > 5:
        raise HTTPException(status_code=400, detail="Rating must be between 1 and 5")


def refresh_rating_stats(product_id: str) -> dict:
    """Recompute the denormalized rating aggregates stored on a product."""
    ratings = list(db["rating"].find({"product_id": product_id}, {"rating": 1, "review": 1}))
    total = len(ratings)
    stats = {
        "average_rating": round(sum(r["rating"] for r in ratings) / total, 2) if total else 0,
        "total_ratings": total,
        "total_reviews": sum(1 for r in ratings if r.get("review")),
    }
    if ObjectId.is_valid(product_id):
        db["product"].update_one({"_id": ObjectId(product_id)}, {"$set": stats})
    return stats


def present_ratings(docs: List[dict]) -> List[dict]:
    user_ids = [ObjectId(d["user_id"]) for d in docs if ObjectId.is_valid(d["user_id"])]
    product_ids = [ObjectId(d["product_id"]) for d in docs if ObjectId.is_valid(d["product_id"])]
    users = {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": user_ids}})}
    products = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": product_ids}})}

    out = []
    for doc in docs:
        rating = serialize_document(doc)
        user = users.get(rating["user_id"], {})
        product = products.get(rating["product_id"], {})
        rating.update({
            "full_name": user.get("full_name"),
            "email": user.get("email"),
            "product_name": product.get("name"),
            "product_image": product.get("image"),
            "has_description": bool(rating.get("review")),
        })
        out.append(rating)
    return out


def rating_page(filter_q: dict, page: int, limit: int) -> tuple:
    docs = db["rating"].find(filter_q).sort(NEWEST_FIRST).skip((page - 1) * limit).limit(limit)
    return present_ratings(list(docs)), db["rating"].count_documents(filter_q)


def average_rating(filter_q: dict) -> dict:
    result = list(db["rating"].aggregate([
        {"$match": filter_q},
        {"$group": {"_id": None, "average": {"$avg": "$rating"}, "count": {"$sum": 1}}},
    ]))
    if not result:
        return {"average": 0, "count": 0}
    return {"average": round(result[0]["average"] or 0, 2), "count": result[0]["count"]}


def require_owned_rating(rating_id: str, user: dict, action: str) -> dict:
    rating = find_by_id("rating", rating_id)
    if not rating:
        raise HTTPException(status_code=404, detail="Rating not found")
    if rating["user_id"] != str(user["_id"]):
        raise HTTPException(status_code=403, detail=f"Not authorized to {action} this rating")
    return rating


def latest_rating(user_id: str, product_id: str) -> Optional[dict]:
    docs = list(db["rating"].find({"user_id": user_id, "product_id": product_id}).sort(NEWEST_FIRST).limit(1))
    return present_ratings(docs)[0] if docs else None


# Rating management
@router.post("", status_code=201)
def create_rating(payload: RatingIn, user=Depends(get_current_user)):
    check_rating_value(payload.rating)
    if not find_by_id("product", payload.product_id):
        raise HTTPException(status_code=404, detail="Product not found")

    # several ratings from the same user on one product are allowed
    rating = Rating(
        user_id=str(user["_id"]),
        product_id=payload.product_id,
        rating=payload.rating,
        review=payload.review or None,
    )
    rating_id = create_document("rating", rating)
    refresh_rating_stats(payload.product_id)
    return {"success": True, "data": present_ratings([find_by_id("rating", rating_id)])[0]}


@router.get("")
def list_ratings(page: int = Query(1, ge=1), limit: int = Query(10, ge=1)):
    ratings, total = rating_page({}, page, limit)
    overall = average_rating({})
    return {
        "success": True,
        "data": ratings,
        "meta": {"average": overall["average"], "count": overall["count"]},
        "pagination": pagination(page, limit, total),
    }


@router.get("/me")
def my_ratings(page: int = Query(1, ge=1), limit: int = Query(10, ge=1), user=Depends(get_current_user)):
    ratings, total = rating_page({"user_id": str(user["_id"])}, page, limit)
    return {"success": True, "data": ratings, "pagination": pagination(page, limit, total)}


@router.put("/{rating_id}")
def update_rating(rating_id: str, payload: RatingUpdate, user=Depends(get_current_user)):
    current = require_owned_rating(rating_id, user, "update")
    if payload.rating is not None:
        check_rating_value(payload.rating)

    fields = {
        "rating": payload.rating if payload.rating is not None else current["rating"],
        "review": payload.review if payload.review is not None else current.get("review"),
        "updated_at": now_utc(),
    }
    db["rating"].update_one({"_id": current["_id"]}, {"$set": fields})
    refresh_rating_stats(current["product_id"])
    return {"success": True, "data": present_ratings([find_by_id("rating", rating_id)])[0]}


@router.delete("/{rating_id}")
def delete_rating(rating_id: str, user=Depends(get_current_user)):
    current = require_owned_rating(rating_id, user, "delete")

    db["rating"].delete_one({"_id": current["_id"]})
    refresh_rating_stats(current["product_id"])
    return {"success": True, "message": "Rating deleted successfully"}


# Product ratings
@router.get("/products/{product_id}/ratings")
def product_ratings(
    product_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    reviews_only: bool = False,
):
    filter_q = {"product_id": product_id}
    if reviews_only:
        filter_q.update(HAS_REVIEW)
    ratings, total = rating_page(filter_q, page, limit)
    summary = average_rating({"product_id": product_id})
    return {
        "success": True,
        "data": ratings,
        "meta": {
            "average": summary["average"],
            "count": summary["count"],
            "reviews_with_description": db["rating"].count_documents({"product_id": product_id, **HAS_REVIEW}),
        },
        "pagination": pagination(page, limit, total),
    }


@router.get("/products/{product_id}/reviews")
def product_reviews(product_id: str, page: int = Query(1, ge=1), limit: int = Query(10, ge=1)):
    reviews, total = rating_page({"product_id": product_id, **HAS_REVIEW}, page, limit)
    return {"success": True, "data": reviews, "pagination": pagination(page, limit, total)}


@router.get("/products/{product_id}/rating/check")
def check_user_rating(product_id: str, user=Depends(get_current_user)):
    latest = latest_rating(str(user["_id"]), product_id)
    return {"success": True, "data": {"has_rated": latest is not None, "latest_rating": latest}}


@router.get("/products/{product_id}/rating/latest")
def user_latest_rating(product_id: str, user=Depends(get_current_user)):
    return {"success": True, "data": latest_rating(str(user["_id"]), product_id)}


@router.get("/products/{product_id}/ratings/me")
def user_product_ratings(
    product_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    user=Depends(get_current_user),
):
    ratings, total = rating_page({"user_id": str(user["_id"]), "product_id": product_id}, page, limit)
    return {"success": True, "data": ratings, "pagination": pagination(page, limit, total)}
