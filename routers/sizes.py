import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from database import create_document, db, find_by_id, get_documents, now_utc, pagination, serialize_document
from routers.products import present_products
from schemas import Size, SizeUnit
from security import get_current_admin

logger = logging.getLogger(__name__)

router = APIRouter()


class SizeIn(BaseModel):
    name: str
    unit: SizeUnit
    description: Optional[str] = None


class SizeUpdate(BaseModel):
    name: Optional[str] = None
    unit: Optional[SizeUnit] = None
    description: Optional[str] = None


def require_size(size_id: str) -> dict:
    size = find_by_id("size", size_id)
    if not size:
        raise HTTPException(status_code=404, detail="Size not found")
    return size


def active_size_filter(size_id: str) -> dict:
    return {"sizes": {"$elemMatch": {"size_id": size_id, "is_active": True}}}


def ensure_unique_name(name: str, size_id=None):
    existing = db["size"].find_one({"name": name})
    if existing and existing["_id"] != size_id:
        raise HTTPException(status_code=400, detail="Size with this name already exists")


@router.get("")
def list_sizes():
    sizes = get_documents("size", sort=[("name", 1)])
    return {"success": True, "data": [serialize_document(s) for s in sizes]}


@router.get("/{size_id}")
def get_size(size_id: str):
    return {"success": True, "data": serialize_document(require_size(size_id))}


@router.get("/{size_id}/products")
def list_size_products(
    size_id: str,
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
):
    size = require_size(size_id)
    filter_q = {**active_size_filter(size_id), "is_active": True}

    docs = get_documents("product", filter_q, page, limit, sort=[("name", 1)])
    total = db["product"].count_documents(filter_q)

    products = present_products(request, docs)
    for product in products:
        entry = next(s for s in product["sizes"] if s["size_id"] == size_id)
        product["additional_price"] = entry["additional_price"]
        product["size_stock"] = entry["stock"]

    return {
        "success": True,
        "data": products,
        "size": serialize_document(size),
        "pagination": pagination(page, limit, total),
    }


@router.post("", status_code=201, dependencies=[Depends(get_current_admin)])
def create_size(payload: SizeIn):
    name = payload.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Please provide name and unit")
    ensure_unique_name(name)

    size_id = create_document("size", Size(name=name, unit=payload.unit, description=payload.description))
    logger.info("Created size %s", size_id)
    return {
        "success": True,
        "message": "Size created successfully",
        "data": serialize_document(find_by_id("size", size_id)),
    }


@router.put("/{size_id}", dependencies=[Depends(get_current_admin)])
def update_size(size_id: str, payload: SizeUpdate):
    fields = payload.model_dump(exclude_none=True)
    if not fields:
        raise HTTPException(status_code=400, detail="Please provide name, description or unit to update")

    size = require_size(size_id)
    if "name" in fields:
        ensure_unique_name(fields["name"], size["_id"])

    fields["updated_at"] = now_utc()
    db["size"].update_one({"_id": size["_id"]}, {"$set": fields})
    return {
        "success": True,
        "message": "Size updated successfully",
        "data": serialize_document(find_by_id("size", size_id)),
    }


@router.delete("/{size_id}", dependencies=[Depends(get_current_admin)])
def delete_size(size_id: str):
    size = require_size(size_id)
    if db["product"].count_documents(active_size_filter(size_id)):
        raise HTTPException(status_code=400, detail="Cannot delete size because it is used in active products")

    db["size"].delete_one({"_id": size["_id"]})
    logger.info("Deleted size %s", size_id)
    return {"success": True, "message": "Size deleted successfully"}
