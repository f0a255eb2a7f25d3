import json
import logging
from typing import Dict, Iterable, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from pydantic import BaseModel, ValidationError

from database import contains, create_document, db, find_by_id, get_documents, now_utc, pagination, serialize_document
from schemas import Product, ProductSize
from security import get_current_admin
from uploads import delete_file, save_upload, with_image_url

logger = logging.getLogger(__name__)

router = APIRouter()

SIZE_NEGATIVE_MESSAGES = {
    "additional_price": "Additional price cannot be negative",
    "stock": "Size stock cannot be negative",
}


class StockIn(BaseModel):
    stock: int


# Helpers shared with the category and size routers

def category_names(category_ids: Iterable[str]) -> Dict[str, str]:
    ids = [ObjectId(cid) for cid in set(category_ids) if cid and ObjectId.is_valid(cid)]
    return {str(c["_id"]): c["name"] for c in db["category"].find({"_id": {"$in": ids}})}


def size_details(size_ids: Iterable[str]) -> Dict[str, dict]:
    ids = [ObjectId(sid) for sid in set(size_ids) if sid and ObjectId.is_valid(sid)]
    return {str(s["_id"]): s for s in db["size"].find({"_id": {"$in": ids}})}


def present_products(request: Request, docs: List[dict]) -> List[dict]:
    """Serialize products with category name, active size details and absolute image URL."""
    names = category_names(d.get("category_id") for d in docs)
    sizes = size_details(s["size_id"] for d in docs for s in d.get("sizes", []))

    out = []
    for doc in docs:
        product = serialize_document(doc)
        product["category_name"] = names.get(product.get("category_id"))
        active_sizes = []
        for entry in product.get("sizes", []):
            size = sizes.get(entry["size_id"])
            if not entry.get("is_active") or not size:
                continue
            active_sizes.append({
                **entry,
                "name": size["name"],
                "description": size.get("description"),
                "unit": size["unit"],
            })
        product["sizes"] = sorted(active_sizes, key=lambda s: s["name"])
        out.append(with_image_url(request, product))
    return out


def present_product(request: Request, doc: dict) -> dict:
    return present_products(request, [doc])[0]


def inactive_category_ids() -> List[str]:
    return [str(c["_id"]) for c in db["category"].find({"is_active": False}, {"_id": 1})]


def product_filter(
    search: str = "",
    category_id: Optional[str] = None,
    active_only: bool = True,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
) -> dict:
    conditions = []
    if search:
        conditions.append({"$or": [{"name": contains(search)}, {"description": contains(search)}]})
    if category_id:
        conditions.append({"category_id": category_id})
    price_cond = {}
    if min_price is not None:
        price_cond["$gte"] = min_price
    if max_price is not None:
        price_cond["$lte"] = max_price
    if price_cond:
        conditions.append({"price": price_cond})
    if active_only:
        conditions.append({"is_active": True})
        conditions.append({"category_id": {"$nin": inactive_category_ids()}})

    if not conditions:
        return {}
    return conditions[0] if len(conditions) == 1 else {"$and": conditions}


def list_products_page(request: Request, filter_q: dict, page: int, limit: int) -> dict:
    docs = get_documents("product", filter_q, page, limit, sort=[("created_at", -1)])
    total = db["product"].count_documents(filter_q)
    return {
        "success": True,
        "data": present_products(request, docs),
        "pagination": pagination(page, limit, total),
    }


def parse_sizes(raw: Optional[str]) -> Optional[List[dict]]:
    if raw is None or raw == "":
        return None
    try:
        entries = json.loads(raw)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Sizes must be a JSON list")
    if not isinstance(entries, list):
        raise HTTPException(status_code=400, detail="Sizes must be a JSON list")

    sizes = []
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("size_id"):
            raise HTTPException(status_code=400, detail="Each size must have a size_id")
        try:
            size = ProductSize(
                size_id=str(entry["size_id"]),
                additional_price=entry.get("additional_price") or 0,
                stock=entry.get("stock") or 0,
            )
        except ValidationError as e:
            error = e.errors()[0]
            field = error["loc"][0] if error["loc"] else ""
            if error["type"] == "greater_than_equal":
                detail = SIZE_NEGATIVE_MESSAGES.get(field, "Invalid size entry")
            else:
                detail = f"Invalid {field} for size {entry['size_id']}"
            raise HTTPException(status_code=400, detail=detail)
        if not find_by_id("size", size.size_id):
            raise HTTPException(status_code=400, detail=f"Size not found: {size.size_id}")
        sizes.append(size.model_dump())
    return sizes


def merge_sizes(current: List[dict], incoming: List[dict]) -> List[dict]:
    """Soft-deactivate sizes that are not listed, reactivate or add the listed ones."""
    merged = {s["size_id"]: {**s, "is_active": False} for s in current}
    for size in incoming:
        merged[size["size_id"]] = {**size, "is_active": True}
    return list(merged.values())


def require_category(category_id: str) -> dict:
    category = find_by_id("category", category_id)
    if not category:
        raise HTTPException(status_code=400, detail="Category not found")
    return category


def require_product(product_id: str) -> dict:
    product = find_by_id("product", product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


# Product endpoints
@router.get("")
def list_products(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    search: str = "",
    category_id: Optional[str] = None,
    category: Optional[str] = None,
    active: bool = True,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
):
    if category:
        named = db["category"].find_one({"name": category})
        if named:
            category_id = str(named["_id"])

    filter_q = product_filter(search, category_id, active, min_price, max_price)
    return list_products_page(request, filter_q, page, limit)


@router.get("/{product_id}")
def get_product(product_id: str, request: Request):
    product = require_product(product_id)
    return {"success": True, "data": present_product(request, product)}


@router.post("", status_code=201, dependencies=[Depends(get_current_admin)])
def create_product(
    request: Request,
    category_id: str = Form(...),
    name: str = Form(...),
    price: float = Form(...),
    description: Optional[str] = Form(None),
    stock: int = Form(0),
    sizes: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
):
    if not name.strip():
        raise HTTPException(status_code=400, detail="Please provide category, name, and price")
    if price < 0:
        raise HTTPException(status_code=400, detail="Price cannot be negative")
    if stock < 0:
        raise HTTPException(status_code=400, detail="Stock cannot be negative")
    parsed_sizes = parse_sizes(sizes) or []
    require_category(category_id)

    image_path = save_upload(image, "products")
    product = Product(
        category_id=category_id,
        name=name.strip(),
        description=description,
        price=price,
        image=image_path,
        stock=stock,
        sizes=parsed_sizes,
    )
    product_id = create_document("product", product)
    logger.info("Created product %s", product_id)
    return {
        "success": True,
        "message": "Product created successfully",
        "data": present_product(request, find_by_id("product", product_id)),
    }


@router.put("/{product_id}", dependencies=[Depends(get_current_admin)])
def update_product(
    product_id: str,
    request: Request,
    category_id: Optional[str] = Form(None),
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[float] = Form(None),
    stock: Optional[int] = Form(None),
    is_active: Optional[bool] = Form(None),
    sizes: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
):
    fields = {
        key: value
        for key, value in {
            "category_id": category_id,
            "name": name,
            "description": description,
            "price": price,
            "stock": stock,
            "is_active": is_active,
        }.items()
        if value is not None
    }
    has_image = image is not None and bool(image.filename)
    if not fields and sizes is None and not has_image:
        raise HTTPException(status_code=400, detail="Please provide data to update")
    if price is not None and price < 0:
        raise HTTPException(status_code=400, detail="Price cannot be negative")
    if stock is not None and stock < 0:
        raise HTTPException(status_code=400, detail="Stock cannot be negative")

    current = require_product(product_id)
    parsed_sizes = parse_sizes(sizes)
    if category_id:
        require_category(category_id)

    if parsed_sizes is not None:
        fields["sizes"] = merge_sizes(current.get("sizes", []), parsed_sizes)
    image_path = save_upload(image, "products")
    if image_path:
        fields["image"] = image_path

    fields["updated_at"] = now_utc()
    db["product"].update_one({"_id": current["_id"]}, {"$set": fields})
    if image_path and current.get("image"):
        delete_file(current["image"])

    return {
        "success": True,
        "message": "Product updated successfully",
        "data": present_product(request, find_by_id("product", product_id)),
    }


@router.delete("/{product_id}", dependencies=[Depends(get_current_admin)])
def delete_product(product_id: str):
    product = require_product(product_id)

    db["product"].delete_one({"_id": product["_id"]})
    for collection in ("cartitem", "wishlist", "rating"):
        db[collection].delete_many({"product_id": product_id})
    delete_file(product.get("image"))
    logger.info("Deleted product %s", product_id)
    return {"success": True, "message": "Product deleted successfully"}


@router.patch("/{product_id}/stock", dependencies=[Depends(get_current_admin)])
def update_product_stock(product_id: str, payload: StockIn):
    if payload.stock < 0:
        raise HTTPException(status_code=400, detail="Please provide valid stock value")
    product = require_product(product_id)

    db["product"].update_one(
        {"_id": product["_id"]},
        {"$set": {"stock": payload.stock, "updated_at": now_utc()}},
    )
    return {"success": True, "message": "Product stock updated successfully"}


@router.patch("/{product_id}/sizes/{size_id}/stock", dependencies=[Depends(get_current_admin)])
def update_product_size_stock(product_id: str, size_id: str, payload: StockIn):
    if payload.stock < 0:
        raise HTTPException(status_code=400, detail="Please provide valid stock value")
    product = require_product(product_id)

    sizes = product.get("sizes", [])
    if not any(s["size_id"] == size_id for s in sizes):
        raise HTTPException(status_code=404, detail="Size not found for this product")
    for size in sizes:
        if size["size_id"] == size_id:
            size["stock"] = payload.stock

    db["product"].update_one(
        {"_id": product["_id"]},
        {"$set": {"sizes": sizes, "updated_at": now_utc()}},
    )
    return {"success": True, "message": "Product size stock updated successfully"}
