import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile

from database import contains, create_document, db, find_by_id, get_documents, now_utc, pagination, serialize_document
from routers.products import list_products_page, product_filter
from schemas import Category
from security import get_current_admin
from uploads import absolute_url, delete_file, save_upload, with_image_url

logger = logging.getLogger(__name__)

router = APIRouter()


def present_category(request: Request, doc: dict) -> dict:
    category = serialize_document(doc)
    category["product_count"] = db["product"].count_documents({"category_id": category["id"]})
    return with_image_url(request, category)


def require_category(category_id: str) -> dict:
    category = find_by_id("category", category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


@router.get("")
def list_categories(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    search: str = "",
    active: bool = True,
):
    filter_q = {}
    if search:
        filter_q["$or"] = [{"name": contains(search)}, {"description": contains(search)}]
    if active:
        filter_q["is_active"] = True

    items = get_documents("category", filter_q, page, limit, sort=[("created_at", -1)])
    total = db["category"].count_documents(filter_q)
    return {
        "success": True,
        "data": [present_category(request, c) for c in items],
        "pagination": pagination(page, limit, total),
    }


@router.get("/{category_id}")
def get_category(category_id: str, request: Request):
    return {"success": True, "data": present_category(request, require_category(category_id))}


@router.get("/{category_id}/products")
def list_category_products(
    category_id: str,
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    active: bool = True,
):
    category = require_category(category_id)
    result = list_products_page(request, product_filter(category_id=category_id, active_only=active), page, limit)
    result["category"] = {
        "id": category_id,
        "name": category["name"],
        "description": category.get("description"),
        "image": absolute_url(request, category.get("image")),
    }
    return result


@router.post("", status_code=201, dependencies=[Depends(get_current_admin)])
def create_category(
    request: Request,
    name: str = Form(...),
    description: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
):
    name = name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Please provide category name")
    if db["category"].find_one({"name": name}):
        raise HTTPException(status_code=400, detail="Category already exists")

    image_path = save_upload(image, "categories")
    category_id = create_document("category", Category(name=name, description=description, image=image_path))
    logger.info("Created category %s", category_id)
    return {
        "success": True,
        "message": "Category created successfully",
        "data": present_category(request, find_by_id("category", category_id)),
    }


@router.put("/{category_id}", dependencies=[Depends(get_current_admin)])
def update_category(
    category_id: str,
    request: Request,
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    is_active: Optional[bool] = Form(None),
    image: Optional[UploadFile] = File(None),
):
    fields = {
        key: value
        for key, value in {"name": name, "description": description, "is_active": is_active}.items()
        if value is not None
    }
    if not fields and (image is None or not image.filename):
        raise HTTPException(status_code=400, detail="Please provide data to update")

    current = require_category(category_id)
    if name:
        existing = db["category"].find_one({"name": name})
        if existing and existing["_id"] != current["_id"]:
            raise HTTPException(status_code=400, detail="Category name already exists")

    image_path = save_upload(image, "categories")
    if image_path:
        fields["image"] = image_path

    fields["updated_at"] = now_utc()
    db["category"].update_one({"_id": current["_id"]}, {"$set": fields})
    if image_path and current.get("image"):
        delete_file(current["image"])

    return {
        "success": True,
        "message": "Category updated successfully",
        "data": present_category(request, find_by_id("category", category_id)),
    }


@router.delete("/{category_id}", dependencies=[Depends(get_current_admin)])
def delete_category(category_id: str):
    category = require_category(category_id)

    db["category"].delete_one({"_id": category["_id"]})
    delete_file(category.get("image"))
    logger.info("Deleted category %s", category_id)
    return {"success": True, "message": "Category deleted successfully"}
