import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from pydantic import BaseModel, EmailStr, Field

import reports
from database import create_document, db, find_by_id, now_utc, pagination, serialize_document
from orders import build_items, change_status, order_totals, parse_status
from schemas import Transaction, TransactionStatus
from security import ADMIN, get_current_admin, get_current_principal, get_current_user
from uploads import absolute_url, delete_file, save_upload

logger = logging.getLogger(__name__)

router = APIRouter()

NEWEST_FIRST = [("created_at", -1), ("_id", -1)]


class CustomerInfo(BaseModel):
    customer_name: str
    customer_email: EmailStr
    customer_phone: str
    customer_address: str
    notes: Optional[str] = ""


class SingleOrderIn(CustomerInfo):
    product_id: str
    quantity: int = Field(..., ge=1)


class OrderItemIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class CartOrderIn(CustomerInfo):
    items: List[OrderItemIn] = []


class StatusIn(BaseModel):
    status: str


def present_transaction(request: Request, doc: dict) -> dict:
    transaction = serialize_document(doc)
    transaction["payment_proof"] = absolute_url(request, transaction.get("payment_proof"))
    return transaction


def require_transaction(transaction_id: str) -> dict:
    transaction = find_by_id("transaction", transaction_id)
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return transaction


def check_customer(payload: CustomerInfo):
    if not all(v.strip() for v in (payload.customer_name, payload.customer_phone, payload.customer_address)):
        raise HTTPException(status_code=400, detail="Please provide all required customer information")


def place_order(user: dict, payload: CustomerInfo, items) -> str:
    transaction = Transaction(
        user_id=str(user["_id"]),
        customer_name=payload.customer_name.strip(),
        customer_email=payload.customer_email,
        customer_phone=payload.customer_phone.strip(),
        customer_address=payload.customer_address.strip(),
        notes=payload.notes or "",
        items=items,
        **order_totals(items),
    )
    transaction_id = create_document("transaction", transaction)
    logger.info("Transaction %s created by user %s", transaction_id, user["_id"])
    return transaction_id


def transaction_page(request: Request, filter_q: dict, page: int, limit: int) -> dict:
    docs = db["transaction"].find(filter_q).sort(NEWEST_FIRST).skip((page - 1) * limit).limit(limit)
    total = db["transaction"].count_documents(filter_q)
    return {
        "success": True,
        "data": [present_transaction(request, t) for t in docs],
        "pagination": pagination(page, limit, total),
    }


# Customer endpoints
@router.post("", status_code=201)
def create_transaction(payload: SingleOrderIn, request: Request, user=Depends(get_current_user)):
    check_customer(payload)
    items = build_items([(payload.product_id, payload.quantity)])

    transaction_id = place_order(user, payload, items)
    return {
        "success": True,
        "message": "Transaction created successfully",
        "data": present_transaction(request, find_by_id("transaction", transaction_id)),
    }


@router.post("/cart", status_code=201)
def create_transaction_from_cart(payload: CartOrderIn, request: Request, user=Depends(get_current_user)):
    if not payload.items:
        raise HTTPException(status_code=400, detail="Cart items are required")
    check_customer(payload)
    items = build_items([(i.product_id, i.quantity) for i in payload.items])

    transaction_id = place_order(user, payload, items)
    db["cartitem"].delete_many({
        "user_id": str(user["_id"]),
        "product_id": {"$in": [i.product_id for i in items]},
    })
    return {
        "success": True,
        "message": "Transaction created successfully from cart",
        "data": present_transaction(request, find_by_id("transaction", transaction_id)),
    }


@router.post("/{transaction_id}/payment-proof")
def upload_payment_proof(
    transaction_id: str,
    request: Request,
    payment_proof: Optional[UploadFile] = File(None),
    user=Depends(get_current_user),
):
    transaction = require_transaction(transaction_id)
    if transaction["user_id"] != str(user["_id"]):
        raise HTTPException(status_code=403, detail="Not authorized to update this transaction")
    if transaction["status"] != TransactionStatus.AWAITING_PAYMENT.value:
        raise HTTPException(
            status_code=400,
            detail="Payment proof can only be uploaded for transactions waiting for payment",
        )
    if payment_proof is None or not payment_proof.filename:
        raise HTTPException(status_code=400, detail="Payment proof file is required")

    proof_path = save_upload(payment_proof, "payment-proofs")
    result = db["transaction"].update_one(
        {"_id": transaction["_id"], "status": TransactionStatus.AWAITING_PAYMENT.value},
        {"$set": {
            "payment_proof": proof_path,
            "status": TransactionStatus.WAITING.value,
            "updated_at": now_utc(),
        }},
    )
    if result.modified_count == 0:
        delete_file(proof_path)
        raise HTTPException(status_code=400, detail="Failed to update payment proof")
    delete_file(transaction.get("payment_proof"))

    logger.info("Payment proof uploaded for transaction %s", transaction_id)
    return {
        "success": True,
        "message": "Payment proof uploaded successfully",
        "data": present_transaction(request, find_by_id("transaction", transaction_id)),
    }


@router.get("/user")
def get_user_transactions(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    user=Depends(get_current_user),
):
    return transaction_page(request, {"user_id": str(user["_id"])}, page, limit)


# Admin endpoints
@router.get("", dependencies=[Depends(get_current_admin)])
def get_all_transactions(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    status: Optional[str] = None,
):
    filter_q = {}
    if status and status != "all":
        filter_q["status"] = parse_status(status).value
    return transaction_page(request, filter_q, page, limit)


@router.get("/stats/overview", dependencies=[Depends(get_current_admin)])
def get_transaction_stats():
    return {
        "success": True,
        "data": {"status_counts": reports.status_counts(), "sales_stats": reports.sales_stats()},
    }


@router.get("/stats/sales-report", dependencies=[Depends(get_current_admin)])
def get_sales_report(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    status: Optional[str] = None,
):
    if status and status != "all":
        parse_status(status)
    return {"success": True, "data": reports.sales_report(start_date, end_date, status)}


@router.get("/{transaction_id}")
def get_transaction(transaction_id: str, request: Request, principal=Depends(get_current_principal)):
    transaction = require_transaction(transaction_id)
    if transaction["user_id"] != str(principal["_id"]) and principal["role"] != ADMIN:
        raise HTTPException(status_code=403, detail="Not authorized to access this transaction")
    return {"success": True, "data": present_transaction(request, transaction)}


@router.put("/{transaction_id}/status", dependencies=[Depends(get_current_admin)])
def update_transaction_status(transaction_id: str, payload: StatusIn, request: Request):
    new_status = parse_status(payload.status)
    transaction = require_transaction(transaction_id)

    updated = change_status(transaction, new_status)
    return {
        "success": True,
        "message": "Transaction status updated successfully",
        "data": present_transaction(request, updated),
    }


@router.delete("/{transaction_id}", dependencies=[Depends(get_current_admin)])
def delete_transaction(transaction_id: str):
    transaction = require_transaction(transaction_id)

    # line items are embedded, so they go with the header
    result = db["transaction"].delete_one({"_id": transaction["_id"]})
    if result.deleted_count == 0:
        raise HTTPException(status_code=400, detail="Failed to delete transaction")

    payment_proof = transaction.get("payment_proof")
    delete_file(payment_proof)
    logger.info("Deleted transaction %s", transaction_id)
    return {
        "success": True,
        "message": "Transaction deleted successfully",
        "payment_proof": payment_proof,
    }
