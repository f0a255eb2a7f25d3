"""
Account endpoints for both auth domains.

Customers live in the ``user`` collection and admins in ``admin``. The two
domains expose the same register/login/password flows, built by
``make_auth_router``. Customer user management is added on top.
"""
import logging
import random
from datetime import timedelta
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, EmailStr

from config import MIN_PASSWORD_LENGTH, RESET_CODE_EXPIRE_MINUTES
from database import as_utc, contains, create_document, db, find_by_id, now_utc, pagination
from schemas import Admin, User
from security import (
    ADMIN,
    CUSTOMER,
    ROLE_COLLECTIONS,
    create_role_token,
    get_current_admin,
    get_current_principal,
    get_current_user,
    get_password_hash,
    public_account,
    verify_password,
)

logger = logging.getLogger(__name__)


class RegisterBody(BaseModel):
    full_name: str
    email: EmailStr
    password: str
    confirm_password: str


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class ForgotPasswordBody(BaseModel):
    email: EmailStr


class ResetPasswordBody(BaseModel):
    password: str
    confirm_password: str


class UpdateDetailsBody(BaseModel):
    full_name: Optional[str] = None
    email: Optional[EmailStr] = None


class UpdatePasswordBody(BaseModel):
    current_password: str
    new_password: str
    confirm_password: str


def check_new_password(password: str, confirm_password: str):
    if password != confirm_password:
        raise HTTPException(status_code=400, detail="Passwords do not match")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
        )


def register_account(collection: str, payload: RegisterBody) -> dict:
    if not payload.full_name.strip():
        raise HTTPException(status_code=400, detail="Please fill in all fields")
    check_new_password(payload.password, payload.confirm_password)
    if db[collection].find_one({"email": payload.email}):
        raise HTTPException(status_code=400, detail="Email already registered")

    schema = Admin if collection == ROLE_COLLECTIONS[ADMIN] else User
    account = schema(
        full_name=payload.full_name.strip(),
        email=payload.email,
        password_hash=get_password_hash(payload.password),
    )
    account_id = create_document(collection, account)
    logger.info("Registered %s account %s", collection, account_id)
    return find_by_id(collection, account_id)


def _new_reset_code(collection: str) -> str:
    while True:
        code = str(random.randint(1000, 9999))
        if not db[collection].find_one({"reset_password_token": code}):
            return code


def make_auth_router(role: str, current: Callable) -> APIRouter:
    collection = ROLE_COLLECTIONS[role]
    key = "admin" if role == ADMIN else "user"
    label = "Admin" if role == ADMIN else "User"
    router = APIRouter()

    @router.post("/register", status_code=201)
    def register(payload: RegisterBody):
        register_account(collection, payload)
        return {"success": True, "message": f"{label} registered successfully"}

    @router.post("/login")
    def login(payload: LoginBody):
        account = db[collection].find_one({"email": payload.email})
        if not account or not verify_password(payload.password, account.get("password_hash")):
            raise HTTPException(status_code=401, detail="Invalid credentials")

        token = create_role_token(str(account["_id"]), role)
        return {"success": True, "token": token, key: public_account(account)}

    @router.get("/logout")
    def logout(account=Depends(current)):
        # tokens are stateless; the client discards its copy
        return {"success": True, "message": "Logged out successfully"}

    @router.get("/me")
    def me(account=Depends(current)):
        return {"success": True, key: public_account(account)}

    @router.put("/updatedetails")
    def update_details(payload: UpdateDetailsBody, account=Depends(current)):
        fields = payload.model_dump(exclude_none=True)
        if not fields:
            raise HTTPException(status_code=400, detail="Please provide fields to update")

        if "email" in fields:
            existing = db[collection].find_one({"email": fields["email"]})
            if existing and existing["_id"] != account["_id"]:
                raise HTTPException(status_code=400, detail="Email already in use")

        fields["updated_at"] = now_utc()
        db[collection].update_one({"_id": account["_id"]}, {"$set": fields})
        updated = db[collection].find_one({"_id": account["_id"]})
        return {"success": True, key: public_account(updated)}

    @router.put("/updatepassword")
    def update_password(payload: UpdatePasswordBody, account=Depends(current)):
        check_new_password(payload.new_password, payload.confirm_password)
        if not verify_password(payload.current_password, account.get("password_hash")):
            raise HTTPException(status_code=401, detail="Current password is incorrect")

        db[collection].update_one(
            {"_id": account["_id"]},
            {"$set": {"password_hash": get_password_hash(payload.new_password), "updated_at": now_utc()}},
        )
        return {"success": True, "message": "Password updated successfully"}

    @router.post("/forgotpassword")
    def forgot_password(payload: ForgotPasswordBody):
        account = db[collection].find_one({"email": payload.email})
        if not account:
            raise HTTPException(status_code=404, detail=f"{label} not found with this email")

        code = _new_reset_code(collection)
        db[collection].update_one(
            {"_id": account["_id"]},
            {"$set": {
                "reset_password_token": code,
                "reset_password_expire": now_utc() + timedelta(minutes=RESET_CODE_EXPIRE_MINUTES),
            }},
        )
        # no mail delivery, the code goes back to the caller
        return {"success": True, "message": "Password reset code sent to email", "reset_code": code}

    @router.put("/resetpassword/{reset_code}")
    def reset_password(reset_code: str, payload: ResetPasswordBody):
        check_new_password(payload.password, payload.confirm_password)

        account = db[collection].find_one({"reset_password_token": reset_code})
        expire = as_utc(account.get("reset_password_expire")) if account else None
        if not account or expire is None or expire <= now_utc():
            raise HTTPException(status_code=400, detail="Invalid or expired code")

        db[collection].update_one(
            {"_id": account["_id"]},
            {"$set": {
                "password_hash": get_password_hash(payload.password),
                "reset_password_token": None,
                "reset_password_expire": None,
                "updated_at": now_utc(),
            }},
        )
        return {"success": True, "message": "Password reset successful"}

    return router


router = make_auth_router(CUSTOMER, get_current_user)
admin_router = make_auth_router(ADMIN, get_current_admin)


# User management
@router.get("/users", dependencies=[Depends(get_current_admin)])
def list_users(page: int = Query(1, ge=1), limit: int = Query(10, ge=1), search: str = ""):
    filter_q = {}
    if search:
        pattern = contains(search)
        filter_q["$or"] = [{"full_name": pattern}, {"email": pattern}]

    users = db["user"].find(filter_q).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    total = db["user"].count_documents(filter_q)
    return {
        "success": True,
        "data": [public_account(u) for u in users],
        "pagination": pagination(page, limit, total),
    }


@router.get("/user/{user_id}")
def get_user(user_id: str, principal=Depends(get_current_principal)):
    if principal["role"] != ADMIN and str(principal["_id"]) != user_id:
        raise HTTPException(status_code=403, detail="Not authorized to access this user")

    user = find_by_id("user", user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True, "user": public_account(user)}


@router.delete("/user/{user_id}", dependencies=[Depends(get_current_admin)])
def delete_user(user_id: str):
    user = find_by_id("user", user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    db["user"].delete_one({"_id": user["_id"]})
    db["cartitem"].delete_many({"user_id": user_id})
    db["wishlist"].delete_many({"user_id": user_id})
    logger.info("Deleted user %s", user_id)
    return {"success": True, "message": "User deleted successfully"}


@router.post("/admin/create-user", status_code=201, dependencies=[Depends(get_current_admin)])
def create_user_by_admin(payload: RegisterBody):
    user = register_account("user", payload)
    return {"success": True, "message": "User created successfully", "user": public_account(user)}
