import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY
from database import find_by_id

logger = logging.getLogger(__name__)

CUSTOMER = "customer"
ADMIN = "admin"

# role -> collection holding that principal
ROLE_COLLECTIONS = {CUSTOMER: "user", ADMIN: "admin"}

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login", auto_error=False)
admin_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/admin/auth/login", auto_error=False)


def verify_password(plain_password, hashed_password):
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def create_role_token(principal_id: str, role: str) -> str:
    return create_access_token({"sub": principal_id, "role": role})


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_token(token: Optional[str]) -> dict:
    if not token:
        raise _unauthorized("Not authorized, no token provided")
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except JWTError:
        raise _unauthorized("Invalid token")


def load_principal(payload: dict, role: str) -> dict:
    """Resolve a decoded token against the collection for ``role``."""
    principal_id = payload.get("sub")
    if principal_id is None or payload.get("role") != role:
        raise _unauthorized("Invalid token")

    principal = find_by_id(ROLE_COLLECTIONS[role], principal_id)
    if not principal:
        label = "Admin" if role == ADMIN else "User"
        raise HTTPException(status_code=404, detail=f"{label} not found")
    principal["role"] = role
    return principal


async def get_current_user(token: Optional[str] = Depends(oauth2_scheme)):
    return load_principal(decode_token(token), CUSTOMER)


async def get_current_admin(token: Optional[str] = Depends(admin_oauth2_scheme)):
    return load_principal(decode_token(token), ADMIN)


async def get_current_principal(token: Optional[str] = Depends(oauth2_scheme)):
    """Customer or admin, whichever the token was issued for."""
    payload = decode_token(token)
    role = payload.get("role")
    if role not in ROLE_COLLECTIONS:
        raise _unauthorized("Invalid token")
    return load_principal(payload, role)


def public_account(doc: dict) -> dict:
    return {
        "id": str(doc["_id"]),
        "full_name": doc.get("full_name"),
        "email": doc.get("email"),
        "created_at": doc.get("created_at"),
        "updated_at": doc.get("updated_at"),
    }
