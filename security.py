import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database

from config import JWT_ALGO, JWT_EXPIRE_DAYS, JWT_SECRET
from database import get_db
from schemas import AuthUser
from utils import maybe_object_id

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def hash_password(password: str, salt: Optional[str] = None) -> tuple[str, str]:
    if not salt:
        salt = secrets.token_hex(16)
    h = hashlib.sha256((salt + password).encode()).hexdigest()
    return h, salt


def verify_password(password: str, salt: str, expected_hash: str) -> bool:
    h, _ = hash_password(password, salt)
    return secrets.compare_digest(h, expected_hash)


def create_token(user: dict) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=JWT_EXPIRE_DAYS)
    payload = {
        "userId": str(user["_id"]),
        "email": user["email"],
        "role": user.get("role", "customer"),
        "exp": exp,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.InvalidTokenError:
        # covers ExpiredSignatureError
        raise HTTPException(status_code=401, detail="Invalid or expired token")


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Database = Depends(get_db),
) -> AuthUser:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="No token provided. Please authenticate.")
    payload = decode_token(credentials.credentials)
    user_id = maybe_object_id(payload.get("userId"))
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    user = db["user"].find_one({"_id": user_id})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return AuthUser(id=str(user["_id"]), email=user["email"], name=user.get("name", ""), role=user.get("role", "customer"))


def require_role(*roles: str):
    def checker(user: AuthUser = Depends(get_current_user)) -> AuthUser:
        if user.role not in roles:
            logger.warning(f"User {user.id} with role {user.role} denied; needs one of {roles}")
            raise HTTPException(status_code=403, detail="You do not have permission to perform this action")
        return user

    return checker


require_admin = require_role("admin")
