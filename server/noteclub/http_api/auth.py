"""Token checks, password hashing and role guards shared by the handlers"""

import os
import bcrypt
from fastapi import HTTPException
from noteclub.db.documents import USER_PUBLIC_PROJECTION, now_iso

MIN_PASSWORD_LENGTH = 6


def verify_token(token: str):
    api_token = os.getenv("API_TOKEN")
    if not api_token or token != api_token:
        raise HTTPException(status_code=401, detail="Unauthorized")


def hash_password(password: str) -> str:
    """Hash password with bcrypt (cost 12)"""
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return bcrypt.checkpw(password.encode('utf-8'), hashed.encode('utf-8'))


def get_acting_user(db, user_id: str):
    """Load the member making the request, 401 when missing, 404 when unknown"""
    if not user_id:
        raise HTTPException(status_code=401, detail="user_id is required")
    user = db.users.find_one({"id": user_id}, USER_PUBLIC_PROJECTION)
    if not user:
        raise HTTPException(status_code=404, detail=f"User not found: {user_id}")
    return user


def require_role(user, *roles):
    if user.get("role", "member") not in roles:
        raise HTTPException(status_code=403, detail="Insufficient permissions")


def require_admin(db, user_id: str):
    user = get_acting_user(db, user_id)
    require_role(user, "admin")
    return user


def is_admin(user) -> bool:
    return user.get("role") == "admin"


def set_password(db, query, new_password: str) -> bool:
    """Store a fresh bcrypt hash for the user matching ``query``; False when nobody matches.

    Raises ValueError when the password is too short.
    """
    if not isinstance(new_password, str) or len(new_password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    result = db.users.update_one(
        query,
        {"$set": {"password_hash": hash_password(new_password), "updated_at": now_iso()}}
    )
    return result.matched_count == 1
