import re
import logging
from fastapi import Request, Query, HTTPException
from typing import Optional, Dict, Any, List
from pydantic import BaseModel
from noteclub.db.connection import get_database
from noteclub.db.documents import (
    new_id, now_iso, SCHEMA_VERSION, USER_PUBLIC_PROJECTION,
)
from noteclub.http_api.auth import (
    verify_token, hash_password, verify_password, get_acting_user, require_admin, set_password,
    MIN_PASSWORD_LENGTH,
)

logger = logging.getLogger(__name__)

USERNAME_RE = re.compile(r'^[a-z0-9_]{2,30}$')
EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
SPOTIFY_PROFILE_RE = re.compile(r'^https://(open\.)?spotify\.com/user/')

# Fields a member may change on their own profile
EDITABLE_PROFILE_FIELDS = {"name", "image", "bio", "location", "favorite_genres", "music_platforms", "notification_settings"}


# Pydantic models for request/response
class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    username: str
    name: str
    email: str
    password: str


class LoginResponse(BaseModel):
    success: bool
    user_id: Optional[str] = None
    username: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    message: Optional[str] = None


def get_db():
    return get_database()


def new_user_document(username: str, name: str, email: str, password_hash: Optional[str]) -> Dict[str, Any]:
    now = now_iso()
    return {
        "schema_version": SCHEMA_VERSION,
        "id": new_id(),
        "username": username,
        "name": name,
        "email": email,
        "password_hash": password_hash,
        "image": None,
        "bio": "",
        "location": "",
        "favorite_genres": [],
        "music_platforms": {},
        "role": "member",
        "is_active": True,
        "stats": {
            "albums_posted": 0,
            "comments_posted": 0,
            "likes_given": 0,
            "likes_received": 0,
        },
        "last_post_date": None,
        "notification_settings": {
            "new_themes": True,
            "turn_reminders": True,
            "new_albums": True,
            "comments": True,
            "likes": True,
        },
        "groups": [],
        "created_at": now,
        "updated_at": now,
        "last_login": None,
    }


# API Endpoints
async def login_handler(request: Request, login_data: LoginRequest):
    """Authenticate user with email and password"""
    try:
        db = get_db()
        user = db.users.find_one({"email": login_data.email.strip().lower()}, {"_id": 0})

        if not user:
            raise HTTPException(status_code=401, detail="Invalid email or password")

        if not verify_password(login_data.password, user.get('password_hash')):
            raise HTTPException(status_code=401, detail="Invalid email or password")

        if not user.get('is_active', True):
            raise HTTPException(status_code=403, detail="Account is deactivated")

        db.users.update_one(
            {"id": user['id']},
            {"$set": {"last_login": now_iso()}}
        )

        return LoginResponse(
            success=True,
            user_id=user['id'],
            username=user['username'],
            name=user['name'],
            email=user['email'],
            role=user.get('role', 'member'),
            message="Login successful"
        )

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Login failed: {str(e)}")


async def register_handler(request: Request, register_data: RegisterRequest):
    """Register new user"""
    try:
        db = get_db()
        username = register_data.username.strip().lower()
        email = register_data.email.strip().lower()
        name = register_data.name.strip()

        if not USERNAME_RE.match(username):
            raise HTTPException(status_code=400, detail="Username must be 2-30 characters of letters, numbers and underscores")
        if not EMAIL_RE.match(email):
            raise HTTPException(status_code=400, detail="Invalid email address")
        if not name or len(name) > 100:
            raise HTTPException(status_code=400, detail="Name must be 1-100 characters")
        if len(register_data.password) < MIN_PASSWORD_LENGTH:
            raise HTTPException(status_code=400, detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        if db.users.find_one({"email": email}):
            raise HTTPException(status_code=400, detail="Email already registered")

        if db.users.find_one({"username": username}):
            raise HTTPException(status_code=400, detail="Username already taken")

        new_user = new_user_document(username, name, email, hash_password(register_data.password))
        db.users.insert_one(new_user)
        logger.info(f"Registered user {username} ({new_user['id']})")

        return LoginResponse(
            success=True,
            user_id=new_user["id"],
            username=username,
            name=name,
            email=email,
            role="member",
            message="Registration successful"
        )

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Registration failed: {str(e)}")


async def get_user_handler(request: Request, user_id: str, token: str = Query(...), album_limit: int = 10):
    """Profile with stats and the member's most recent albums"""
    try:
        verify_token(token)
        db = get_db()

        user = db.users.find_one({"id": user_id}, USER_PUBLIC_PROJECTION)
        if not user:
            raise HTTPException(status_code=404, detail=f"User not found: {user_id}")

        albums = list(
            db.albums.find(
                {"posted_by": user_id, "is_hidden": False},
                {"_id": 0, "id": 1, "title": 1, "artist": 1, "cover_image_url": 1,
                 "posted_at": 1, "like_count": 1, "group": 1, "theme": 1}
            ).sort("posted_at", -1).limit(album_limit)
        )
        user["recent_albums"] = albums
        user["album_count"] = db.albums.count_documents({"posted_by": user_id})
        return user

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get user: {str(e)}")


async def update_user_handler(request: Request, user_id: str, update_data: Dict[str, Any]):
    """Members edit their own profile; role, activity, email and stats are not editable here"""
    try:
        verify_token(update_data.get("token", ""))
        db = get_db()

        acting_id = update_data.get("user_id")
        if acting_id != user_id:
            raise HTTPException(status_code=403, detail="You can only edit your own profile")
        get_acting_user(db, user_id)

        changes = {k: v for k, v in update_data.items() if k in EDITABLE_PROFILE_FIELDS}

        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name or len(name) > 100:
                raise HTTPException(status_code=400, detail="Name must be 1-100 characters")
            changes["name"] = name
        if changes.get("bio") and len(changes["bio"]) > 500:
            raise HTTPException(status_code=400, detail="Bio must be at most 500 characters")
        if changes.get("location") and len(changes["location"]) > 100:
            raise HTTPException(status_code=400, detail="Location must be at most 100 characters")
        if "favorite_genres" in changes:
            genres = changes["favorite_genres"] or []
            if not isinstance(genres, list) or any(len(str(g)) > 50 for g in genres):
                raise HTTPException(status_code=400, detail="favorite_genres must be a list of short strings")
            changes["favorite_genres"] = [str(g).strip() for g in genres if str(g).strip()]
        if "music_platforms" in changes:
            platforms = changes["music_platforms"]
            if not isinstance(platforms, dict) or any(
                    not isinstance(v, (str, type(None))) for v in platforms.values()):
                raise HTTPException(status_code=400, detail="music_platforms must be an object of links")
        if "notification_settings" in changes:
            settings = changes["notification_settings"]
            if not isinstance(settings, dict) or any(not isinstance(v, bool) for v in settings.values()):
                raise HTTPException(status_code=400, detail="notification_settings must be an object of true/false flags")
        spotify = (changes.get("music_platforms") or {}).get("spotify")
        if spotify and not SPOTIFY_PROFILE_RE.match(spotify):
            raise HTTPException(status_code=400, detail="Invalid Spotify profile URL")

        if not changes:
            raise HTTPException(status_code=400, detail="No editable fields provided")

        changes["updated_at"] = now_iso()
        db.users.update_one({"id": user_id}, {"$set": changes})
        return db.users.find_one({"id": user_id}, USER_PUBLIC_PROJECTION)

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to update user: {str(e)}")


async def admin_list_users_handler(request: Request, token: str, user_id: str):
    """All members with role, activity and posting stats (admin only)"""
    try:
        verify_token(token)
        db = get_db()
        require_admin(db, user_id)

        users: List[Dict[str, Any]] = list(
            db.users.find(
                {},
                {"_id": 0, "id": 1, "name": 1, "email": 1, "username": 1, "image": 1,
                 "is_active": 1, "role": 1, "stats": 1, "created_at": 1}
            ).sort("username", 1)
        )
        return {"users": users, "count": len(users)}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get users: {str(e)}")


async def admin_toggle_active_handler(request: Request, toggle_data: Dict[str, Any]):
    """Activate or deactivate a member; inactive members are skipped in every turn order"""
    try:
        verify_token(toggle_data.get("token", ""))
        db = get_db()
        require_admin(db, toggle_data.get("user_id"))

        target_id = toggle_data.get("target_user_id")
        is_active = toggle_data.get("is_active")
        if not target_id or not isinstance(is_active, bool):
            raise HTTPException(status_code=400, detail="target_user_id and a boolean is_active are required")

        result = db.users.update_one(
            {"id": target_id},
            {"$set": {"is_active": is_active, "updated_at": now_iso()}}
        )
        if result.matched_count == 0:
            raise HTTPException(status_code=404, detail=f"User not found: {target_id}")

        user = db.users.find_one({"id": target_id}, {"_id": 0, "id": 1, "name": 1, "email": 1, "is_active": 1})
        logger.info(f"User {target_id} {'activated' if is_active else 'deactivated'}")
        return {
            "success": True,
            "user": user,
            "message": f"User {'activated' if is_active else 'deactivated'} successfully",
        }

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to update user: {str(e)}")




async def admin_reset_password_handler(request: Request, reset_data: Dict[str, Any]):
    """Set a new password for a member, e.g. one imported without a usable hash"""
    try:
        verify_token(reset_data.get("token", ""))
        db = get_db()
        admin = require_admin(db, reset_data.get("user_id"))

        target_id = reset_data.get("target_user_id")
        if not target_id:
            raise HTTPException(status_code=400, detail="target_user_id is required")

        try:
            found = set_password(db, {"id": target_id}, reset_data.get("new_password"))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        if not found:
            raise HTTPException(status_code=404, detail=f"User not found: {target_id}")

        logger.info(f"🔑 Password for {target_id} reset by {admin['username']}")
        return {"success": True, "message": "Password reset successfully"}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to reset password: {str(e)}")
