import logging
from datetime import datetime, timezone
from fastapi import Request, HTTPException
from typing import Optional, Dict, Any, List
from noteclub.db.connection import get_database
from noteclub.db.documents import new_id, now_iso, parse_iso, SCHEMA_VERSION, UNKNOWN_USER, users_by_id
from noteclub.http_api.auth import verify_token, get_acting_user, require_role
from noteclub.http_api.notifications import notify_many

logger = logging.getLogger(__name__)

THEME_STATUSES = {"active", "upcoming", "past"}


def get_db():
    return get_database()


def theme_status(theme: Dict[str, Any], now: datetime) -> Optional[str]:
    start = parse_iso(theme.get("start_date"))
    end = parse_iso(theme.get("end_date"))
    if not start or not end:
        return None
    if start > now:
        return "upcoming"
    if end < now:
        return "past"
    return "active" if theme.get("is_active") else None


def overlaps(theme: Dict[str, Any], start: datetime, end: datetime) -> bool:
    other_start = parse_iso(theme.get("start_date"))
    other_end = parse_iso(theme.get("end_date"))
    if not other_start or not other_end:
        return False
    return other_start <= end and other_end >= start


async def get_themes_handler(request: Request, token: str, status: Optional[str] = None,
                             page: int = 1, limit: int = 10):
    """Themes by status, most recent start first"""
    try:
        verify_token(token)
        if status and status not in THEME_STATUSES:
            raise HTTPException(status_code=400, detail="status must be one of active, upcoming, past")

        db = get_db()
        now = datetime.now(timezone.utc)
        page = max(page, 1)
        limit = max(1, min(limit, 50))

        # Dates are compared as datetimes, not as stored strings
        themes: List[Dict[str, Any]] = [
            theme for theme in db.themes.find({}, {"_id": 0})
            if not status or theme_status(theme, now) == status
        ]
        themes.sort(key=lambda t: parse_iso(t.get("start_date")) or now, reverse=True)

        total = len(themes)
        themes = themes[(page - 1) * limit:page * limit]

        creators = users_by_id(db, [t.get("created_by") for t in themes])
        for theme in themes:
            theme["created_by"] = creators.get(theme.get("created_by"), {**UNKNOWN_USER, "id": theme.get("created_by")})
            theme["status"] = theme_status(theme, now)

        return {
            "themes": themes,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get themes: {str(e)}")


async def create_theme_handler(request: Request, theme_data: Dict[str, Any]):
    """Moderators and admins schedule a theme; it starts active if its start date has passed"""
    try:
        verify_token(theme_data.get("token", ""))
        db = get_db()

        title = (theme_data.get("title") or "").strip()
        description = (theme_data.get("description") or "").strip()
        if not title or not description or not theme_data.get("start_date") or not theme_data.get("end_date"):
            raise HTTPException(status_code=400, detail="Title, description, start date, and end date are required")
        if len(title) > 100 or len(description) > 1000:
            raise HTTPException(status_code=400, detail="Title or description too long")

        user = get_acting_user(db, theme_data.get("user_id"))
        require_role(user, "moderator", "admin")

        start = parse_iso(theme_data["start_date"])
        end = parse_iso(theme_data["end_date"])
        if not start or not end:
            raise HTTPException(status_code=400, detail="Dates must be ISO 8601")
        if start >= end:
            raise HTTPException(status_code=400, detail="End date must be after start date")

        for existing in db.themes.find({"is_active": True}, {"_id": 0}):
            if overlaps(existing, start, end):
                raise HTTPException(status_code=400, detail="Theme dates overlap with an existing active theme")

        examples = theme_data.get("examples") or []
        if not isinstance(examples, list):
            raise HTTPException(status_code=400, detail="examples must be a list")

        now = now_iso()
        theme = {
            "schema_version": SCHEMA_VERSION,
            "id": new_id(),
            "title": title,
            "description": description,
            "start_date": start.astimezone(timezone.utc).isoformat(),
            "end_date": end.astimezone(timezone.utc).isoformat(),
            "created_by": user["id"],
            "is_active": start <= datetime.now(timezone.utc),
            "guidelines": theme_data.get("guidelines"),
            "examples": [str(e)[:200] for e in examples],
            "image_url": theme_data.get("image_url"),
            "album_count": 0,
            "created_at": now,
            "updated_at": now,
        }
        db.themes.insert_one(theme)
        theme.pop("_id", None)
        logger.info(f"🎨 Theme '{title}' created by {user['username']} (active: {theme['is_active']})")

        if theme["is_active"]:
            members = [u["id"] for u in db.users.find({"is_active": {"$ne": False}}, {"_id": 0, "id": 1})]
            notify_many(
                db, members, "theme_change",
                f"New theme: {title}",
                description[:200],
                theme=theme["id"], from_user=user["id"],
            )

        theme["created_by"] = {k: user.get(k) for k in ("id", "name", "username", "image")}
        return {"theme": theme}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to create theme: {str(e)}")
