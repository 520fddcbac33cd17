import re
import random
import logging
from collections import Counter
from datetime import datetime, timezone
from fastapi import Request, HTTPException
from typing import Optional, Dict, Any
from noteclub.db.connection import get_database
from noteclub.db.documents import (
    new_id, now_iso, parse_iso, SCHEMA_VERSION, UNKNOWN_USER, users_by_id, decrement_stat,
)
from noteclub.db import turn_order
from noteclub.http_api.auth import verify_token, get_acting_user, is_admin
from noteclub.http_api.turns import save_rotation, active_member_ids
from noteclub.http_api.notifications import notify, notify_many

logger = logging.getLogger(__name__)

# Streaming and reference links must point at the right host
LINK_PATTERNS = {
    "spotify_url": re.compile(r'^https://(open\.)?spotify\.com/'),
    "youtube_music_url": re.compile(r'^https://music\.youtube\.com/'),
    "apple_music_url": re.compile(r'^https://music\.apple\.com/'),
    "tidal_url": re.compile(r'^https://(listen\.)?tidal\.com/'),
    "deezer_url": re.compile(r'^https://www\.deezer\.com/'),
    "wikipedia_url": re.compile(r'^https://[a-z]{2,3}\.wikipedia\.org/'),
}

TEXT_LIMITS = {
    "title": 200,
    "artist": 200,
    "genre": 100,
    "description": 2000,
    "wikipedia_description": 1000,
    "label": 100,
}

EDITABLE_ALBUM_FIELDS = set(LINK_PATTERNS) | set(TEXT_LIMITS) | {"year", "cover_image_url", "track_count", "duration"}

SORTS = {
    "newest": [("posted_at", -1)],
    "oldest": [("posted_at", 1)],
    "most-liked": [("like_count", -1), ("posted_at", -1)],
    "alphabetical": [("artist", 1), ("title", 1)],
}

SEARCH_FIELDS = ("title", "artist", "description", "genre")
ALBUM_PAGE_MAX = 50


def get_db():
    return get_database()


def clean_album_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """Validate the album metadata present in ``data`` and return the cleaned values"""
    cleaned: Dict[str, Any] = {}

    for field, limit in TEXT_LIMITS.items():
        if field not in data:
            continue
        value = data[field]
        value = value.strip() if isinstance(value, str) else value
        if value and len(value) > limit:
            raise HTTPException(status_code=400, detail=f"{field} must be at most {limit} characters")
        cleaned[field] = value or None

    for field, pattern in LINK_PATTERNS.items():
        if field not in data:
            continue
        url = (data[field] or "").strip()
        if url and not pattern.match(url):
            raise HTTPException(status_code=400, detail=f"Invalid {field.replace('_', ' ')}")
        cleaned[field] = url or None

    if "cover_image_url" in data:
        cleaned["cover_image_url"] = (data["cover_image_url"] or "").strip() or None

    if data.get("year") is not None:
        year = data["year"]
        latest = datetime.now(timezone.utc).year + 1
        if not isinstance(year, int) or not 1900 <= year <= latest:
            raise HTTPException(status_code=400, detail=f"year must be between 1900 and {latest}")
        cleaned["year"] = year
    elif "year" in data:
        cleaned["year"] = None

    if data.get("track_count") is not None:
        tracks = data["track_count"]
        if not isinstance(tracks, int) or not 1 <= tracks <= 200:
            raise HTTPException(status_code=400, detail="track_count must be between 1 and 200")
        cleaned["track_count"] = tracks

    if data.get("duration") is not None:
        duration = data["duration"]
        if not isinstance(duration, (int, float)) or duration < 1:
            raise HTTPException(status_code=400, detail="duration must be a positive number of minutes")
        cleaned["duration"] = duration

    return cleaned


def theme_is_current(theme: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    now = now or datetime.now(timezone.utc)
    start = parse_iso(theme.get("start_date"))
    end = parse_iso(theme.get("end_date"))
    if not theme.get("is_active") or not start or not end:
        return False
    return start <= now <= end


def populate_albums(db, albums):
    """Attach poster summaries and theme titles to a list of albums"""
    posters = users_by_id(db, [a.get("posted_by") for a in albums])
    theme_ids = [a["theme"] for a in albums if a.get("theme")]
    themes = {}
    if theme_ids:
        themes = {t["id"]: t for t in db.themes.find({"id": {"$in": theme_ids}}, {"_id": 0, "id": 1, "title": 1})}

    for album in albums:
        album["posted_by"] = posters.get(album.get("posted_by"), {**UNKNOWN_USER, "id": album.get("posted_by")})
        album["theme"] = themes.get(album.get("theme")) if album.get("theme") else None
    return albums


def load_album(db, album_id: str) -> Dict[str, Any]:
    album = db.albums.find_one({"id": album_id}, {"_id": 0})
    if not album:
        raise HTTPException(status_code=404, detail="Album not found")
    return album


async def get_albums_handler(request: Request, token: str, page: int = 1, limit: int = 10,
                             group: Optional[str] = None, theme: Optional[str] = None,
                             search: Optional[str] = None, sort: str = "newest"):
    """Paginated feed of approved, visible albums"""
    try:
        verify_token(token)
        db = get_db()

        page = max(page, 1)
        limit = max(1, min(limit, ALBUM_PAGE_MAX))

        query: Dict[str, Any] = {"is_approved": True, "is_hidden": False}
        if group:
            query["group"] = group
        if theme:
            query["theme"] = theme
        if search and search.strip():
            pattern = re.escape(search.strip())
            query["$or"] = [{field: {"$regex": pattern, "$options": "i"}} for field in SEARCH_FIELDS]

        total = db.albums.count_documents(query)
        albums = list(
            db.albums.find(query, {"_id": 0})
            .sort(SORTS.get(sort, SORTS["newest"]))
            .skip((page - 1) * limit)
            .limit(limit)
        )

        return {
            "albums": populate_albums(db, albums),
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
        raise HTTPException(status_code=500, detail=f"Failed to get albums: {str(e)}")


async def get_random_album_handler(request: Request, token: str, group: Optional[str] = None):
    try:
        verify_token(token)
        db = get_db()

        query: Dict[str, Any] = {"is_approved": True, "is_hidden": False}
        if group:
            query["group"] = group

        total = db.albums.count_documents(query)
        if total == 0:
            raise HTTPException(status_code=404, detail="No albums found")

        album = next(db.albums.find(query, {"_id": 0}).skip(random.randrange(total)).limit(1))
        return populate_albums(db, [album])[0]

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get random album: {str(e)}")


async def get_album_handler(request: Request, album_id: str, token: str):
    try:
        verify_token(token)
        db = get_db()
        album = load_album(db, album_id)
        album["comment_count"] = db.comments.count_documents({"album": album_id, "is_hidden": {"$ne": True}})
        return populate_albums(db, [album])[0]

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get album: {str(e)}")


async def create_album_handler(request: Request, album_data: Dict[str, Any]):
    """Post an album in the member's turn.

    Order of checks: required fields, user, group membership, theme, turn.
    On success the poster becomes the group's last poster.
    """
    try:
        verify_token(album_data.get("token", ""))
        db = get_db()

        title = (album_data.get("title") or "").strip()
        artist = (album_data.get("artist") or "").strip()
        group_id = album_data.get("group_id")
        if not title or not artist or not group_id:
            raise HTTPException(status_code=400, detail="Title, artist, and group are required")

        user = get_acting_user(db, album_data.get("user_id"))
        if not user.get("is_active", True):
            raise HTTPException(status_code=403, detail="Your account is not active")

        group = db.groups.find_one({"id": group_id}, {"_id": 0})
        if not group:
            raise HTTPException(status_code=404, detail="Group not found")
        if user["id"] not in group.get("members", []):
            raise HTTPException(status_code=403, detail="You are not a member of this group")

        theme = None
        theme_id = album_data.get("theme_id")
        if theme_id:
            theme = db.themes.find_one({"id": theme_id}, {"_id": 0})
            if not theme:
                raise HTTPException(status_code=404, detail="Theme not found")
            if not theme_is_current(theme):
                raise HTTPException(status_code=400, detail="Theme is not currently active")
            if db.albums.find_one({"theme": theme_id, "posted_by": user["id"]}, {"_id": 1}):
                raise HTTPException(status_code=400, detail="You have already posted an album for this theme")

        is_override = bool(album_data.get("is_override"))
        if is_override and not (is_admin(user) or user["id"] in group.get("admins", [])):
            raise HTTPException(status_code=403, detail="Only admins can post out of turn")

        active = active_member_ids(db, group)
        if not is_override and turn_order.current_turn_user_id(group, active) != user["id"]:
            raise HTTPException(status_code=403, detail="It is not your turn to post")

        fields = clean_album_fields(album_data)
        now = now_iso()
        album = {
            "schema_version": SCHEMA_VERSION,
            "id": new_id(),
            "year": None,
            "genre": None,
            "description": None,
            **{field: None for field in LINK_PATTERNS},
            "cover_image_url": None,
            "wikipedia_description": None,
            "track_count": None,
            "duration": None,
            "label": None,
            **fields,
            "title": title,
            "artist": artist,
            "group": group_id,
            "theme": theme_id,
            "posted_by": user["id"],
            "posted_at": now,
            "likes": [],
            "like_count": 0,
            "comments": [],
            "is_approved": True,
            "is_hidden": False,
            "turn_number": db.albums.count_documents({"group": group_id}) + 1,
            "is_override": is_override,
            "created_at": now,
            "updated_at": now,
        }
        db.albums.insert_one(album)
        album.pop("_id", None)

        turn_order.record_user_posted(group, user["id"])
        save_rotation(db, group, last_turn_started_at=now,
                      total_albums_shared=group.get("total_albums_shared", 0) + 1)
        db.users.update_one(
            {"id": user["id"]},
            {"$inc": {"stats.albums_posted": 1}, "$set": {"last_post_date": now}}
        )
        if theme:
            db.themes.update_one({"id": theme_id}, {"$inc": {"album_count": 1}})

        logger.info(f"💿 {user['username']} posted {artist} - {title} in {group['name']}"
                    f"{' (override)' if is_override else ''}")

        if group.get("notify_on_new_albums", True):
            others = [uid for uid in group.get("members", []) if uid != user["id"]]
            notify_many(
                db, others, "new_album",
                f"New album from {user['name']}",
                f"{user['name']} shared {artist} - {title}",
                album=album["id"], group=group_id, from_user=user["id"],
            )

        up_next = turn_order.current_turn_user_id(group, active)
        if up_next and up_next != user["id"]:
            notify(
                db, up_next, "turn_reminder",
                "It's your turn!",
                f"{user['name']} just posted in {group['name']}. Time to share an album.",
                group=group_id, from_user=user["id"],
            )

        return {"album": populate_albums(db, [album])[0]}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to create album: {str(e)}")


async def update_album_handler(request: Request, album_id: str, update_data: Dict[str, Any]):
    """Posters edit an album's metadata and links"""
    try:
        verify_token(update_data.get("token", ""))
        db = get_db()
        user = get_acting_user(db, update_data.get("user_id"))
        album = load_album(db, album_id)

        if album.get("posted_by") != user["id"]:
            raise HTTPException(status_code=403, detail="You can only edit your own albums")

        changes = clean_album_fields({k: v for k, v in update_data.items() if k in EDITABLE_ALBUM_FIELDS})
        for required in ("title", "artist"):
            if required in changes and not changes[required]:
                raise HTTPException(status_code=400, detail=f"{required} cannot be empty")
        if not changes:
            raise HTTPException(status_code=400, detail="No editable fields provided")

        changes["updated_at"] = now_iso()
        db.albums.update_one({"id": album_id}, {"$set": changes})
        album.update(changes)
        return populate_albums(db, [album])[0]

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to update album: {str(e)}")


async def delete_album_handler(request: Request, album_id: str, token: str, user_id: str):
    """Poster or admin deletes an album together with all of its comments"""
    try:
        verify_token(token)
        db = get_db()
        user = get_acting_user(db, user_id)
        album = load_album(db, album_id)

        if album.get("posted_by") != user["id"] and not is_admin(user):
            raise HTTPException(status_code=403, detail="Not allowed to delete this album")

        comment_authors = [c.get("author") for c in db.comments.find({"album": album_id}, {"_id": 0, "author": 1})]
        removed_comments = db.comments.delete_many({"album": album_id}).deleted_count
        db.albums.delete_one({"id": album_id})

        for author_id, count in Counter(comment_authors).items():
            decrement_stat(db, author_id, "comments_posted", count)
        likers = album.get("likes", [])
        for liker in likers:
            decrement_stat(db, liker, "likes_given")
        decrement_stat(db, album.get("posted_by"), "likes_received", len(likers))

        if album.get("theme"):
            db.themes.update_one({"id": album["theme"], "album_count": {"$gt": 0}}, {"$inc": {"album_count": -1}})
        if album.get("group"):
            db.groups.update_one(
                {"id": album["group"], "total_albums_shared": {"$gt": 0}},
                {"$inc": {"total_albums_shared": -1}}
            )
        if album.get("posted_by"):
            db.users.update_one(
                {"id": album["posted_by"], "stats.albums_posted": {"$gt": 0}},
                {"$inc": {"stats.albums_posted": -1}}
            )

        logger.info(f"🗑️  Album {album_id} deleted by {user['username']} ({removed_comments} comments)")
        return {"success": True, "deleted_comments": removed_comments}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to delete album: {str(e)}")


def like_album(db, album_id: str, user_id: str, poster_id: Optional[str]) -> bool:
    """Add a like unless the member already has one; returns whether anything changed"""
    result = db.albums.update_one(
        {"id": album_id, "likes": {"$ne": user_id}},
        {"$push": {"likes": user_id}, "$inc": {"like_count": 1}}
    )
    if result.modified_count != 1:
        return False
    db.users.update_one({"id": user_id}, {"$inc": {"stats.likes_given": 1}})
    if poster_id:
        db.users.update_one({"id": poster_id}, {"$inc": {"stats.likes_received": 1}})
    return True


def unlike_album(db, album_id: str, user_id: str, poster_id: Optional[str]) -> bool:
    """Remove the member's like if present; returns whether anything changed"""
    result = db.albums.update_one(
        {"id": album_id, "likes": user_id},
        {"$pull": {"likes": user_id}, "$inc": {"like_count": -1}}
    )
    if result.modified_count != 1:
        return False
    db.users.update_one({"id": user_id, "stats.likes_given": {"$gt": 0}}, {"$inc": {"stats.likes_given": -1}})
    if poster_id:
        db.users.update_one({"id": poster_id, "stats.likes_received": {"$gt": 0}}, {"$inc": {"stats.likes_received": -1}})
    return True


async def toggle_like_handler(request: Request, album_id: str, like_data: Dict[str, Any]):
    """Like an album, or remove the like if the member already liked it"""
    try:
        verify_token(like_data.get("token", ""))
        db = get_db()
        user = get_acting_user(db, like_data.get("user_id"))
        album = load_album(db, album_id)

        poster_id = album.get("posted_by")
        # A toggle that lost a race to an identical one is a no-op
        if user["id"] not in album.get("likes", []):
            liked = True
            changed = like_album(db, album_id, user["id"], poster_id)
        else:
            liked = False
            changed = unlike_album(db, album_id, user["id"], poster_id)

        if changed and liked and poster_id and poster_id != user["id"]:
            notify(
                db, poster_id, "like",
                f"{user['name']} liked your album",
                f"{user['name']} liked {album.get('artist')} - {album.get('title')}",
                album=album_id, group=album.get("group"), from_user=user["id"],
            )

        updated = db.albums.find_one({"id": album_id}, {"_id": 0, "like_count": 1})
        return {"liked": liked, "like_count": updated.get("like_count", 0)}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to update like: {str(e)}")
