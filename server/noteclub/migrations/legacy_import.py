#!/usr/bin/env python3
"""
Legacy Import
Moves users, posts, comments and noteclubs from the legacy database (or a
directory of JSON exports) into the users/albums/comments/groups/themes
collections.

Re-runnable: records already imported are recognised by their legacy id and
skipped. Dry run by default; pass --apply to write.
"""

import os
import re
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Any
from bson import json_util
from noteclub.db.connection import get_legacy_database
from noteclub.db.documents import new_id, now_iso, to_iso, parse_iso, SCHEMA_VERSION
from noteclub.db.init_collections import validate_document
from noteclub.db import turn_order
from noteclub.db.turn_order import MembershipError
from noteclub.http_api.users import new_user_document
from noteclub.http_api.groups import generate_invite_code
from noteclub.migrations.common import (
    build_parser, setup_logging, announce_mode, resolve_db, legacy_key,
)
from noteclub.migrations.comment_reconcile import embedded_to_standalone

logger = logging.getLogger(__name__)

LEGACY_COLLECTIONS = ("users", "posts", "comments", "noteclubs")

DEFAULT_GROUP_NAME = "Original Note Club"
DEFAULT_GROUP_DESCRIPTION = "Migrated from the original Note Club"
DEFAULT_THEME_TITLE = "Migrated Albums"
UNKNOWN_ALBUM = "Unknown Album"
UNKNOWN_ARTIST = "Unknown Artist"

YOUTUBE_PLAYLIST_URL = "https://music.youtube.com/playlist?list={}"
SPOTIFY_RE = re.compile(r'^https://(open\.)?spotify\.com/')
BCRYPT_PREFIX = "$2"
USERNAME_INVALID_RE = re.compile(r'[^a-z0-9_]')

# =============================================================================
# LOADING
# =============================================================================


def load_export_dir(path: str) -> Dict[str, List[Dict]]:
    """Read ``<name>.json`` exports (Mongo extended JSON) for each legacy collection"""
    data = {}
    for name in LEGACY_COLLECTIONS:
        file_path = os.path.join(path, f"{name}.json")
        if not os.path.exists(file_path):
            logger.warning(f"⚠️  Missing export file: {file_path}")
            data[name] = []
            continue
        with open(file_path, "r", encoding="utf-8") as f:
            data[name] = json_util.loads(f.read())
        logger.info(f"📄 Loaded {len(data[name])} {name} from {file_path}")
    return data


def load_legacy_db(legacy_db) -> Dict[str, List[Dict]]:
    data = {}
    for name in LEGACY_COLLECTIONS:
        data[name] = list(legacy_db[name].find({}))
        logger.info(f"📚 Legacy {name}: {len(data[name])}")
    return data

# =============================================================================
# TRANSFORMS
# =============================================================================


def clean_username(raw: Optional[str], email: Optional[str], taken: set) -> str:
    """Lowercase, pattern-safe and unique username"""
    base = USERNAME_INVALID_RE.sub("_", (raw or "").strip().lower())[:30]
    if len(base) < 2 and email:
        base = USERNAME_INVALID_RE.sub("_", email.split("@")[0].lower())[:30]
    if len(base) < 2:
        base = "member"

    candidate = base
    suffix = 2
    while candidate in taken:
        tail = str(suffix)
        candidate = base[:30 - len(tail)] + tail
        suffix += 1
    taken.add(candidate)
    return candidate


def transform_user(legacy: Dict[str, Any], taken_usernames: set) -> Dict[str, Any]:
    email = (legacy.get("email") or "").strip().lower()
    username = clean_username(legacy.get("username") or legacy.get("name"), email, taken_usernames)
    password = legacy.get("password") or legacy.get("password_hash")
    password_hash = password if isinstance(password, str) and password.startswith(BCRYPT_PREFIX) else None

    user = new_user_document(
        username=username,
        name=(legacy.get("name") or "").strip()[:100] or username,
        email=email or f"{username}@legacy.invalid",
        password_hash=password_hash,
    )
    user["legacy_id"] = legacy_key(legacy.get("_id"))
    user["image"] = legacy.get("profilePicture") or legacy.get("image")
    user["bio"] = (legacy.get("bio") or "")[:500]
    created = to_iso(legacy.get("createdAt"))
    if created:
        user["created_at"] = created
    return user


def youtube_music_url(yt: Optional[str]) -> Optional[str]:
    """Legacy ``yt`` holds a playlist id, occasionally a full URL"""
    if not yt:
        return None
    yt = yt.strip()
    if yt.startswith("https://music.youtube.com/"):
        return yt
    if yt.startswith("http"):
        return None
    return YOUTUBE_PLAYLIST_URL.format(yt)


def spotify_url(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value if SPOTIFY_RE.match(value) else None


def transform_post(post: Dict[str, Any], user_ids: Dict[str, str], group_id: str,
                   theme_id: Optional[str], turn_number: int) -> Dict[str, Any]:
    posted_at = to_iso(post.get("createdAt")) or now_iso()
    author = user_ids.get(legacy_key(post.get("author")))

    album = {
        "schema_version": SCHEMA_VERSION,
        "id": new_id(),
        "legacy_id": legacy_key(post.get("_id")),
        "title": (post.get("albumTitle") or "").strip()[:200] or UNKNOWN_ALBUM,
        "artist": (post.get("albumArtist") or "").strip()[:200] or UNKNOWN_ARTIST,
        "year": None,
        "genre": None,
        "description": (post.get("content") or "")[:2000] or None,
        "group": group_id,
        "theme": theme_id,
        "posted_by": author,
        "posted_at": posted_at,
        "spotify_url": spotify_url(post.get("spotify")),
        "youtube_music_url": youtube_music_url(post.get("yt")),
        "apple_music_url": None,
        "tidal_url": None,
        "deezer_url": None,
        "cover_image_url": post.get("albumArt") or None,
        "wikipedia_url": None,
        "wikipedia_description": (post.get("wikiDesc") or "")[:1000] or None,
        "track_count": None,
        "duration": None,
        "label": None,
        "likes": [],
        "like_count": 0,
        "comments": [],
        "is_approved": True,
        "is_hidden": False,
        "turn_number": turn_number,
        "is_override": False,
        "created_at": posted_at,
        "updated_at": now_iso(),
    }
    return album


def transform_comment(comment: Dict[str, Any], user_ids: Dict[str, str],
                      album_ids: Dict[str, str]) -> Optional[Dict[str, Any]]:
    """Standalone legacy comment; None when it has no text"""
    content = (comment.get("content") or comment.get("text") or "").strip()
    if not content:
        return None

    created = to_iso(comment.get("createdAt") or comment.get("postedAt"))
    return {
        "schema_version": SCHEMA_VERSION,
        "id": new_id(),
        "legacy_id": legacy_key(comment.get("_id")),
        "content": content[:2000],
        "author": user_ids.get(legacy_key(comment.get("author") or comment.get("user"))),
        "album": album_ids.get(legacy_key(comment.get("post"))),
        "parent_comment": None,
        "replies": [],
        "depth": 0,
        "likes": [],
        "is_hidden": False,
        "is_edited": False,
        "edited_at": None,
        "created_at": created,
        "updated_at": created,
    }


def build_group(db, members: List[Dict[str, Any]], noteclub: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Default migrated group with every member in alphabetical turn order"""
    now = now_iso()
    group = {
        "schema_version": SCHEMA_VERSION,
        "id": new_id(),
        "legacy_id": legacy_key(noteclub.get("_id")) if noteclub else None,
        "name": DEFAULT_GROUP_NAME,
        "description": ((noteclub or {}).get("description") or DEFAULT_GROUP_DESCRIPTION)[:500],
        "is_private": True,
        "invite_code": generate_invite_code(db),
        "max_members": 100,
        "members": [],
        "admins": [members[0]["id"]] if members else [],
        "created_by": members[0]["id"] if members else None,
        "turn_order": [],
        "current_turn_index": 0,
        "turn_duration_days": 7,
        "last_turn_started_at": now,
        "total_albums_shared": 0,
        "allow_member_invites": True,
        "notify_on_new_albums": True,
        "created_at": to_iso((noteclub or {}).get("createdAt")) or now,
        "updated_at": now,
    }
    add_members(group, members)
    return group


def add_members(group: Dict[str, Any], members: List[Dict[str, Any]]) -> int:
    usernames = {m["id"]: m["username"] for m in members}
    added = 0
    for member in members:
        try:
            turn_order.add_member(group, member["id"], member["username"], usernames)
            added += 1
        except MembershipError as e:
            if str(e) != "User is already a member":
                logger.warning(f"⚠️  Could not add {member['username']} to {group['name']}: {e}")
    return added


def build_theme(title: str, description: str, posted_dates: List[str], created_by: Optional[str]) -> Dict[str, Any]:
    """Closed theme spanning the dates of the albums it collects"""
    dates = sorted(d for d in (parse_iso(p) for p in posted_dates) if d) or [datetime.now(timezone.utc)]
    start, end = dates[0], dates[-1]
    if end <= start:
        end = start + timedelta(days=1)
    now = now_iso()
    return {
        "schema_version": SCHEMA_VERSION,
        "id": new_id(),
        "title": title[:100],
        "description": description[:1000],
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "created_by": created_by,
        "is_active": False,
        "guidelines": None,
        "examples": [],
        "image_url": None,
        "album_count": 0,
        "created_at": now,
        "updated_at": now,
    }

# =============================================================================
# IMPORT
# =============================================================================


def recompute_user_stats(db) -> int:
    """Rebuild every user's posting stats from the albums and comments collections"""
    updated = 0
    for user in db.users.find({}, {"_id": 0, "id": 1}):
        uid = user["id"]
        albums = list(db.albums.find({"posted_by": uid}, {"_id": 0, "posted_at": 1, "like_count": 1}))
        dated = [a["posted_at"] for a in albums if parse_iso(a.get("posted_at"))]
        last_post = max(dated, key=parse_iso, default=None)
        stats = {
            "stats.albums_posted": len(albums),
            "stats.comments_posted": db.comments.count_documents({"author": uid}),
            "stats.likes_given": db.albums.count_documents({"likes": uid}),
            "stats.likes_received": sum(a.get("like_count", 0) for a in albums),
            "last_post_date": last_post,
        }
        db.users.update_one({"id": uid}, {"$set": stats})
        updated += 1
    return updated


def _insert(db, collection: str, doc: Dict[str, Any], apply: bool, report: Dict[str, int]) -> bool:
    if not validate_document(collection, doc):
        report["invalid"] += 1
        return False
    if apply:
        db[collection].insert_one(doc)
        doc.pop("_id", None)
    return True


def import_legacy(data: Dict[str, List[Dict]], db=None, apply: bool = False) -> Dict[str, int]:
    """
    Import a legacy snapshot

    Args:
        data: legacy documents keyed by collection name
        db: target database (defaults to the configured one)
        apply: write changes; otherwise only report what would happen

    Returns:
        dict: counts of imported, skipped and invalid records
    """
    db = resolve_db(db)
    announce_mode(apply)
    report = {
        "users_imported": 0, "users_skipped": 0,
        "albums_imported": 0, "albums_skipped": 0,
        "comments_imported": 0, "comments_skipped": 0,
        "themes_created": 0, "group_created": 0, "invalid": 0,
    }

    # Users: already imported (legacy id) or already registered (email) map onto the existing record
    user_ids: Dict[str, str] = {}
    taken = {u["username"] for u in db.users.find({}, {"_id": 0, "username": 1})}
    new_members: List[Dict[str, Any]] = []
    for legacy in data.get("users", []):
        key = legacy_key(legacy.get("_id"))
        email = (legacy.get("email") or "").strip().lower()
        existing = db.users.find_one({"legacy_id": key}, {"_id": 0, "id": 1, "username": 1})
        if not existing and email:
            existing = db.users.find_one({"email": email}, {"_id": 0, "id": 1, "username": 1})
        if existing:
            user_ids[key] = existing["id"]
            new_members.append(existing)
            report["users_skipped"] += 1
            continue

        user = transform_user(legacy, taken)
        if _insert(db, "users", user, apply, report):
            user_ids[key] = user["id"]
            new_members.append({"id": user["id"], "username": user["username"]})
            report["users_imported"] += 1
    logger.info(f"👥 Users: {report['users_imported']} imported, {report['users_skipped']} already present")

    # Group
    group = db.groups.find_one({"name": DEFAULT_GROUP_NAME}, {"_id": 0})
    noteclubs = data.get("noteclubs", [])
    if group:
        added = add_members(group, new_members)
        logger.info(f"🏠 Reusing group {DEFAULT_GROUP_NAME}, {added} members added")
        if apply and added:
            db.groups.update_one({"id": group["id"]}, {"$set": {
                "members": group["members"], "turn_order": group["turn_order"],
                "current_turn_index": group["current_turn_index"], "updated_at": now_iso(),
            }})
    else:
        group = build_group(db, new_members, noteclubs[0] if noteclubs else None)
        if _insert(db, "groups", group, apply, report):
            report["group_created"] = 1
            logger.info(f"🏠 Created group {DEFAULT_GROUP_NAME} with {len(group['members'])} members")
    if apply:
        db.users.update_many({"id": {"$in": group["members"]}}, {"$addToSet": {"groups": group["id"]}})

    # Themes: one per legacy theme name, the rest share the default theme
    posts = sorted(data.get("posts", []), key=lambda p: parse_iso(p.get("createdAt")) or datetime.min.replace(tzinfo=timezone.utc))
    themes_by_title: Dict[str, Dict[str, Any]] = {}
    for post in posts:
        title = (post.get("theme") or "").strip() or DEFAULT_THEME_TITLE
        themes_by_title.setdefault(title, None)
    for title in themes_by_title:
        existing = db.themes.find_one({"title": title}, {"_id": 0})
        if existing:
            themes_by_title[title] = existing
            continue
        dates = [to_iso(p.get("createdAt")) for p in posts
                 if ((p.get("theme") or "").strip() or DEFAULT_THEME_TITLE) == title]
        description = "Albums migrated from the original Note Club" if title == DEFAULT_THEME_TITLE else f"Migrated theme: {title}"
        theme = build_theme(title, description, dates, group.get("created_by"))
        if _insert(db, "themes", theme, apply, report):
            report["themes_created"] += 1
        themes_by_title[title] = theme

    # Albums
    album_ids: Dict[str, str] = {}
    turn_number = db.albums.count_documents({"group": group["id"]})
    theme_counts: Dict[str, int] = {}
    for post in posts:
        key = legacy_key(post.get("_id"))
        existing = db.albums.find_one({"legacy_id": key}, {"_id": 0, "id": 1})
        if existing:
            album_ids[key] = existing["id"]
            report["albums_skipped"] += 1
            continue

        theme = themes_by_title[(post.get("theme") or "").strip() or DEFAULT_THEME_TITLE]
        album = transform_post(post, user_ids, group["id"], theme["id"], turn_number + 1)
        if not album["posted_by"]:
            logger.warning(f"⚠️  Post {key} has no known author")
        if not _insert(db, "albums", album, apply, report):
            continue
        turn_number += 1
        album_ids[key] = album["id"]
        theme_counts[theme["id"]] = theme_counts.get(theme["id"], 0) + 1
        report["albums_imported"] += 1

        for embedded in post.get("comments") or []:
            if not isinstance(embedded, dict):
                continue
            embedded = dict(embedded)
            embedded["postedBy"] = user_ids.get(legacy_key(embedded.get("postedBy") or embedded.get("author")))
            embedded.pop("author", None)
            comment = embedded_to_standalone(album["id"], embedded)
            if comment and _insert(db, "comments", comment, apply, report):
                report["comments_imported"] += 1
                if apply:
                    db.albums.update_one({"id": album["id"]}, {"$addToSet": {"comments": comment["id"]}})
    logger.info(f"💿 Albums: {report['albums_imported']} imported, {report['albums_skipped']} already present")

    # Standalone comments
    for legacy in data.get("comments", []):
        key = legacy_key(legacy.get("_id"))
        if db.comments.find_one({"legacy_id": key}, {"_id": 1}):
            report["comments_skipped"] += 1
            continue
        comment = transform_comment(legacy, user_ids, album_ids)
        if not comment:
            report["comments_skipped"] += 1
            continue
        if _insert(db, "comments", comment, apply, report):
            report["comments_imported"] += 1
            if apply and comment["album"]:
                db.albums.update_one({"id": comment["album"]}, {"$addToSet": {"comments": comment["id"]}})
    logger.info(f"💬 Comments: {report['comments_imported']} imported, {report['comments_skipped']} skipped")

    if apply:
        for theme_id, count in theme_counts.items():
            db.themes.update_one({"id": theme_id}, {"$inc": {"album_count": count}})
        db.groups.update_one({"id": group["id"]}, {"$inc": {"total_albums_shared": report["albums_imported"]}})
        updated = recompute_user_stats(db)
        logger.info(f"📊 Recomputed stats for {updated} users")

    logger.info(f"🎉 Legacy import {'complete' if apply else 'dry run complete'}: {report}")
    return report


if __name__ == "__main__":
    setup_logging()

    parser = build_parser("Import the legacy posts/noteclubs data")
    parser.add_argument("--export-dir", help="Read JSON exports from this directory instead of LEGACY_MONGO_URL")
    args = parser.parse_args()

    if args.export_dir:
        legacy_data = load_export_dir(args.export_dir)
    else:
        legacy_data = load_legacy_db(get_legacy_database())

    import_legacy(legacy_data, apply=args.apply)
