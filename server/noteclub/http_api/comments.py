import logging
from collections import Counter
from fastapi import Request, HTTPException
from typing import Dict, Any, List
from noteclub.db.connection import get_database
from noteclub.db.documents import new_id, now_iso, SCHEMA_VERSION, UNKNOWN_USER, users_by_id, decrement_stat
from noteclub.http_api.auth import verify_token, get_acting_user, is_admin
from noteclub.http_api.notifications import notify

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 2000
MAX_DEPTH = 5


def get_db():
    return get_database()


def build_thread(comments: List[Dict[str, Any]], authors: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Nest replies under their parents, oldest first at every level.

    Replies whose parent is missing are shown at the top level.
    """
    by_id = {}
    for comment in comments:
        author_id = comment.get("author")
        author = authors.get(author_id) if author_id else None
        by_id[comment["id"]] = {
            **comment,
            "author": author or {**UNKNOWN_USER, "id": author_id},
            "replies": [],
        }

    roots = []
    for comment in sorted(by_id.values(), key=lambda c: c.get("created_at") or ""):
        parent = by_id.get(comment.get("parent_comment"))
        if parent is not None:
            parent["replies"].append(comment)
        else:
            roots.append(comment)
    return roots


def collect_reply_ids(db, comment_id: str) -> List[str]:
    """Every descendant of ``comment_id``"""
    found = []
    frontier = [comment_id]
    while frontier:
        children = [c["id"] for c in db.comments.find({"parent_comment": {"$in": frontier}}, {"_id": 0, "id": 1})]
        children = [c for c in children if c not in found]
        found.extend(children)
        frontier = children
    return found


def clean_content(raw) -> str:
    content = raw.strip() if isinstance(raw, str) else ""
    if not content:
        raise HTTPException(status_code=400, detail="Comment content is required")
    if len(content) > MAX_COMMENT_LENGTH:
        raise HTTPException(status_code=400, detail=f"Comment must be at most {MAX_COMMENT_LENGTH} characters")
    return content


async def get_comments_handler(request: Request, album_id: str, token: str):
    """Threaded comments for an album with authors filled in"""
    try:
        verify_token(token)
        db = get_db()

        if not db.albums.find_one({"id": album_id}, {"_id": 1}):
            raise HTTPException(status_code=404, detail="Album not found")

        comments = list(db.comments.find({"album": album_id, "is_hidden": {"$ne": True}}, {"_id": 0}))
        authors = users_by_id(db, [c.get("author") for c in comments])
        return {"comments": build_thread(comments, authors), "count": len(comments)}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get comments: {str(e)}")


async def create_comment_handler(request: Request, album_id: str, comment_data: Dict[str, Any]):
    try:
        verify_token(comment_data.get("token", ""))
        db = get_db()

        content = clean_content(comment_data.get("content"))
        user = get_acting_user(db, comment_data.get("user_id"))

        album = db.albums.find_one({"id": album_id}, {"_id": 0, "id": 1, "title": 1, "artist": 1, "posted_by": 1, "group": 1})
        if not album:
            raise HTTPException(status_code=404, detail="Album not found")

        depth = 0
        parent = None
        parent_id = comment_data.get("parent_comment_id")
        if parent_id:
            parent = db.comments.find_one({"id": parent_id}, {"_id": 0})
            if not parent or parent.get("album") != album_id:
                raise HTTPException(status_code=400, detail="Parent comment not found on this album")
            depth = min(parent.get("depth", 0) + 1, MAX_DEPTH)

        now = now_iso()
        comment = {
            "schema_version": SCHEMA_VERSION,
            "id": new_id(),
            "content": content,
            "author": user["id"],
            "album": album_id,
            "parent_comment": parent_id if parent else None,
            "replies": [],
            "depth": depth,
            "likes": [],
            "is_hidden": False,
            "is_edited": False,
            "edited_at": None,
            "created_at": now,
            "updated_at": now,
        }
        db.comments.insert_one(comment)
        comment.pop("_id", None)

        db.albums.update_one({"id": album_id}, {"$addToSet": {"comments": comment["id"]}})
        if parent:
            db.comments.update_one({"id": parent_id}, {"$addToSet": {"replies": comment["id"]}})
        db.users.update_one({"id": user["id"]}, {"$inc": {"stats.comments_posted": 1}})

        recipient = parent.get("author") if parent else album.get("posted_by")
        if recipient and recipient != user["id"]:
            notify(
                db, recipient, "comment",
                f"{user['name']} commented",
                f"{user['name']} on {album.get('artist')} - {album.get('title')}: {content[:100]}",
                album=album_id, group=album.get("group"), from_user=user["id"],
            )

        comment["author"] = {k: user.get(k) for k in ("id", "name", "username", "image")}
        return {"comment": comment}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to create comment: {str(e)}")


async def update_comment_handler(request: Request, comment_id: str, update_data: Dict[str, Any]):
    """Authors edit the text of their own comment"""
    try:
        verify_token(update_data.get("token", ""))
        db = get_db()
        user = get_acting_user(db, update_data.get("user_id"))

        comment = db.comments.find_one({"id": comment_id}, {"_id": 0})
        if not comment:
            raise HTTPException(status_code=404, detail="Comment not found")
        if comment.get("author") != user["id"]:
            raise HTTPException(status_code=403, detail="You can only edit your own comments")

        content = clean_content(update_data.get("content"))
        now = now_iso()
        changes = {"content": content, "is_edited": True, "edited_at": now, "updated_at": now}
        db.comments.update_one({"id": comment_id}, {"$set": changes})
        comment.update(changes)
        return {"comment": comment}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to update comment: {str(e)}")


async def delete_comment_handler(request: Request, comment_id: str, token: str, user_id: str):
    """Delete a comment and every reply below it"""
    try:
        verify_token(token)
        db = get_db()
        user = get_acting_user(db, user_id)

        comment = db.comments.find_one({"id": comment_id}, {"_id": 0})
        if not comment:
            raise HTTPException(status_code=404, detail="Comment not found")
        if comment.get("author") != user["id"] and not is_admin(user):
            raise HTTPException(status_code=403, detail="Not allowed to delete this comment")

        doomed = [comment_id] + collect_reply_ids(db, comment_id)
        authors = Counter(c.get("author") for c in db.comments.find({"id": {"$in": doomed}}, {"_id": 0, "author": 1}))
        db.comments.delete_many({"id": {"$in": doomed}})
        for author_id, count in authors.items():
            decrement_stat(db, author_id, "comments_posted", count)

        if comment.get("parent_comment"):
            db.comments.update_one({"id": comment["parent_comment"]}, {"$pull": {"replies": comment_id}})
        if comment.get("album"):
            db.albums.update_one({"id": comment["album"]}, {"$pullAll": {"comments": doomed}})

        logger.info(f"🗑️  Comment {comment_id} deleted with {len(doomed) - 1} replies")
        return {"success": True, "deleted": len(doomed)}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to delete comment: {str(e)}")
