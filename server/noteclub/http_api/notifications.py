import logging
from fastapi import Request, HTTPException
from typing import Optional, Dict, Any, List
from noteclub.db.connection import get_database
from noteclub.db.documents import new_id, now_iso, SCHEMA_VERSION
from noteclub.http_api.auth import verify_token, get_acting_user
from noteclub.ws.router import send_notification

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = {"turn_reminder", "new_album", "group_invite", "theme_change", "comment", "like"}

# Which user notification_settings flag gates each type
SETTING_FOR_TYPE = {
    "turn_reminder": "turn_reminders",
    "new_album": "new_albums",
    "comment": "comments",
    "like": "likes",
    "theme_change": "new_themes",
}


def get_db():
    return get_database()


def wants_notification(user: Optional[Dict[str, Any]], notification_type: str) -> bool:
    if not user:
        return False
    setting = SETTING_FOR_TYPE.get(notification_type)
    if not setting:
        return True
    settings = user.get("notification_settings")
    if not isinstance(settings, dict):
        return True
    return settings.get(setting, True) is not False


def create_notification(db, user_id: str, notification_type: str, title: str, message: str,
                        album: Optional[str] = None, group: Optional[str] = None,
                        theme: Optional[str] = None, from_user: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Store a notification and push it over the WebSocket if the user is online.

    Returns the stored document, or None when the user opted out.
    """
    if notification_type not in NOTIFICATION_TYPES:
        raise ValueError(f"Unknown notification type: {notification_type}")

    user = db.users.find_one({"id": user_id}, {"_id": 0, "notification_settings": 1})
    if not wants_notification(user, notification_type):
        return None

    doc = {
        "schema_version": SCHEMA_VERSION,
        "id": new_id(),
        "user": user_id,
        "title": title[:100],
        "message": message[:500],
        "type": notification_type,
        "album": album,
        "group": group,
        "theme": theme,
        "from_user": from_user,
        "is_read": False,
        "is_delivered": False,
        "read_at": None,
        "created_at": now_iso(),
    }
    db.notifications.insert_one(doc)
    doc.pop("_id", None)

    if send_notification(user_id, doc):
        db.notifications.update_one({"id": doc["id"]}, {"$set": {"is_delivered": True}})
        doc["is_delivered"] = True
    return doc


def notify(db, user_id: str, notification_type: str, title: str, message: str, **refs) -> Optional[Dict[str, Any]]:
    """Like ``create_notification`` but logs failures instead of raising.

    Used after the triggering write has been committed, so a broken
    notification never turns a successful action into a 500.
    """
    try:
        return create_notification(db, user_id, notification_type, title, message, **refs)
    except Exception as e:
        logger.error(f"Failed to notify {user_id}: {e}")
        return None


def notify_many(db, user_ids: List[str], notification_type: str, title: str, message: str, **refs) -> int:
    """Fan a notification out to several members; failures are logged, not raised"""
    return sum(1 for user_id in user_ids if notify(db, user_id, notification_type, title, message, **refs))


async def get_notifications_handler(request: Request, token: str, user_id: str, limit: int = 50, unread_only: bool = False):
    """List a member's notifications, newest first, with the unread count"""
    verify_token(token)
    try:
        db = get_db()
        get_acting_user(db, user_id)

        query: Dict[str, Any] = {"user": user_id}
        if unread_only:
            query["is_read"] = False

        notifications = list(
            db.notifications.find(query, {"_id": 0}).sort("created_at", -1).limit(max(1, min(limit, 200)))
        )
        unread_count = db.notifications.count_documents({"user": user_id, "is_read": False})

        return {"notifications": notifications, "unread_count": unread_count}
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get notifications: {str(e)}")


async def update_notifications_handler(request: Request, update_data: Dict[str, Any]):
    """Mark notifications read (specific ids, or everything when none given)"""
    verify_token(update_data.get("token", ""))
    try:
        db = get_db()
        user_id = update_data.get("user_id")
        get_acting_user(db, user_id)

        if update_data.get("action") != "mark_read":
            raise HTTPException(status_code=400, detail="Invalid action")

        query: Dict[str, Any] = {"user": user_id, "is_read": False}
        notification_ids = update_data.get("notification_ids")
        if notification_ids:
            query["id"] = {"$in": list(notification_ids)}

        result = db.notifications.update_many(query, {"$set": {"is_read": True, "read_at": now_iso()}})
        return {"success": True, "updated": result.modified_count}
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to update notifications: {str(e)}")
