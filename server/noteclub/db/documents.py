"""Small helpers shared by every collection: ids, timestamps and projections"""

from datetime import datetime, timezone
from typing import Optional
from bson import ObjectId

SCHEMA_VERSION = 1

# Never leak Mongo's _id or credentials
PUBLIC_PROJECTION = {"_id": 0}
USER_PUBLIC_PROJECTION = {"_id": 0, "password_hash": 0, "salt": 0}
USER_SUMMARY_PROJECTION = {"_id": 0, "id": 1, "name": 1, "username": 1, "image": 1, "is_active": 1}

UNKNOWN_USER = {"id": None, "name": "Unknown", "username": "unknown", "image": None}


def new_id() -> str:
    """Mongo-style 24-hex id"""
    return str(ObjectId())


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_hex24(value) -> bool:
    if not isinstance(value, str) or len(value) != 24:
        return False
    try:
        int(value, 16)
        return True
    except ValueError:
        return False


def parse_iso(value) -> Optional[datetime]:
    """Parse an ISO timestamp (or pass a datetime through), always timezone-aware"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_iso(value) -> Optional[str]:
    parsed = parse_iso(value)
    return parsed.isoformat() if parsed else None


def users_by_id(db, user_ids) -> dict:
    """Fetch user summaries for a list of ids in one query"""
    ids = [uid for uid in set(user_ids) if uid]
    if not ids:
        return {}
    cursor = db.users.find({"id": {"$in": ids}}, USER_SUMMARY_PROJECTION)
    return {u["id"]: u for u in cursor}


def decrement_stat(db, user_id: str, stat: str, amount: int = 1) -> None:
    """Lower ``stats.<stat>`` by ``amount`` without going below zero"""
    if not user_id or amount <= 0:
        return
    field = f"stats.{stat}"
    result = db.users.update_one({"id": user_id, field: {"$gte": amount}}, {"$inc": {field: -amount}})
    if result.matched_count == 0:
        db.users.update_one({"id": user_id, field: {"$gt": 0}}, {"$set": {field: 0}})
