import os
import logging
from fastapi import Request, HTTPException
from typing import Optional, Dict, Any, List
from noteclub.db.connection import get_database
from noteclub.db.documents import now_iso, users_by_id, UNKNOWN_USER
from noteclub.db import turn_order
from noteclub.db.turn_order import MembershipError
from noteclub.http_api.auth import verify_token, get_acting_user, require_admin

logger = logging.getLogger(__name__)

# Group used when a request does not name one, in order of preference
DEFAULT_GROUP_NAMES = [
    os.getenv("DEFAULT_GROUP_NAME", "Note Club"),
    "Original Note Club",
    "NoteClub OGs",
]


def get_db():
    return get_database()


def find_group(db, group_id: Optional[str] = None, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Resolve the group a turn request is about.

    An explicit ``group_id`` wins, then the first group the user belongs to,
    then a group carrying one of the default names.
    """
    if group_id:
        return db.groups.find_one({"id": group_id}, {"_id": 0})

    if user_id:
        group = db.groups.find_one({"members": user_id}, {"_id": 0}, sort=[("created_at", 1)])
        if group:
            return group

    for name in DEFAULT_GROUP_NAMES:
        group = db.groups.find_one({"name": name}, {"_id": 0})
        if group:
            return group
    return None


def active_member_ids(db, group: Dict[str, Any]) -> List[str]:
    ids = group.get("turn_order", [])
    if not ids:
        return []
    cursor = db.users.find({"id": {"$in": ids}, "is_active": {"$ne": False}}, {"_id": 0, "id": 1})
    return [u["id"] for u in cursor]


def save_rotation(db, group: Dict[str, Any], **extra):
    """Write the rotation fields of ``group`` back to the database"""
    fields = {
        "turn_order": group.get("turn_order", []),
        "current_turn_index": group.get("current_turn_index", 0),
        "updated_at": now_iso(),
    }
    fields.update(extra)
    db.groups.update_one({"id": group["id"]}, {"$set": fields})


def turn_summary(db, group: Dict[str, Any], user_id: Optional[str] = None) -> Dict[str, Any]:
    """Whose turn it is, who is next, who posted last and the ordered roster"""
    rotation = group.get("turn_order", [])
    members = users_by_id(db, rotation)
    active = [uid for uid in rotation if members.get(uid, {}).get("is_active", True) and uid in members]

    current_id = turn_order.current_turn_user_id(group, active)
    next_id = turn_order.next_turn_user_id(group, active)
    last_id = turn_order.last_poster_id(group)

    ordered = []
    for position, uid in enumerate(rotation):
        member = members.get(uid)
        if not member:
            continue
        ordered.append({
            **member,
            "position": position,
            "is_active": member.get("is_active", True),
            "is_current_turn": uid == current_id,
        })

    return {
        "group_id": group["id"],
        "group_name": group.get("name"),
        "is_my_turn": bool(user_id) and current_id == user_id,
        "current_turn_user": members.get(current_id) if current_id else None,
        "next_turn_user": members.get(next_id) if next_id else None,
        "last_poster": members.get(last_id, UNKNOWN_USER) if last_id else None,
        "current_turn_index": group.get("current_turn_index", 0),
        "total_members": len(group.get("members", [])),
        "active_members": len(active),
        "turn_order": ordered,
    }


async def get_turn_status_handler(request: Request, token: str, user_id: str, group_id: Optional[str] = None):
    """Turn status for the requesting member"""
    try:
        verify_token(token)
        db = get_db()
        get_acting_user(db, user_id)

        group = find_group(db, group_id, user_id)
        if not group:
            raise HTTPException(status_code=404, detail="Group not found")

        return turn_summary(db, group, user_id)

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get turn status: {str(e)}")


async def admin_advance_turn_handler(request: Request, turn_data: Dict[str, Any]):
    """Skip ahead: the member after the last poster is treated as having posted"""
    try:
        verify_token(turn_data.get("token", ""))
        db = get_db()
        require_admin(db, turn_data.get("user_id"))

        group = find_group(db, turn_data.get("group_id"))
        if not group:
            raise HTTPException(status_code=404, detail="Group not found")
        if not group.get("turn_order"):
            raise HTTPException(status_code=400, detail="Group has no turn order")

        previous_index = group.get("current_turn_index", 0)
        turn_order.advance_turn(group)
        save_rotation(db, group, last_turn_started_at=now_iso())
        logger.info(f"⏭️  Advanced turn in {group['name']}: {previous_index} -> {group['current_turn_index']}")

        summary = turn_summary(db, group)
        current = summary["current_turn_user"] or UNKNOWN_USER
        return {
            "success": True,
            "message": f"Turn advanced. {current.get('name')}'s turn now.",
            "previous_index": previous_index,
            **summary,
        }

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to advance turn: {str(e)}")


async def admin_set_turn_handler(request: Request, turn_data: Dict[str, Any]):
    """Mark a specific member as the last poster; the next active member is up"""
    try:
        verify_token(turn_data.get("token", ""))
        db = get_db()
        require_admin(db, turn_data.get("user_id"))

        target_id = turn_data.get("target_user_id")
        if not target_id:
            raise HTTPException(status_code=400, detail="target_user_id is required")

        group = find_group(db, turn_data.get("group_id"))
        if not group:
            raise HTTPException(status_code=404, detail="Group not found")

        target = db.users.find_one({"id": target_id}, {"_id": 0, "id": 1, "name": 1, "username": 1})
        if not target:
            raise HTTPException(status_code=404, detail=f"User not found: {target_id}")

        previous_index = group.get("current_turn_index", 0)
        try:
            turn_order.set_last_poster(group, target_id)
        except MembershipError as e:
            raise HTTPException(status_code=400, detail=str(e))

        save_rotation(db, group, last_turn_started_at=now_iso())
        logger.info(f"🎯 Last poster in {group['name']} set to {target['username']}")

        summary = turn_summary(db, group)
        current = summary["current_turn_user"] or UNKNOWN_USER
        return {
            "success": True,
            "message": f"Turn set to {target['name']}. {current.get('name')}'s turn now.",
            "previous_index": previous_index,
            **summary,
        }

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to set turn: {str(e)}")


async def admin_turn_state_handler(request: Request, token: str, user_id: str, group_id: Optional[str] = None):
    """Raw rotation state for debugging a group's turn order"""
    try:
        verify_token(token)
        db = get_db()
        require_admin(db, user_id)

        group = find_group(db, group_id)
        if not group:
            raise HTTPException(status_code=404, detail="Group not found")

        rotation = group.get("turn_order", [])
        members = users_by_id(db, rotation)
        index = group.get("current_turn_index", 0)
        details = []
        for position, uid in enumerate(rotation):
            member = members.get(uid)
            details.append({
                "position": position,
                "user_id": uid,
                "name": member.get("name") if member else None,
                "username": member.get("username") if member else None,
                "is_active": member.get("is_active", True) if member else None,
                "missing": member is None,
                "is_last_poster": position == index,
            })

        active = [uid for uid in rotation if members.get(uid, {}).get("is_active", True) and uid in members]
        return {
            "group_id": group["id"],
            "group_name": group.get("name"),
            "current_turn_index": index,
            "index_in_range": 0 <= index < len(rotation) if rotation else index == 0,
            "current_turn_user_id": turn_order.current_turn_user_id(group, active),
            "next_turn_user_id": turn_order.next_turn_user_id(group, active),
            "turn_order": details,
        }

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get turn state: {str(e)}")


async def admin_list_groups_handler(request: Request, token: str, user_id: str):
    """Every group with its member count and turn info (admin only)"""
    try:
        verify_token(token)
        db = get_db()
        require_admin(db, user_id)

        groups = []
        for group in db.groups.find({}, {"_id": 0}).sort("name", 1):
            summary = turn_summary(db, group)
            groups.append({
                "id": group["id"],
                "name": group.get("name"),
                "invite_code": group.get("invite_code"),
                "member_count": len(group.get("members", [])),
                "total_albums_shared": group.get("total_albums_shared", 0),
                "current_turn_index": summary["current_turn_index"],
                "current_turn_user": summary["current_turn_user"],
                "next_turn_user": summary["next_turn_user"],
                "turn_order": summary["turn_order"],
            })
        return {"groups": groups, "count": len(groups)}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get groups: {str(e)}")
