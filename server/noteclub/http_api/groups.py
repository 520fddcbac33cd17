import random
import string
import logging
from fastapi import Request, HTTPException
from typing import Dict, Any
from noteclub.db.connection import get_database
from noteclub.db.documents import new_id, now_iso, SCHEMA_VERSION, users_by_id
from noteclub.db import turn_order
from noteclub.db.turn_order import MembershipError
from noteclub.http_api.auth import verify_token, get_acting_user, is_admin, require_admin
from noteclub.http_api.turns import turn_summary, save_rotation
from noteclub.http_api.notifications import notify

logger = logging.getLogger(__name__)

INVITE_CODE_LENGTH = 6
INVITE_CODE_ALPHABET = string.ascii_uppercase + string.digits
EDITABLE_GROUP_FIELDS = {"name", "description", "is_private", "max_members", "turn_duration_days",
                         "allow_member_invites", "notify_on_new_albums"}


def get_db():
    return get_database()


def generate_invite_code(db) -> str:
    """Random uppercase code not used by any other group"""
    while True:
        code = "".join(random.choices(INVITE_CODE_ALPHABET, k=INVITE_CODE_LENGTH))
        if not db.groups.find_one({"invite_code": code}, {"_id": 1}):
            return code


def load_group(db, group_id: str) -> Dict[str, Any]:
    group = db.groups.find_one({"id": group_id}, {"_id": 0})
    if not group:
        raise HTTPException(status_code=404, detail="Group not found")
    return group


def is_group_admin(group: Dict[str, Any], user: Dict[str, Any]) -> bool:
    return user["id"] in group.get("admins", []) or is_admin(user)


def validate_group_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    cleaned = {}
    if "name" in fields:
        name = (fields["name"] or "").strip()
        if not name or len(name) > 100:
            raise HTTPException(status_code=400, detail="Group name must be 1-100 characters")
        cleaned["name"] = name
    if "description" in fields:
        description = (fields["description"] or "").strip()
        if len(description) > 500:
            raise HTTPException(status_code=400, detail="Description must be at most 500 characters")
        cleaned["description"] = description
    if "max_members" in fields:
        max_members = fields["max_members"]
        if not isinstance(max_members, int) or not 2 <= max_members <= 100:
            raise HTTPException(status_code=400, detail="max_members must be between 2 and 100")
        cleaned["max_members"] = max_members
    if "turn_duration_days" in fields:
        days = fields["turn_duration_days"]
        if not isinstance(days, int) or not 1 <= days <= 30:
            raise HTTPException(status_code=400, detail="turn_duration_days must be between 1 and 30")
        cleaned["turn_duration_days"] = days
    for flag in ("is_private", "allow_member_invites", "notify_on_new_albums"):
        if flag in fields:
            cleaned[flag] = bool(fields[flag])
    return cleaned


def group_detail(db, group: Dict[str, Any], user_id: str) -> Dict[str, Any]:
    """Group with populated members and its turn info"""
    members = users_by_id(db, group.get("members", []))
    detail = dict(group)
    detail["members"] = [members[uid] for uid in group.get("members", []) if uid in members]
    detail["turn"] = turn_summary(db, group, user_id)
    return detail


def usernames_for(db, user_ids) -> Dict[str, str]:
    return {uid: u.get("username", "") for uid, u in users_by_id(db, user_ids).items()}


async def get_groups_handler(request: Request, token: str, user_id: str):
    """Groups the member belongs to, newest first"""
    try:
        verify_token(token)
        db = get_db()
        get_acting_user(db, user_id)

        groups = list(db.groups.find({"members": user_id}, {"_id": 0}).sort("created_at", -1))
        for group in groups:
            group["member_count"] = len(group.get("members", []))
            group["is_admin"] = user_id in group.get("admins", [])
        return {"groups": groups, "count": len(groups)}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get groups: {str(e)}")


async def create_group_handler(request: Request, group_data: Dict[str, Any]):
    """New group: the creator is its only member, admin and turn order entry"""
    try:
        verify_token(group_data.get("token", ""))
        db = get_db()
        user = get_acting_user(db, group_data.get("user_id"))

        if not (group_data.get("name") or "").strip():
            raise HTTPException(status_code=400, detail="Group name is required")
        fields = validate_group_fields(group_data)

        now = now_iso()
        group = {
            "schema_version": SCHEMA_VERSION,
            "id": new_id(),
            "name": fields["name"],
            "description": fields.get("description", ""),
            "is_private": fields.get("is_private", False),
            "invite_code": generate_invite_code(db),
            "max_members": fields.get("max_members", 20),
            "members": [user["id"]],
            "admins": [user["id"]],
            "created_by": user["id"],
            "turn_order": [user["id"]],
            "current_turn_index": 0,
            "turn_duration_days": fields.get("turn_duration_days", 7),
            "last_turn_started_at": now,
            "total_albums_shared": 0,
            "allow_member_invites": fields.get("allow_member_invites", True),
            "notify_on_new_albums": fields.get("notify_on_new_albums", True),
            "created_at": now,
            "updated_at": now,
        }
        db.groups.insert_one(group)
        group.pop("_id", None)
        db.users.update_one({"id": user["id"]}, {"$addToSet": {"groups": group["id"]}})

        logger.info(f"Group {group['name']} created by {user['username']} ({group['invite_code']})")
        return {"group": group_detail(db, group, user["id"]), "message": "Group created successfully"}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to create group: {str(e)}")


async def get_group_handler(request: Request, group_id: str, token: str, user_id: str):
    try:
        verify_token(token)
        db = get_db()
        user = get_acting_user(db, user_id)
        group = load_group(db, group_id)

        if group.get("is_private") and user_id not in group.get("members", []) and not is_admin(user):
            raise HTTPException(status_code=403, detail="Access denied")

        return group_detail(db, group, user_id)

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get group: {str(e)}")


async def update_group_handler(request: Request, group_id: str, update_data: Dict[str, Any]):
    """Group admins change settings; membership and rotation are not editable here"""
    try:
        verify_token(update_data.get("token", ""))
        db = get_db()
        user = get_acting_user(db, update_data.get("user_id"))
        group = load_group(db, group_id)

        if not is_group_admin(group, user):
            raise HTTPException(status_code=403, detail="Admin access required")

        changes = validate_group_fields({k: v for k, v in update_data.items() if k in EDITABLE_GROUP_FIELDS})
        if not changes:
            raise HTTPException(status_code=400, detail="No editable fields provided")
        if changes.get("max_members", len(group["members"])) < len(group["members"]):
            raise HTTPException(status_code=400, detail="max_members cannot be below the current member count")

        changes["updated_at"] = now_iso()
        db.groups.update_one({"id": group_id}, {"$set": changes})
        group.update(changes)
        return group_detail(db, group, user["id"])

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to update group: {str(e)}")


async def delete_group_handler(request: Request, group_id: str, token: str, user_id: str):
    """Only the creator may delete a group; albums keep their history"""
    try:
        verify_token(token)
        db = get_db()
        user = get_acting_user(db, user_id)
        group = load_group(db, group_id)

        if group.get("created_by") != user["id"]:
            raise HTTPException(status_code=403, detail="Only the group creator can delete this group")

        db.groups.delete_one({"id": group_id})
        db.users.update_many({"groups": group_id}, {"$pull": {"groups": group_id}})
        logger.info(f"Group {group['name']} deleted by {user['username']}")
        return {"success": True, "message": "Group deleted successfully"}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to delete group: {str(e)}")


async def join_group_handler(request: Request, join_data: Dict[str, Any]):
    """Join by invite code; the member is slotted into the turn order by username"""
    try:
        verify_token(join_data.get("token", ""))
        db = get_db()
        user = get_acting_user(db, join_data.get("user_id"))

        invite_code = (join_data.get("invite_code") or "").strip().upper()
        if not invite_code:
            raise HTTPException(status_code=400, detail="Invite code is required")

        group = db.groups.find_one({"invite_code": invite_code}, {"_id": 0})
        if not group:
            raise HTTPException(status_code=404, detail="Invalid invite code")

        try:
            turn_order.add_member(group, user["id"], user["username"], usernames_for(db, group.get("turn_order", [])))
        except MembershipError as e:
            raise HTTPException(status_code=400, detail=str(e))

        save_rotation(db, group, members=group["members"])
        db.users.update_one({"id": user["id"]}, {"$addToSet": {"groups": group["id"]}})

        for admin_id in group.get("admins", []):
            notify(
                db, admin_id, "group_invite",
                f"{user['name']} joined {group['name']}",
                f"{user['name']} joined via invite code and was added to the turn order.",
                group=group["id"], from_user=user["id"],
            )

        logger.info(f"{user['username']} joined {group['name']}")
        return {"group": group_detail(db, group, user["id"]), "message": f"Successfully joined {group['name']}!"}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to join group: {str(e)}")


def _remove_from_group(db, group: Dict[str, Any], member_id: str):
    try:
        turn_order.drop_member(group, member_id)
    except MembershipError as e:
        raise HTTPException(status_code=400, detail=str(e))

    save_rotation(db, group, members=group["members"], admins=group.get("admins", []))
    db.users.update_one({"id": member_id}, {"$pull": {"groups": group["id"]}})


async def leave_group_handler(request: Request, group_id: str, leave_data: Dict[str, Any]):
    try:
        verify_token(leave_data.get("token", ""))
        db = get_db()
        user = get_acting_user(db, leave_data.get("user_id"))
        group = load_group(db, group_id)

        _remove_from_group(db, group, user["id"])
        logger.info(f"{user['username']} left {group['name']}")
        return {"success": True, "message": f"You left {group['name']}"}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to leave group: {str(e)}")


async def remove_member_handler(request: Request, group_id: str, member_id: str, token: str, user_id: str):
    """Group admins remove another member"""
    try:
        verify_token(token)
        db = get_db()
        user = get_acting_user(db, user_id)
        group = load_group(db, group_id)

        if not is_group_admin(group, user):
            raise HTTPException(status_code=403, detail="Admin access required")
        if member_id == group.get("created_by"):
            raise HTTPException(status_code=400, detail="The group creator cannot be removed")

        _remove_from_group(db, group, member_id)
        logger.info(f"{member_id} removed from {group['name']} by {user['username']}")
        return {"success": True, "group": group_detail(db, group, user["id"])}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to remove member: {str(e)}")


async def admin_update_group_handler(request: Request, group_id: str, update_data: Dict[str, Any]):
    """Site admins edit any group and may replace its whole membership.

    Replacing ``member_ids`` rebuilds the turn order alphabetically and keeps
    ``current_turn_index`` in range.
    """
    try:
        verify_token(update_data.get("token", ""))
        db = get_db()
        admin = require_admin(db, update_data.get("user_id"))
        group = load_group(db, group_id)

        changes = validate_group_fields({k: v for k, v in update_data.items() if k in EDITABLE_GROUP_FIELDS})
        if "max_members" in changes:
            group["max_members"] = changes["max_members"]

        previous_members = list(group.get("members", []))
        member_ids = update_data.get("member_ids")
        if member_ids is not None:
            if not isinstance(member_ids, list) or not all(isinstance(uid, str) for uid in member_ids):
                raise HTTPException(status_code=400, detail="member_ids must be a list of user ids")
            usernames = usernames_for(db, member_ids)
            unknown = [uid for uid in member_ids if uid not in usernames]
            if unknown:
                raise HTTPException(status_code=404, detail=f"Users not found: {', '.join(unknown)}")
            try:
                turn_order.replace_members(group, member_ids, usernames)
            except MembershipError as e:
                raise HTTPException(status_code=400, detail=str(e))
        elif changes.get("max_members", len(previous_members)) < len(previous_members):
            raise HTTPException(status_code=400, detail="max_members cannot be below the current member count")

        if not changes and member_ids is None:
            raise HTTPException(status_code=400, detail="No editable fields provided")

        save_rotation(db, group, members=group.get("members", []), admins=group.get("admins", []), **changes)
        group.update(changes)

        if member_ids is not None:
            added = [uid for uid in group["members"] if uid not in previous_members]
            removed = [uid for uid in previous_members if uid not in group["members"]]
            if added:
                db.users.update_many({"id": {"$in": added}}, {"$addToSet": {"groups": group_id}})
            if removed:
                db.users.update_many({"id": {"$in": removed}}, {"$pull": {"groups": group_id}})
            logger.info(f"👥 {admin['username']} set {group['name']} members: +{len(added)} -{len(removed)}")

        return {"success": True, "message": "Group updated successfully", "group": group_detail(db, group, admin["id"])}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to update group: {str(e)}")
