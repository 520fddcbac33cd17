"""
Turn rotation for a group

A group keeps its members in ``turn_order`` (alphabetical by username) and
``current_turn_index`` points at the member who posted last. Whose turn it is
gets derived from that index by walking forward past inactive members.

Every function here works on a plain group dict and never touches the
database; the HTTP handlers load the group, call these, and write back.
"""

from typing import Dict, Iterable, List, Optional


class MembershipError(ValueError):
    """Raised when a membership change is not allowed"""


def _walk_to_active(turn_order: List[str], start: int, active_ids) -> int:
    """First index at or after ``start`` (wrapping) held by an active member.

    Falls back to ``start`` itself when nobody in the rotation is active.
    """
    size = len(turn_order)
    for step in range(size):
        index = (start + step) % size
        if turn_order[index] in active_ids:
            return index
    return start


def find_turn_index(group: Dict, user_id: str) -> int:
    turn_order = group.get("turn_order", [])
    try:
        return turn_order.index(user_id)
    except ValueError:
        return -1


def record_user_posted(group: Dict, user_id: str) -> bool:
    """Mark ``user_id`` as the last poster. False if they are not in the rotation."""
    index = find_turn_index(group, user_id)
    if index == -1:
        return False
    group["current_turn_index"] = index
    return True


def current_turn_index(group: Dict, active_ids: Iterable[str]) -> Optional[int]:
    """Index of the member whose turn it is, or None for an empty rotation"""
    turn_order = group.get("turn_order", [])
    if not turn_order:
        return None
    active = set(active_ids)
    start = (group.get("current_turn_index", 0) + 1) % len(turn_order)
    return _walk_to_active(turn_order, start, active)


def next_turn_index(group: Dict, active_ids: Iterable[str]) -> Optional[int]:
    """Index of the member who goes after the current one"""
    active = set(active_ids)
    current = current_turn_index(group, active)
    if current is None:
        return None
    turn_order = group["turn_order"]
    start = (current + 1) % len(turn_order)
    return _walk_to_active(turn_order, start, active)


def current_turn_user_id(group: Dict, active_ids: Iterable[str]) -> Optional[str]:
    index = current_turn_index(group, active_ids)
    return None if index is None else group["turn_order"][index]


def next_turn_user_id(group: Dict, active_ids: Iterable[str]) -> Optional[str]:
    index = next_turn_index(group, active_ids)
    return None if index is None else group["turn_order"][index]


def last_poster_id(group: Dict) -> Optional[str]:
    turn_order = group.get("turn_order", [])
    index = group.get("current_turn_index", 0)
    if not turn_order or index >= len(turn_order):
        return None
    return turn_order[index]


def insert_member(group: Dict, user_id: str, username: str, usernames: Dict[str, str]) -> int:
    """Insert ``user_id`` at its alphabetical slot and return that slot.

    ``usernames`` maps the ids already in the rotation to their usernames.
    Equal usernames go after the existing ones. If the slot is at or before
    ``current_turn_index`` the index moves up so it keeps pointing at the
    same member.
    """
    turn_order = group.setdefault("turn_order", [])
    was_empty = not turn_order

    insert_at = len(turn_order)
    for position, existing_id in enumerate(turn_order):
        if username < usernames.get(existing_id, ""):
            insert_at = position
            break

    turn_order.insert(insert_at, user_id)

    current = group.get("current_turn_index", 0)
    if not was_empty and insert_at <= current:
        group["current_turn_index"] = current + 1
    else:
        group["current_turn_index"] = current
    return insert_at


def remove_member(group: Dict, user_id: str) -> int:
    """Take ``user_id`` out of the rotation, returning its old slot (-1 if absent)"""
    turn_order = group.get("turn_order", [])
    index = find_turn_index(group, user_id)
    if index == -1:
        return -1

    turn_order.pop(index)
    current = group.get("current_turn_index", 0)
    if index < current:
        group["current_turn_index"] = current - 1
    elif index == current and current >= len(turn_order):
        group["current_turn_index"] = 0
    return index


def advance_turn(group: Dict) -> Optional[int]:
    """Move the last-poster marker one slot forward (admin override)"""
    turn_order = group.get("turn_order", [])
    if not turn_order:
        return None
    group["current_turn_index"] = (group.get("current_turn_index", 0) + 1) % len(turn_order)
    return group["current_turn_index"]


def set_last_poster(group: Dict, user_id: str) -> int:
    """Admin override: pretend ``user_id`` posted last"""
    index = find_turn_index(group, user_id)
    if index == -1:
        raise MembershipError("User is not in the turn order for this group")
    group["current_turn_index"] = index
    return index


def add_member(group: Dict, user_id: str, username: str, usernames: Dict[str, str]) -> int:
    members = group.setdefault("members", [])
    if user_id in members:
        raise MembershipError("User is already a member")
    if len(members) >= group.get("max_members", 20):
        raise MembershipError("Group is at maximum capacity")

    members.append(user_id)
    return insert_member(group, user_id, username, usernames)


def drop_member(group: Dict, user_id: str) -> int:
    members = group.get("members", [])
    if user_id not in members:
        raise MembershipError("User is not a member")

    members.remove(user_id)
    admins = group.get("admins", [])
    if user_id in admins:
        admins.remove(user_id)
    return remove_member(group, user_id)


def replace_members(group: Dict, member_ids: List[str], usernames: Dict[str, str]) -> List[str]:
    """Admin override: make ``member_ids`` the whole membership.

    The turn order is rebuilt alphabetically by username. The last poster
    keeps the marker when they stay in the group; otherwise an index past the
    end drops back to 0. Admins who left are dropped from ``admins``.
    Returns the new turn order.
    """
    member_ids = list(dict.fromkeys(member_ids))
    if len(member_ids) > group.get("max_members", 20):
        raise MembershipError("Group is at maximum capacity")

    last_poster = last_poster_id(group)
    rotation = sorted(member_ids, key=lambda uid: usernames.get(uid, ""))

    group["members"] = member_ids
    group["admins"] = [uid for uid in group.get("admins", []) if uid in member_ids]
    group["turn_order"] = rotation

    if last_poster in rotation:
        group["current_turn_index"] = rotation.index(last_poster)
    elif group.get("current_turn_index", 0) >= len(rotation):
        group["current_turn_index"] = 0
    return rotation
