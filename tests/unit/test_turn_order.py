import pytest

from noteclub.db import turn_order
from noteclub.db.turn_order import MembershipError


def make_group(order, index=0, members=None, max_members=20):
    return {
        "id": "g1",
        "name": "Test",
        "members": list(members if members is not None else order),
        "admins": [order[0]] if order else [],
        "turn_order": list(order),
        "current_turn_index": index,
        "max_members": max_members,
    }


def test_current_turn_is_member_after_last_poster():
    group = make_group(["a", "b", "c"], index=0)
    assert turn_order.current_turn_user_id(group, ["a", "b", "c"]) == "b"
    assert turn_order.next_turn_user_id(group, ["a", "b", "c"]) == "c"


def test_current_turn_wraps_around():
    group = make_group(["a", "b", "c"], index=2)
    assert turn_order.current_turn_user_id(group, ["a", "b", "c"]) == "a"


def test_inactive_members_are_skipped():
    group = make_group(["a", "b", "c", "d"], index=0)
    assert turn_order.current_turn_user_id(group, ["a", "c", "d"]) == "c"
    assert turn_order.next_turn_user_id(group, ["a", "c", "d"]) == "d"


def test_skipping_wraps_past_the_end():
    group = make_group(["a", "b", "c"], index=1)
    assert turn_order.current_turn_user_id(group, ["a", "b"]) == "a"
    assert turn_order.next_turn_user_id(group, ["a", "b"]) == "b"


def test_single_active_member_is_always_up():
    group = make_group(["a", "b", "c"], index=0)
    assert turn_order.current_turn_user_id(group, ["a"]) == "a"
    assert turn_order.next_turn_user_id(group, ["a"]) == "a"


def test_nobody_active_falls_back_to_slot_after_last_poster():
    group = make_group(["a", "b", "c"], index=0)
    assert turn_order.current_turn_user_id(group, []) == "b"


def test_empty_rotation_has_no_turn():
    group = make_group([], index=0, members=[])
    assert turn_order.current_turn_user_id(group, []) is None
    assert turn_order.next_turn_user_id(group, []) is None
    assert turn_order.last_poster_id(group) is None
    assert turn_order.advance_turn(group) is None


def test_record_user_posted_moves_marker():
    group = make_group(["a", "b", "c"], index=0)
    assert turn_order.record_user_posted(group, "b") is True
    assert group["current_turn_index"] == 1
    assert turn_order.last_poster_id(group) == "b"
    assert turn_order.current_turn_user_id(group, ["a", "b", "c"]) == "c"


def test_record_user_posted_ignores_unknown_user():
    group = make_group(["a", "b"], index=1)
    assert turn_order.record_user_posted(group, "zed") is False
    assert group["current_turn_index"] == 1


def test_insert_member_keeps_alphabetical_order():
    group = make_group(["a", "c"], index=0)
    usernames = {"a": "alice", "c": "carol"}
    slot = turn_order.insert_member(group, "b", "bob", usernames)
    assert slot == 1
    assert group["turn_order"] == ["a", "b", "c"]
    assert group["current_turn_index"] == 0


def test_insert_before_last_poster_shifts_index():
    group = make_group(["b", "c"], index=1)
    usernames = {"b": "bob", "c": "carol"}
    turn_order.insert_member(group, "a", "alice", usernames)
    assert group["turn_order"] == ["a", "b", "c"]
    assert group["current_turn_index"] == 2
    assert turn_order.last_poster_id(group) == "c"


def test_insert_at_last_poster_slot_shifts_index():
    group = make_group(["b", "c"], index=0)
    turn_order.insert_member(group, "a", "alice", {"b": "bob", "c": "carol"})
    assert turn_order.last_poster_id(group) == "b"


def test_equal_usernames_go_after_existing():
    group = make_group(["x"], index=0)
    turn_order.insert_member(group, "y", "sam", {"x": "sam"})
    assert group["turn_order"] == ["x", "y"]


def test_insert_into_empty_rotation():
    group = make_group([], index=0, members=[])
    assert turn_order.insert_member(group, "a", "alice", {}) == 0
    assert group["turn_order"] == ["a"]
    assert group["current_turn_index"] == 0


def test_remove_member_before_marker_shifts_index():
    group = make_group(["a", "b", "c"], index=2)
    assert turn_order.remove_member(group, "a") == 0
    assert group["turn_order"] == ["b", "c"]
    assert turn_order.last_poster_id(group) == "c"


def test_remove_last_poster_at_end_resets_index():
    group = make_group(["a", "b", "c"], index=2)
    turn_order.remove_member(group, "c")
    assert group["current_turn_index"] == 0


def test_remove_unknown_member_is_a_no_op():
    group = make_group(["a", "b"], index=1)
    assert turn_order.remove_member(group, "zed") == -1
    assert group["turn_order"] == ["a", "b"]


def test_advance_turn_wraps():
    group = make_group(["a", "b"], index=1)
    assert turn_order.advance_turn(group) == 0


def test_set_last_poster_requires_rotation_member():
    group = make_group(["a", "b", "c"], index=0)
    assert turn_order.set_last_poster(group, "c") == 2
    with pytest.raises(MembershipError):
        turn_order.set_last_poster(group, "zed")


def test_add_member_rejects_duplicates_and_full_groups():
    group = make_group(["a", "b"], index=0, max_members=3)
    usernames = {"a": "alice", "b": "bob"}
    turn_order.add_member(group, "c", "carol", usernames)
    assert group["members"] == ["a", "b", "c"]

    with pytest.raises(MembershipError, match="already a member"):
        turn_order.add_member(group, "c", "carol", usernames)
    with pytest.raises(MembershipError, match="maximum capacity"):
        turn_order.add_member(group, "d", "dave", usernames)


def test_drop_member_removes_admin_rights():
    group = make_group(["a", "b"], index=0)
    turn_order.drop_member(group, "a")
    assert group["members"] == ["b"]
    assert group["admins"] == []
    assert group["turn_order"] == ["b"]
    with pytest.raises(MembershipError):
        turn_order.drop_member(group, "a")


def test_replace_members_rebuilds_alphabetical_rotation():
    group = make_group(["a", "b", "c"], index=1)
    usernames = {"a": "alice", "b": "bob", "d": "dave", "z": "aaron"}
    rotation = turn_order.replace_members(group, ["d", "b", "z", "b"], usernames)

    assert rotation == ["z", "b", "d"]
    assert group["members"] == ["d", "b", "z"]
    assert group["admins"] == []
    assert group["current_turn_index"] == 1
    assert turn_order.last_poster_id(group) == "b"


def test_replace_members_clamps_index_when_last_poster_leaves():
    group = make_group(["a", "b", "c"], index=2)
    turn_order.replace_members(group, ["a", "b"], {"a": "alice", "b": "bob"})
    assert group["current_turn_index"] == 0

    group = make_group(["a", "b", "c"], index=2, max_members=2)
    with pytest.raises(MembershipError, match="maximum capacity"):
        turn_order.replace_members(group, ["a", "b", "c"], {})
