#!/usr/bin/env python3
"""
Members
Bulk activate or deactivate members by username, print the roster, and
reset a password (imported members arrive without a usable one).
Inactive members keep their place in every turn order but are skipped.
"""

import logging
from typing import List, Dict, Any
from noteclub.db.documents import now_iso
from noteclub.http_api.auth import set_password, MIN_PASSWORD_LENGTH
from noteclub.migrations.common import build_parser, setup_logging, announce_mode, resolve_db

logger = logging.getLogger(__name__)


def set_active(usernames: List[str], is_active: bool, db=None, apply: bool = False) -> Dict[str, Any]:
    db = resolve_db(db)
    announce_mode(apply)

    wanted = [u.strip().lower() for u in usernames if u.strip()]
    found = [u["username"] for u in db.users.find({"username": {"$in": wanted}}, {"_id": 0, "username": 1})]
    missing = sorted(set(wanted) - set(found))

    for username in sorted(found):
        logger.info(f"  {'✓' if is_active else '✗'} {username}")
    for username in missing:
        logger.warning(f"  ⚠️  Unknown username: {username}")

    modified = 0
    if apply and found:
        result = db.users.update_many(
            {"username": {"$in": found}},
            {"$set": {"is_active": is_active, "updated_at": now_iso()}}
        )
        modified = result.modified_count

    logger.info(f"✅ {'Updated' if apply else 'Would update'} {len(found)} users to {'active' if is_active else 'inactive'}")
    return {"matched": sorted(found), "missing": missing, "modified": modified}


def roster(db=None) -> Dict[str, List[str]]:
    db = resolve_db(db)
    active, inactive = [], []
    for user in db.users.find({}, {"_id": 0, "username": 1, "name": 1, "is_active": 1}).sort("name", 1):
        (active if user.get("is_active", True) else inactive).append(user["username"])

    logger.info(f"📊 Active users ({len(active)} total):")
    for username in active:
        logger.info(f"  ✓ {username}")
    logger.info(f"🚫 Inactive users ({len(inactive)} total):")
    for username in inactive:
        logger.info(f"  ✗ {username}")
    return {"active": active, "inactive": inactive}


def reset_password(username: str, new_password: str, db=None, apply: bool = False) -> bool:
    """Give one member a new password; returns whether the member exists"""
    if len(new_password or "") < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    db = resolve_db(db)
    announce_mode(apply)

    username = username.strip().lower()
    user = db.users.find_one({"username": username}, {"_id": 0, "id": 1, "password_hash": 1})
    if not user:
        logger.warning(f"  ⚠️  Unknown username: {username}")
        return False

    if not user.get("password_hash"):
        logger.info(f"  ℹ️  {username} has no password yet (imported account)")
    if apply:
        set_password(db, {"id": user["id"]}, new_password)
        logger.info(f"✅ Password reset for {username}")
    else:
        logger.info(f"🧪 Would reset the password for {username}")
    return True


if __name__ == "__main__":
    setup_logging()

    parser = build_parser("Manage members")
    parser.add_argument("command", choices=["activate", "deactivate", "roster", "reset-password"])
    parser.add_argument("usernames", nargs="*", help="Usernames to change")
    parser.add_argument("--password", help="New password for reset-password")
    args = parser.parse_args()

    if args.command == "roster":
        roster()
    elif args.command == "reset-password":
        if len(args.usernames) != 1 or not args.password:
            parser.error("reset-password needs exactly one username and --password")
        reset_password(args.usernames[0], args.password, apply=args.apply)
    else:
        if not args.usernames:
            parser.error(f"{args.command} needs at least one username")
        set_active(args.usernames, args.command == "activate", apply=args.apply)
        roster()
