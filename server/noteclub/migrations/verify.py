#!/usr/bin/env python3
"""
Verify
Collection counts and integrity checks after a migration. Read only.
"""

import logging
from typing import Dict, Any, List
from noteclub.db.init_collections import COLLECTIONS_CONFIG, validate_document
from noteclub.migrations.common import setup_logging, resolve_db

logger = logging.getLogger(__name__)


def collection_counts(db) -> Dict[str, int]:
    return {name: db[name].count_documents({}) for name in COLLECTIONS_CONFIG}


def integrity_problems(db) -> Dict[str, List[str]]:
    """Ids of documents that break a cross-collection invariant, keyed by check"""
    user_ids = {u["id"] for u in db.users.find({}, {"_id": 0, "id": 1})}
    album_ids = {a["id"] for a in db.albums.find({}, {"_id": 0, "id": 1})}

    problems: Dict[str, List[str]] = {
        "albums_without_poster": [],
        "comments_without_album": [],
        "turn_order_unknown_users": [],
        "turn_index_out_of_range": [],
        "members_missing_from_turn_order": [],
    }

    for album in db.albums.find({}, {"_id": 0, "id": 1, "posted_by": 1}):
        if album.get("posted_by") not in user_ids:
            problems["albums_without_poster"].append(album["id"])

    for comment in db.comments.find({}, {"_id": 0, "id": 1, "album": 1}):
        if comment.get("album") not in album_ids:
            problems["comments_without_album"].append(comment["id"])

    for group in db.groups.find({}, {"_id": 0}):
        rotation = group.get("turn_order", [])
        if any(uid not in user_ids for uid in rotation):
            problems["turn_order_unknown_users"].append(group["id"])
        index = group.get("current_turn_index", 0)
        if rotation and not 0 <= index < len(rotation):
            problems["turn_index_out_of_range"].append(group["id"])
        if set(group.get("members", [])) - set(rotation):
            problems["members_missing_from_turn_order"].append(group["id"])

    return problems


def schema_failures(db, sample: int = 0) -> Dict[str, int]:
    """Documents per collection failing JSON schema validation (0 = check all)"""
    failures = {}
    for name in COLLECTIONS_CONFIG:
        cursor = db[name].find({}, {"_id": 0})
        if sample:
            cursor = cursor.limit(sample)
        failures[name] = sum(1 for doc in cursor if not validate_document(name, doc))
    return failures


def verify(db=None, sample: int = 0) -> Dict[str, Any]:
    db = resolve_db(db)
    logger.info("🔍 Verifying data...")

    counts = collection_counts(db)
    for name, count in counts.items():
        logger.info(f"📊 {name}: {count} documents")

    problems = integrity_problems(db)
    for check, ids in problems.items():
        if ids:
            logger.warning(f"❌ {check}: {len(ids)} ({', '.join(ids[:5])}{'...' if len(ids) > 5 else ''})")
        else:
            logger.info(f"✅ {check}: none")

    failures = schema_failures(db, sample)
    for name, failed in failures.items():
        if failed:
            logger.warning(f"⚠️  {name}: {failed} documents fail schema validation")

    ok = not any(problems.values()) and not any(failures.values())
    logger.info("✅ Verification passed" if ok else "❌ Verification found problems")
    return {"counts": counts, "problems": problems, "schema_failures": failures, "ok": ok}


if __name__ == "__main__":
    import argparse

    setup_logging()

    parser = argparse.ArgumentParser(description="Verify migrated data")
    parser.add_argument("--sample", type=int, default=0, help="Only schema-check this many documents per collection")
    args = parser.parse_args()

    verify(sample=args.sample)
