#!/usr/bin/env python3
"""
Comment Reconciliation
Comments have lived in two places over time: embedded inside album documents
and as standalone documents in the comments collection. Standalone is the
canonical form. This command:

  1. analyzes both storage strategies
  2. migrates embedded comments into standalone documents
  3. removes duplicates created by earlier partial migrations
  4. relinks orphaned comments to the album they most likely belong to
  5. deletes orphans with too little data and lists the rest for review

Dry run by default; pass --apply to write.
"""

import re
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple, Any, Iterable
from noteclub.db.documents import new_id, to_iso, parse_iso, SCHEMA_VERSION
from noteclub.migrations.common import (
    build_parser, setup_logging, announce_mode, resolve_db, legacy_key,
)

logger = logging.getLogger(__name__)

DUPLICATE_WINDOW = timedelta(seconds=60)
AUTHOR_WINDOW = timedelta(days=7)
MIN_KEYWORD_LENGTH = 4
MIN_CONTENT_LENGTH = 10

# Common words that would match almost any album text
STOPWORDS = {
    "this", "that", "with", "have", "from", "they", "their", "there", "what",
    "when", "were", "been", "just", "like", "really", "album", "albums", "song",
    "songs", "music", "track", "tracks", "about", "into", "your", "some", "more",
    "than", "then", "them", "very", "good", "great", "love", "also", "only",
}

WORD_RE = re.compile(r"[^\W_]+")

# =============================================================================
# PURE HELPERS
# =============================================================================


def normalize_text(text: Optional[str]) -> str:
    return " ".join((text or "").lower().split())


def comment_date(comment: Dict[str, Any]) -> Optional[datetime]:
    return parse_iso(comment.get("created_at") or comment.get("posted_at")
                     or comment.get("createdAt") or comment.get("postedAt"))


def split_album_comments(album: Dict[str, Any]) -> Tuple[List[str], List[Dict[str, Any]]]:
    """Separate standalone comment ids from embedded comment documents"""
    ids, embedded = [], []
    for item in album.get("comments") or []:
        if isinstance(item, dict):
            embedded.append(item)
        else:
            ids.append(str(item))
    return ids, embedded


def embedded_to_standalone(album_id: str, embedded: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Standalone document for an embedded ``{content, postedBy, postedAt}`` comment"""
    content = (embedded.get("content") or embedded.get("text") or "").strip()
    if not content:
        return None

    created = to_iso(embedded.get("postedAt") or embedded.get("createdAt") or embedded.get("created_at"))
    author = embedded.get("postedBy") or embedded.get("author")
    return {
        "schema_version": SCHEMA_VERSION,
        "id": new_id(),
        "legacy_id": legacy_key(embedded.get("_id") or embedded.get("id")),
        "content": content[:2000],
        "author": legacy_key(author),
        "album": album_id,
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


def find_duplicates(comments: Iterable[Dict[str, Any]], window: timedelta = DUPLICATE_WINDOW) -> List[str]:
    """Ids of comments repeating an earlier one.

    Two comments are duplicates when they share album, author and normalized
    text and were written within ``window`` of each other. The earliest copy
    is kept.
    """
    groups: Dict[Tuple, List[Dict[str, Any]]] = {}
    for comment in comments:
        key = (comment.get("album"), comment.get("author"), normalize_text(comment.get("content")))
        groups.setdefault(key, []).append(comment)

    duplicates = []
    for members in groups.values():
        if len(members) < 2:
            continue
        dated = sorted(
            (c for c in members if comment_date(c)),
            key=lambda c: comment_date(c),
        )
        kept = None
        for comment in dated:
            if kept is not None and comment_date(comment) - comment_date(kept) <= window:
                duplicates.append(comment["id"])
            else:
                kept = comment
    return duplicates


def match_by_author_window(comment: Dict[str, Any], albums: Iterable[Dict[str, Any]],
                           window: timedelta = AUTHOR_WINDOW) -> Optional[Dict[str, Any]]:
    """Album by the comment's author posted closest to the comment, within ``window``"""
    author = comment.get("author")
    written = comment_date(comment)
    if not author or not written:
        return None

    best, best_gap = None, None
    for album in albums:
        if album.get("posted_by") != author:
            continue
        posted = parse_iso(album.get("posted_at"))
        if not posted:
            continue
        gap = abs(written - posted)
        if gap <= window and (best_gap is None or gap < best_gap):
            best, best_gap = album, gap
    return best


def keywords(text: Optional[str]) -> set:
    return {
        word for word in WORD_RE.findall((text or "").lower())
        if len(word) >= MIN_KEYWORD_LENGTH and word not in STOPWORDS
    }


def match_by_keywords(comment: Dict[str, Any], albums: Iterable[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """The single album whose title, artist or description shares a keyword with the comment"""
    wanted = keywords(comment.get("content"))
    if not wanted:
        return None

    matches = []
    for album in albums:
        album_words = keywords(" ".join(filter(None, [album.get("title"), album.get("artist"), album.get("description")])))
        if wanted & album_words:
            matches.append(album)
            if len(matches) > 1:
                return None
    return matches[0] if matches else None


def is_low_quality(comment: Dict[str, Any]) -> bool:
    content = (comment.get("content") or "").strip()
    return len(content) < MIN_CONTENT_LENGTH or not comment.get("author") or not comment_date(comment)


def relink_orphan(comment: Dict[str, Any], albums: List[Dict[str, Any]]) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    """Best album for an orphaned comment and the strategy that found it"""
    album = match_by_author_window(comment, albums)
    if album:
        return album, "author_window"
    album = match_by_keywords(comment, albums)
    if album:
        return album, "keywords"
    return None, None

# =============================================================================
# DATABASE PASSES
# =============================================================================


def analyze(db=None) -> Dict[str, Any]:
    """Counts for both comment storage strategies"""
    db = resolve_db(db)
    albums = list(db.albums.find({}, {"_id": 0, "id": 1, "title": 1, "artist": 1, "comments": 1}))
    album_ids = {a["id"] for a in albums}

    standalone_by_album: Dict[str, int] = {}
    orphaned = 0
    standalone = 0
    for comment in db.comments.find({}, {"_id": 0, "album": 1}):
        standalone += 1
        album_id = comment.get("album")
        if not album_id or album_id not in album_ids:
            orphaned += 1
        else:
            standalone_by_album[album_id] = standalone_by_album.get(album_id, 0) + 1

    embedded = 0
    with_embedded = 0
    mixed = []
    for album in albums:
        _, embedded_items = split_album_comments(album)
        if embedded_items:
            embedded += len(embedded_items)
            with_embedded += 1
            if standalone_by_album.get(album["id"]):
                mixed.append(album["id"])

    report = {
        "albums": len(albums),
        "standalone": standalone,
        "embedded": embedded,
        "albums_with_embedded": with_embedded,
        "orphaned": orphaned,
        "mixed": len(mixed),
        "mixed_album_ids": mixed,
    }
    logger.info(f"📚 Albums: {report['albums']}")
    logger.info(f"💬 Standalone comments: {standalone}")
    logger.info(f"📝 Embedded comments: {embedded} in {with_embedded} albums")
    logger.info(f"👻 Orphaned comments: {orphaned}")
    logger.info(f"🔀 Albums with both kinds: {len(mixed)}")
    return report


def migrate_embedded(db=None, apply: bool = False) -> int:
    """Turn embedded comments into standalone documents and keep only ids on the album"""
    db = resolve_db(db)
    migrated = 0
    for album in db.albums.find({}, {"_id": 0, "id": 1, "comments": 1, "title": 1}):
        ids, embedded = split_album_comments(album)
        if not embedded:
            continue
        for item in embedded:
            comment = embedded_to_standalone(album["id"], item)
            if not comment:
                continue
            if comment["legacy_id"] and db.comments.find_one({"legacy_id": comment["legacy_id"], "album": album["id"]}, {"_id": 1}):
                continue
            migrated += 1
            ids.append(comment["id"])
            if apply:
                db.comments.insert_one(comment)

        if apply:
            db.albums.update_one({"id": album["id"]}, {"$set": {"comments": ids}})
        logger.info(f"  ✅ {album.get('title')}: {len(embedded)} embedded comments")

    logger.info(f"📦 {'Migrated' if apply else 'Would migrate'} {migrated} embedded comments")
    return migrated


def deduplicate(db=None, apply: bool = False) -> int:
    db = resolve_db(db)
    comments = list(db.comments.find({}, {"_id": 0, "id": 1, "album": 1, "author": 1, "content": 1, "created_at": 1}))
    duplicates = find_duplicates(comments)
    if apply and duplicates:
        db.comments.delete_many({"id": {"$in": duplicates}})
        db.albums.update_many({}, {"$pullAll": {"comments": duplicates}})
    logger.info(f"🧹 {'Removed' if apply else 'Would remove'} {len(duplicates)} duplicate comments")
    return len(duplicates)


def relink_orphans(db=None, apply: bool = False) -> Dict[str, Any]:
    """Reattach or clean up comments whose album is missing"""
    db = resolve_db(db)
    albums = list(db.albums.find({}, {"_id": 0, "id": 1, "title": 1, "artist": 1, "description": 1,
                                      "posted_by": 1, "posted_at": 1}))
    album_ids = {a["id"] for a in albums}

    report: Dict[str, Any] = {"author_window": 0, "keywords": 0, "deleted": 0, "manual_review": []}
    for comment in db.comments.find({}, {"_id": 0}):
        if comment.get("album") in album_ids:
            continue

        album, strategy = relink_orphan(comment, albums)
        if album:
            report[strategy] += 1
            logger.info(f"  🔗 {comment['id']} -> {album.get('title')} ({strategy})")
            if apply:
                db.comments.update_one({"id": comment["id"]}, {"$set": {"album": album["id"]}})
                db.albums.update_one({"id": album["id"]}, {"$addToSet": {"comments": comment["id"]}})
        elif is_low_quality(comment):
            report["deleted"] += 1
            logger.info(f"  🗑️  {comment['id']} has too little data: {comment.get('content')!r}")
            if apply:
                db.comments.delete_one({"id": comment["id"]})
        else:
            report["manual_review"].append(comment["id"])
            logger.info(f"  ⚠️  Needs review: {comment['id']} {(comment.get('content') or '')[:50]!r}")

    logger.info(
        f"📊 Orphans: {report['author_window']} matched by author/time, {report['keywords']} by text, "
        f"{report['deleted']} {'deleted' if apply else 'to delete'}, {len(report['manual_review'])} for review"
    )
    return report


def reconcile(db=None, apply: bool = False) -> Dict[str, Any]:
    db = resolve_db(db)
    announce_mode(apply)
    before = analyze(db)
    result = {
        "before": before,
        "migrated": migrate_embedded(db, apply),
        "duplicates": deduplicate(db, apply),
        "orphans": relink_orphans(db, apply),
    }
    if apply:
        result["after"] = analyze(db)
    logger.info("✅ Comment reconciliation complete")
    return result


if __name__ == "__main__":
    setup_logging()

    parser = build_parser("Reconcile embedded and standalone comments")
    parser.add_argument("command", nargs="?", default="run", choices=["analyze", "run"],
                        help="analyze only, or run every pass")
    args = parser.parse_args()

    if args.command == "analyze":
        analyze()
    else:
        reconcile(apply=args.apply)
