#!/usr/bin/env python3
"""
Backups
JSON Lines dumps of collections, taken before a migration is applied and
restorable afterwards. When S3_BUCKET_NAME is set backups are also uploaded.

  python -m noteclub.migrations.backups backup [--collections albums comments]
  python -m noteclub.migrations.backups list
  python -m noteclub.migrations.backups restore <file or s3 key> [--apply]
"""

import os
import gzip
import logging
from datetime import datetime, timezone
from typing import List, Optional, Dict
from bson import json_util
from noteclub.db.init_collections import COLLECTIONS_CONFIG
from noteclub.storage.s3_service import get_s3_service, s3_configured
from noteclub.migrations.common import build_parser, setup_logging, announce_mode, resolve_db

logger = logging.getLogger(__name__)

BACKUP_DIR = os.getenv("BACKUP_DIR", "backups")
BACKUP_SUFFIX = ".jsonl.gz"


def backup_filename(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"noteclub-{now.strftime('%Y%m%dT%H%M%SZ')}{BACKUP_SUFFIX}"


def backup(db=None, collections: Optional[List[str]] = None, backup_dir: str = None,
           upload: Optional[bool] = None) -> str:
    """
    Dump collections to one gzipped JSON Lines file

    Each line is ``{"collection": <name>, "document": <doc>}`` in Mongo
    extended JSON, so ids and dates survive a round trip.

    Returns:
        str: path of the written file
    """
    db = resolve_db(db)
    collections = collections or list(COLLECTIONS_CONFIG.keys())
    backup_dir = backup_dir or BACKUP_DIR
    os.makedirs(backup_dir, exist_ok=True)
    path = os.path.join(backup_dir, backup_filename())

    counts: Dict[str, int] = {}
    with gzip.open(path, "wt", encoding="utf-8") as f:
        for name in collections:
            counts[name] = 0
            for doc in db[name].find({}):
                doc.pop("_id", None)
                f.write(json_util.dumps({"collection": name, "document": doc}) + "\n")
                counts[name] += 1
            logger.info(f"  💾 {name}: {counts[name]} documents")

    logger.info(f"✅ Backup written: {path}")

    if upload is None:
        upload = s3_configured()
    if upload:
        get_s3_service().upload_backup(path)
    return path


def list_backups(backup_dir: str = None) -> List[str]:
    backup_dir = backup_dir or BACKUP_DIR
    local = []
    if os.path.isdir(backup_dir):
        local = sorted(f for f in os.listdir(backup_dir) if f.endswith(BACKUP_SUFFIX))
    for name in local:
        logger.info(f"  📁 {os.path.join(backup_dir, name)}")
    if s3_configured():
        for key in get_s3_service().list_backups():
            logger.info(f"  ☁️  {key}")
    return local


def read_backup(path: str) -> Dict[str, List[dict]]:
    documents: Dict[str, List[dict]] = {}
    with gzip.open(path, "rt", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            entry = json_util.loads(line)
            documents.setdefault(entry["collection"], []).append(entry["document"])
    return documents


def fetch_backup(source: str, backup_dir: str = None) -> str:
    """Local path for ``source``, downloading it first when it is an S3 object key"""
    if os.path.isfile(source):
        return source

    key = source[len("s3://"):].split("/", 1)[-1] if source.startswith("s3://") else source
    if not s3_configured():
        raise FileNotFoundError(f"Backup not found locally and S3 is not configured: {source}")

    backup_dir = backup_dir or BACKUP_DIR
    os.makedirs(backup_dir, exist_ok=True)
    path = os.path.join(backup_dir, os.path.basename(key))
    if not get_s3_service().download_backup(key, path):
        raise FileNotFoundError(f"Could not download backup: {key}")
    return path


def restore(source: str, db=None, apply: bool = False, backup_dir: str = None) -> Dict[str, int]:
    """Replace the contents of every collection found in the backup.

    ``source`` is a local file or an S3 object key. A collection whose insert
    fails gets its previous documents back before the error is re-raised.
    """
    db = resolve_db(db)
    announce_mode(apply)
    path = fetch_backup(source, backup_dir)
    documents = read_backup(path)

    counts = {}
    for name, docs in documents.items():
        counts[name] = len(docs)
        existing = db[name].count_documents({})
        logger.info(f"  ♻️  {name}: {existing} current -> {len(docs)} from backup")
        if not apply:
            continue

        previous = list(db[name].find({}))
        db[name].delete_many({})
        try:
            if docs:
                db[name].insert_many(docs)
        except Exception as e:
            logger.error(f"❌ Restoring {name} failed, putting back {len(previous)} documents: {e}")
            db[name].delete_many({})
            if previous:
                db[name].insert_many(previous)
            raise

    logger.info(f"✅ Restore {'complete' if apply else 'dry run complete'}: {path}")
    return counts


if __name__ == "__main__":
    setup_logging()

    parser = build_parser("Back up and restore collections")
    parser.add_argument("command", choices=["backup", "list", "restore"])
    parser.add_argument("file", nargs="?", help="Backup file or S3 key to restore")
    parser.add_argument("--collections", nargs="+", help="Collections to back up (default: all)")
    parser.add_argument("--no-upload", action="store_true", help="Skip the S3 upload")
    args = parser.parse_args()

    if args.command == "backup":
        backup(collections=args.collections, upload=False if args.no_upload else None)
    elif args.command == "list":
        list_backups()
    else:
        if not args.file:
            parser.error("restore needs a backup file")
        restore(args.file, apply=args.apply)
