"""Helpers shared by the migration commands"""

import argparse
import logging
from typing import Optional
from noteclub.db.connection import get_database

logger = logging.getLogger(__name__)


def build_parser(description: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument("--apply", action="store_true", help="Write changes (default is a dry run)")
    return parser


def setup_logging():
    logging.basicConfig(level=logging.INFO, format='%(message)s')


def announce_mode(apply: bool):
    if apply:
        logger.info("✍️  APPLY mode - changes will be written")
    else:
        logger.info("🧪 DRY RUN - nothing will be written (pass --apply to write)")


def resolve_db(db=None):
    return db if db is not None else get_database()


def legacy_key(value) -> Optional[str]:
    """String form of a legacy reference (ObjectId, extended-JSON dict or plain string)"""
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("$oid") or value.get("_id") or value.get("id")
        if value is None:
            return None
    return str(value)
