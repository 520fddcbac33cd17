#!/usr/bin/env python3
"""
MongoDB Collection Initialization Script
Creates collections, indexes and seed data for Note Club
"""

import os
import json
from pymongo import ASCENDING, DESCENDING
import logging
from typing import Dict, List
from noteclub.db.connection import get_database
from jsonschema import validate, ValidationError

logger = logging.getLogger(__name__)

# =============================================================================
# DATA STRUCTURE CONFIGURATION
# =============================================================================

SCHEMAS_DIR = os.path.join(os.path.dirname(__file__), 'schemas')

COLLECTION_SCHEMA_FILES = {
    'users': 'user.json',
    'groups': 'group.json',
    'albums': 'album.json',
    'comments': 'comment.json',
    'themes': 'theme.json',
    'notifications': 'notification.json',
}


def load_json_schema(collection_name: str) -> Dict:
    """Load the JSON schema for a collection from the bundled schemas directory"""
    file_name = COLLECTION_SCHEMA_FILES.get(collection_name)
    if not file_name:
        logger.warning(f"No schema mapping found for collection: {collection_name}")
        return {}

    schema_path = os.path.join(SCHEMAS_DIR, file_name)
    try:
        with open(schema_path, 'r') as f:
            return json.load(f)
    except FileNotFoundError:
        logger.warning(f"Schema file not found: {schema_path}")
        return {}
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON in schema file {schema_path}: {e}")
        return {}


JSON_SCHEMAS = {name: load_json_schema(name) for name in COLLECTION_SCHEMA_FILES}

COLLECTIONS_CONFIG = {
    "users": {
        "indexes": [
            {"fields": "id", "unique": True},
            {"fields": "email", "unique": True},
            {"fields": "username", "unique": True},
            {"fields": [("is_active", ASCENDING), ("username", ASCENDING)], "unique": False},
            {"fields": "role", "unique": False},
            {"fields": "legacy_id", "unique": False},
        ],
    },
    "groups": {
        "indexes": [
            {"fields": "id", "unique": True},
            {"fields": "invite_code", "unique": True},
            {"fields": "members", "unique": False},
            {"fields": "created_by", "unique": False},
            {"fields": "name", "unique": False},
        ],
    },
    "albums": {
        "indexes": [
            {"fields": "id", "unique": True},
            {"fields": [("group", ASCENDING), ("posted_at", DESCENDING)], "unique": False},
            {"fields": [("theme", ASCENDING), ("turn_number", ASCENDING)], "unique": False},
            {"fields": [("posted_by", ASCENDING), ("posted_at", DESCENDING)], "unique": False},
            {"fields": [("artist", ASCENDING), ("title", ASCENDING)], "unique": False},
            {"fields": [("is_approved", ASCENDING), ("is_hidden", ASCENDING)], "unique": False},
            {"fields": "legacy_id", "unique": False},
        ],
    },
    "comments": {
        "indexes": [
            {"fields": "id", "unique": True},
            {"fields": [("album", ASCENDING), ("created_at", DESCENDING)], "unique": False},
            {"fields": [("author", ASCENDING), ("created_at", DESCENDING)], "unique": False},
            {"fields": [("parent_comment", ASCENDING), ("created_at", ASCENDING)], "unique": False},
            {"fields": "legacy_id", "unique": False},
        ],
    },
    "themes": {
        "indexes": [
            {"fields": "id", "unique": True},
            {"fields": [("is_active", ASCENDING), ("start_date", DESCENDING)], "unique": False},
            {"fields": [("start_date", ASCENDING), ("end_date", ASCENDING)], "unique": False},
        ],
    },
    "notifications": {
        "indexes": [
            {"fields": "id", "unique": True},
            {"fields": [("user", ASCENDING), ("created_at", DESCENDING)], "unique": False},
            {"fields": [("user", ASCENDING), ("is_read", ASCENDING)], "unique": False},
            {"fields": "type", "unique": False},
        ],
    },
}

# Seed data: three members sharing the default group, alphabetical turn order
SAMPLE_DATA_TEMPLATES = {
    "users": [
        {
            "schema_version": 1,
            "id": "64c0a6f4e5b1a2c3d4e5f601",
            "username": "alice",
            "name": "Alice Archer",
            "email": "alice@noteclub.test",
            "password_hash": None,
            "role": "admin",
            "is_active": True,
            "stats": {"albums_posted": 0, "comments_posted": 0, "likes_given": 0, "likes_received": 0},
            "groups": ["64c0a6f4e5b1a2c3d4e5f700"],
            "created_at": "2024-01-15T10:30:00+00:00",
            "updated_at": "2024-01-15T10:30:00+00:00",
        },
        {
            "schema_version": 1,
            "id": "64c0a6f4e5b1a2c3d4e5f602",
            "username": "bob",
            "name": "Bob Baker",
            "email": "bob@noteclub.test",
            "password_hash": None,
            "role": "member",
            "is_active": True,
            "stats": {"albums_posted": 0, "comments_posted": 0, "likes_given": 0, "likes_received": 0},
            "groups": ["64c0a6f4e5b1a2c3d4e5f700"],
            "created_at": "2024-02-01T09:15:00+00:00",
            "updated_at": "2024-02-01T09:15:00+00:00",
        },
        {
            "schema_version": 1,
            "id": "64c0a6f4e5b1a2c3d4e5f603",
            "username": "carol",
            "name": "Carol Chen",
            "email": "carol@noteclub.test",
            "password_hash": None,
            "role": "member",
            "is_active": False,
            "stats": {"albums_posted": 0, "comments_posted": 0, "likes_given": 0, "likes_received": 0},
            "groups": ["64c0a6f4e5b1a2c3d4e5f700"],
            "created_at": "2024-02-03T18:00:00+00:00",
            "updated_at": "2024-02-03T18:00:00+00:00",
        },
    ],
    "groups": [
        {
            "schema_version": 1,
            "id": "64c0a6f4e5b1a2c3d4e5f700",
            "name": "Note Club",
            "description": "Default group for all Note Club members",
            "is_private": False,
            "invite_code": "DEFAULT",
            "max_members": 100,
            "members": ["64c0a6f4e5b1a2c3d4e5f601", "64c0a6f4e5b1a2c3d4e5f602", "64c0a6f4e5b1a2c3d4e5f603"],
            "admins": ["64c0a6f4e5b1a2c3d4e5f601"],
            "created_by": "64c0a6f4e5b1a2c3d4e5f601",
            "turn_order": ["64c0a6f4e5b1a2c3d4e5f601", "64c0a6f4e5b1a2c3d4e5f602", "64c0a6f4e5b1a2c3d4e5f603"],
            "current_turn_index": 0,
            "turn_duration_days": 7,
            "last_turn_started_at": None,
            "total_albums_shared": 0,
            "allow_member_invites": True,
            "notify_on_new_albums": True,
            "created_at": "2024-01-15T10:30:00+00:00",
            "updated_at": "2024-01-15T10:30:00+00:00",
        }
    ],
}

# =============================================================================
# VALIDATION FUNCTIONS
# =============================================================================


def validate_document(collection_name: str, document: Dict) -> bool:
    """
    Validate a document against its JSON schema

    Args:
        collection_name: Name of the collection
        document: Document to validate

    Returns:
        bool: True if valid, False otherwise
    """
    schema = JSON_SCHEMAS.get(collection_name)
    if not schema:
        logger.warning(f"No schema found for collection: {collection_name}")
        return True

    try:
        validate(instance=document, schema=schema)
        return True
    except ValidationError as e:
        logger.error(f"Validation error for {collection_name}: {e.message}")
        return False


def validate_sample_data() -> bool:
    """Validate all sample data against their schemas"""
    logger.info("🔍 Validating sample data against JSON schemas...")

    for collection_name, sample_data in SAMPLE_DATA_TEMPLATES.items():
        for i, document in enumerate(sample_data):
            if not validate_document(collection_name, document):
                logger.error(f"Sample data validation failed for {collection_name}[{i}]")
                return False

        logger.info(f"✅ Sample data validation passed for {collection_name}")

    return True

# =============================================================================
# INITIALIZATION FUNCTIONS
# =============================================================================


def init_mongodb(drop_existing: bool = False, insert_samples: bool = True, db=None):
    """
    Initialize MongoDB collections and indexes

    Args:
        drop_existing: Whether to drop existing collections
        insert_samples: Whether to insert sample data
        db: Database to initialize (defaults to the configured one)
    """
    try:
        db = db if db is not None else get_database()

        logger.info("🗄️  Initializing MongoDB collections...")

        if drop_existing:
            for collection_name in COLLECTIONS_CONFIG.keys():
                db[collection_name].drop()
                logger.info(f"🗑️  Dropped collection: {collection_name}")

        create_collections_and_indexes(db)

        if insert_samples:
            if not validate_sample_data():
                logger.error("❌ Sample data validation failed. Aborting initialization.")
                return False
            insert_sample_data(db)

        verify_setup(db)
        return True

    except Exception as e:
        logger.error(f"❌ Error initializing MongoDB: {e}")
        raise


def create_collections_and_indexes(db):
    """Create collections and their indexes based on configuration"""

    for collection_name, config in COLLECTIONS_CONFIG.items():
        collection = db[collection_name]

        logger.info(f"📁 Setting up collection: {collection_name}")

        for index_config in config["indexes"]:
            fields = index_config["fields"]
            unique = index_config.get("unique", False)

            try:
                collection.create_index(fields, unique=unique)
                logger.info(f"  ✅ Index created: {fields}")
            except Exception as e:
                logger.warning(f"  ⚠️  Index creation failed for {fields}: {e}")

        schema_fields = list(JSON_SCHEMAS.get(collection_name, {}).get("properties", {}).keys())
        logger.info(f"  📋 Schema fields: {schema_fields}")


def insert_sample_data(db):
    """Insert sample data based on templates"""

    for collection_name, sample_data in SAMPLE_DATA_TEMPLATES.items():
        collection = db[collection_name]

        # Only insert if collection is empty
        if collection.count_documents({}) == 0:
            try:
                collection.insert_many([dict(doc) for doc in sample_data])
                logger.info(f"✅ Sample data inserted into {collection_name}: {len(sample_data)} documents")
            except Exception as e:
                logger.warning(f"⚠️  Sample data insertion failed for {collection_name}: {e}")
        else:
            logger.info(f"⏭️  Skipping sample data for {collection_name} (not empty)")


def verify_setup(db):
    """Verify that collections were created properly"""
    collections = db.list_collection_names()

    logger.info("🔍 Verification Results:")

    for collection_name in COLLECTIONS_CONFIG.keys():
        if collection_name in collections:
            count = db[collection_name].count_documents({})
            indexes = list(db[collection_name].list_indexes())
            logger.info(f"  ✅ {collection_name}: {count} documents, {len(indexes)} indexes")
        else:
            logger.error(f"  ❌ {collection_name}: Collection not found!")


def get_collection_config(collection_name: str = None):
    """Get collection configuration(s)"""
    if collection_name:
        return COLLECTIONS_CONFIG.get(collection_name)
    return COLLECTIONS_CONFIG


def list_config() -> List[str]:
    lines = []
    for name, config in COLLECTIONS_CONFIG.items():
        schema_fields = list(JSON_SCHEMAS.get(name, {}).get("properties", {}).keys())
        lines.append(f"🗂️  Collection: {name}")
        lines.append(f"   Schema: {schema_fields}")
        lines.append(f"   Indexes: {len(config['indexes'])}")
        if name in SAMPLE_DATA_TEMPLATES:
            lines.append(f"   Sample Data: {len(SAMPLE_DATA_TEMPLATES[name])} documents")
    return lines

# =============================================================================
# MAIN EXECUTION
# =============================================================================

if __name__ == "__main__":
    import argparse

    logging.basicConfig(level=logging.INFO)

    parser = argparse.ArgumentParser(description="Initialize MongoDB collections")
    parser.add_argument("--drop", action="store_true", help="Drop existing collections")
    parser.add_argument("--no-samples", action="store_true", help="Skip sample data insertion")
    parser.add_argument("--list-config", action="store_true", help="List current configuration")

    args = parser.parse_args()

    if args.list_config:
        print("📋 Current Configuration:")
        for line in list_config():
            print(line)
    else:
        init_mongodb(
            drop_existing=args.drop,
            insert_samples=not args.no_samples
        )
