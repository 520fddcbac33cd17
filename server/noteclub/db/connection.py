import os
import logging
from dotenv import load_dotenv
from pymongo import MongoClient
from typing import Optional

logger = logging.getLogger(__name__)

# Every entry point (API, job, migrations) reaches this module before reading
# its settings, so the repo-level .env is loaded here. Existing variables win.
load_dotenv(os.path.join(os.path.dirname(__file__), '..', '..', '..', '.env'))

# MongoDB configuration from environment variables
MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("MONGO_DATABASE", "note-club-modern")

# The legacy posts/noteclubs database is only touched by the migrations
LEGACY_MONGO_URL = os.getenv("LEGACY_MONGO_URL")
LEGACY_DATABASE_NAME = os.getenv("LEGACY_MONGO_DATABASE", "note-club")

_client: Optional[MongoClient] = None
_database = None
_legacy_client: Optional[MongoClient] = None


def get_mongodb_client() -> MongoClient:
    """Get MongoDB client instance (singleton pattern)"""
    global _client
    if _client is None:
        logger.info(f"Connecting to MongoDB: {MONGO_URL}")
        _client = MongoClient(MONGO_URL)

        try:
            _client.admin.command('ping')
            logger.info("✅ MongoDB connection successful")
        except Exception as e:
            logger.error(f"❌ MongoDB connection failed: {e}")
            raise

    return _client


def get_database():
    """Get MongoDB database instance"""
    global _database
    if _database is None:
        client = get_mongodb_client()
        _database = client[DATABASE_NAME]
        logger.info(f"📁 Using database: {DATABASE_NAME}")

    return _database


def set_database(database) -> None:
    """Point every handler at an already-open database (tests, one-off scripts)"""
    global _database
    _database = database


def get_legacy_database():
    """Get the legacy (posts/noteclubs) database, read by the migrations only"""
    global _legacy_client
    if not LEGACY_MONGO_URL:
        raise RuntimeError("LEGACY_MONGO_URL is not set")
    if _legacy_client is None:
        logger.info("Connecting to legacy MongoDB")
        _legacy_client = MongoClient(LEGACY_MONGO_URL)
    return _legacy_client[LEGACY_DATABASE_NAME]


def close_connection():
    """Close MongoDB connections"""
    global _client, _database, _legacy_client
    if _client:
        _client.close()
        _client = None
        logger.info("🔌 MongoDB connection closed")
    if _legacy_client:
        _legacy_client.close()
        _legacy_client = None
    _database = None
