"""
Connection to the MongoDB mirror and its collection names.

The client is created on first use, so the relational backend keeps working
when no MongoDB server is configured or reachable.
"""
import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from config import MONGODB_DB, MONGODB_TIMEOUT_MS, MONGODB_URI

logger = logging.getLogger(__name__)

PERSONS_COLLECTION = "persons"
VEHICLES_COLLECTION = "vehicles"
SERVICES_COLLECTION = "services"
RATINGS_COLLECTION = "ratings"
BOOKINGS_COLLECTION = "bookings"

# Cleared and refilled by every migration
ALL_COLLECTIONS = (
    PERSONS_COLLECTION,
    VEHICLES_COLLECTION,
    SERVICES_COLLECTION,
    RATINGS_COLLECTION,
    BOOKINGS_COLLECTION,
)

_client: Optional[AsyncIOMotorClient] = None


async def get_client() -> AsyncIOMotorClient:
    """
    Get a singleton MongoDB client instance.
    """
    global _client
    if _client is None:
        logger.info(f"Connecting to MongoDB database '{MONGODB_DB}'...")
        _client = AsyncIOMotorClient(MONGODB_URI, serverSelectionTimeoutMS=MONGODB_TIMEOUT_MS)
        logger.info("MongoDB client created")
    return _client


async def get_database() -> AsyncIOMotorDatabase:
    """Database holding the document mirror."""
    client = await get_client()
    return client[MONGODB_DB]


async def close_client():
    global _client
    if _client is not None:
        _client.close()
        logger.info("MongoDB connection closed")
        _client = None
