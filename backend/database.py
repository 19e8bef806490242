import logging
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import IndexModel
from config import settings

logger = logging.getLogger(__name__)

client: AsyncIOMotorClient = None
_db_instance = None


class _DbProxy:
    """
    Proxy transparent vers l'instance Motor.
    Permet aux services de faire `from database import db` AVANT connect_db().
    db.collection → délégué à _db_instance.collection au moment de l'appel.
    """
    def __getattr__(self, name):
        if _db_instance is None:
            raise RuntimeError("Database not connected. Call connect_db() first.")
        return getattr(_db_instance, name)

    def __getitem__(self, name):
        if _db_instance is None:
            raise RuntimeError("Database not connected. Call connect_db() first.")
        return _db_instance[name]


db = _DbProxy()


def use_database(instance) -> None:
    """Branche une base déjà construite (scripts, tests) à la place de connect_db()."""
    global _db_instance
    _db_instance = instance


async def connect_db():
    global client, _db_instance
    client = AsyncIOMotorClient(
        settings.MONGO_URL,
        serverSelectionTimeoutMS=5000,
        connectTimeoutMS=10000,
    )
    _db_instance = client[settings.DB_NAME]
    logger.info(f"Connected to MongoDB: {settings.DB_NAME}")
    try:
        await create_indexes()
    except Exception as e:
        logger.warning(f"Could not create indexes (non-blocking): {e}")


async def close_db():
    global client
    if client:
        client.close()
        logger.info("MongoDB connection closed")


INDEXES = {
    "users": [
        IndexModel([("user_id", 1)], unique=True),
        IndexModel([("role", 1)]),
        IndexModel([("driver_status", 1)]),
    ],
    "vendors": [
        IndexModel([("vendor_id", 1)], unique=True),
    ],
    "orders": [
        IndexModel([("order_id", 1)], unique=True),
        IndexModel([("order_number", 1)]),
        IndexModel([("status", 1)]),
        IndexModel([("assigned_driver_id", 1)]),
        IndexModel([("vendor_id", 1)]),
        IndexModel([("created_at", 1)]),
    ],
    "order_events": [
        IndexModel([("order_id", 1)]),
        IndexModel([("created_at", 1)]),
    ],
    # Une seule preuve par étape : la base refuse le doublon
    "order_confirmations": [
        IndexModel([("order_id", 1), ("kind", 1)], unique=True),
    ],
    "order_rejections": [
        IndexModel([("order_id", 1)]),
        IndexModel([("driver_id", 1)]),
    ],
    "driver_earnings": [
        IndexModel([("order_id", 1)], unique=True),
        IndexModel([("driver_id", 1)]),
    ],
    "notifications": [
        IndexModel([("user_id", 1)]),
        IndexModel([("created_at", 1)]),
    ],
}


async def create_indexes():
    for collection_name, index_models in INDEXES.items():
        try:
            await _db_instance[collection_name].create_indexes(index_models)
            logger.info(f"Indexes created for collection: {collection_name}")
        except Exception as e:
            logger.error(f"Failed to create indexes for collection {collection_name}: {e}")

    logger.info("All MongoDB indexes creation attempts completed.")
