import re
import logging
from typing import Optional

import motor.motor_asyncio
from beanie import init_beanie

from merchant_pipeline.core.config import Settings
from merchant_pipeline.database.models import MerchantApplication, MerchantUpload, FileUploadRequest, AuditLog

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DOCUMENT_MODELS = [MerchantApplication, MerchantUpload, FileUploadRequest, AuditLog]

# Global database instance
database = None


def _mask_mongo_uri(uri: str) -> str:
    # Never log credentials embedded in the connection string
    m = re.match(r'(?P<prefix>mongodb(?:\+srv)?://)(?:(?P<creds>[^@]+)@)?(?P<rest>.+)', uri or "")
    if not m:
        return "mongodb://<redacted>"
    host_part = m.group('rest').split('/')[0]
    return f"{m.group('prefix')}***@{host_part}"


async def init_db(settings: Settings, client: Optional[motor.motor_asyncio.AsyncIOMotorClient] = None):
    """Connect to MongoDB and register the application document models.

    ``client`` may be supplied by callers that manage their own connection.
    """
    global database
    mongodb_uri = settings.MONGODB_URI
    mongodb_db_name = settings.MONGODB_DB_NAME

    if not mongodb_db_name:
        logger.error("MONGODB_DB_NAME is not set in environment variables")
        raise RuntimeError("Configuration error: MONGODB_DB_NAME is not set")

    try:
        if client is None:
            if not mongodb_uri:
                logger.error("MONGODB_URI is not set in environment variables")
                raise RuntimeError("Configuration error: MONGODB_URI is not set")
            logger.info(f"Attempting to connect to MongoDB at: {_mask_mongo_uri(mongodb_uri)}")
            client = motor.motor_asyncio.AsyncIOMotorClient(
                mongodb_uri,
                serverSelectionTimeoutMS=30000,
                connectTimeoutMS=30000,
                socketTimeoutMS=30000,
                retryWrites=True,
            )
            await client.admin.command('ping')
            logger.info("Successfully connected to MongoDB!")

        database = client.get_database(mongodb_db_name)
        await init_beanie(database, document_models=DOCUMENT_MODELS)
        logger.info("Beanie initialized successfully!")
        return database

    except RuntimeError:
        raise
    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}")
        raise


def get_database():
    """Get the initialized database instance"""
    if database is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return database
