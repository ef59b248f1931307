"""
Database configuration and connection management for MongoDB
"""
import logging
from motor.motor_asyncio import AsyncIOMotorClient
from typing import Optional
import os
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

class DatabaseConfig:
    """MongoDB database configuration"""

    def __init__(self):
        self.MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
        self.DATABASE_NAME = os.getenv("DATABASE_NAME", "fly8_db")
        self.client: Optional[AsyncIOMotorClient] = None
        self.database = None

    async def connect_db(self):
        """Connect to MongoDB"""
        try:
            self.client = AsyncIOMotorClient(self.MONGO_URI)
            self.database = self.client[self.DATABASE_NAME]
            # Test connection
            await self.client.admin.command('ping')
            logger.info("Connected to MongoDB: %s", self.DATABASE_NAME)
        except Exception as e:
            logger.error("Error connecting to MongoDB: %s", e)
            raise

    def use_client(self, client, database_name: Optional[str] = None):
        """Bind an already constructed client (used by scripts and tests)"""
        self.client = client
        self.database = client[database_name or self.DATABASE_NAME]

    async def close_db(self):
        """Close MongoDB connection"""
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    def get_collection(self, collection_name: str):
        """Get a specific collection"""
        if self.database is None:
            raise Exception("Database not connected")
        return self.database[collection_name]

# Global database instance
db_config = DatabaseConfig()

# Collection names
class Collections:
    # Agent registry and super admins share the users collection
    USERS = "users"

    # Source entities (owned by other services, read-only here)
    APPLICATIONS = "applications"
    SERVICE_REQUESTS = "servicerequests"
    UNIVERSITIES = "universities"

    # Ledgers
    COMMISSIONS = "commissions"
    PAYOUTS = "payouts"
    COUNTERS = "counters"

    # Settings singleton
    SETTINGS = "settings"

    # Side effects
    NOTIFICATIONS = "notifications"
    AUDIT_LOGS = "auditlogs"
