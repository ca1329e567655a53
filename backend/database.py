from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    db = None

    async def connect(self):
        try:
            mongo_url = os.environ['MONGO_URL']
            db_name = os.environ.get('DB_NAME', 'lobby_landing')
            self.client = AsyncIOMotorClient(mongo_url)
            self.db = self.client[db_name]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {db_name}")

            await self._create_indexes()
            await self._seed_landing_templates()
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close(self):
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    def get_db(self):
        return self.db

    async def _create_indexes(self):
        """Create MongoDB indexes for the landing engine collections."""
        try:
            # Brokers
            await self.db.corretores.create_index("id", unique=True)
            try:
                await self.db.corretores.create_index("slug", unique=True, sparse=True)
            except Exception:
                pass  # Index may already exist with different options

            # Role tags - set semantics per (user_id, role)
            await self.db.user_roles.create_index([("user_id", 1), ("role", 1)], unique=True)

            # Landing config - one record per broker
            await self.db.landing_configs.create_index("corretor_id", unique=True)

            # Templates - declared order
            await self.db.landing_templates.create_index("id", unique=True)
            await self.db.landing_templates.create_index("slug", unique=True)
            await self.db.landing_templates.create_index([("ativo", 1), ("ordem", 1)])

            # Audit log
            await self.db.audit_logs.create_index([("resource_type", 1), ("resource_id", 1), ("timestamp", -1)])
            await self.db.audit_logs.create_index([("corretor_id", 1), ("timestamp", -1)])
            await self.db.audit_logs.create_index("action")
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Indexes may already exist, log but don't fail
            logger.warning(f"Index creation note: {e}")

    async def _seed_landing_templates(self):
        """Seed built-in landing templates (idempotent upsert by id)."""
        from services.template_registry import BUILTIN_TEMPLATES, MongoTemplateStore
        await MongoTemplateStore(self.db).seed_templates(BUILTIN_TEMPLATES)

# Global database instance
database = Database()
