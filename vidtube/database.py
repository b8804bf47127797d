# database.py
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import psycopg
from psycopg_pool import AsyncConnectionPool

from vidtube.config import DATABASE_URL, settings

logger = logging.getLogger(__name__)

class DatabaseManager:
    def __init__(self, conninfo: str = DATABASE_URL,
                 min_size: int = settings.db_pool_min_size,
                 max_size: int = settings.db_pool_max_size):
        self.conninfo = conninfo
        self.min_size = min_size
        self.max_size = max_size
        self.pool: Optional[AsyncConnectionPool] = None

    async def create_pool(self) -> AsyncConnectionPool:
        """Create a connection pool to PostgreSQL using psycopg (async)"""
        if self.pool is not None:
            return self.pool  # pool already exists

        try:
            # Initialize pool without opening it automatically
            self.pool = AsyncConnectionPool(
                conninfo=self.conninfo,
                min_size=self.min_size,
                max_size=self.max_size,
                open=False  # prevent automatic opening to avoid warnings
            )
            await self.pool.open()
            logger.info("Database connection pool created (min=%s, max=%s)", self.min_size, self.max_size)
            return self.pool
        except Exception:
            logger.exception("Failed to create database pool")
            self.pool = None
            raise

    async def close_pool(self):
        """Close the connection pool"""
        if self.pool:
            await self.pool.close()
            logger.info("Database connection pool closed")
            self.pool = None

    @asynccontextmanager
    async def get_connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Get a database connection from the pool"""
        if not self.pool:
            await self.create_pool()

        async with self.pool.connection() as conn:
            yield conn

# Global database manager instance
db_manager = DatabaseManager()

# Dependency functions for FastAPI
async def get_db_connection():
    async with db_manager.get_connection() as conn:
        yield conn

def get_db_manager() -> DatabaseManager:
    # Used by handlers that spread independent reads over several pooled connections
    return db_manager

# Initialize database tables
async def create_tables(manager: DatabaseManager = db_manager):
    """Create all necessary tables"""
    async with manager.get_connection() as conn:
        # Users table; watch_history holds video ids, most recent first
        await conn.execute('''
            CREATE TABLE IF NOT EXISTS users (
                id SERIAL PRIMARY KEY,
                username VARCHAR(255) NOT NULL,
                email VARCHAR(255) NOT NULL,
                full_name VARCHAR(255) NOT NULL,
                avatar VARCHAR(500) NOT NULL,
                cover_image VARCHAR(500),
                hashed_password VARCHAR(255) NOT NULL,
                refresh_token TEXT,
                watch_history INTEGER[] NOT NULL DEFAULT '{}',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
        ''')

        # Videos table
        await conn.execute('''
            CREATE TABLE IF NOT EXISTS videos (
                id SERIAL PRIMARY KEY,
                owner_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                title VARCHAR(255) NOT NULL,
                description TEXT,
                video_file VARCHAR(500) NOT NULL,
                thumbnail VARCHAR(500),
                views INTEGER NOT NULL DEFAULT 0 CHECK (views >= 0),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
        ''')

        # Subscriptions: directed edge subscriber -> channel
        await conn.execute('''
            CREATE TABLE IF NOT EXISTS subscriptions (
                id SERIAL PRIMARY KEY,
                subscriber_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                channel_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE(subscriber_id, channel_id)
            );
        ''')

        # Likes reference a video, comment or tweet by id + type tag
        await conn.execute('''
            CREATE TABLE IF NOT EXISTS likes (
                id SERIAL PRIMARY KEY,
                resource_id INTEGER NOT NULL,
                resource_type VARCHAR(20) NOT NULL CHECK (resource_type IN ('video', 'comment', 'tweet')),
                liked_by INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE(resource_id, resource_type, liked_by)
            );
        ''')

        # Create indexes for better performance
        await conn.execute('CREATE UNIQUE INDEX IF NOT EXISTS idx_users_username_lower ON users(lower(username));')
        await conn.execute('CREATE UNIQUE INDEX IF NOT EXISTS idx_users_email_lower ON users(lower(email));')
        await conn.execute('CREATE INDEX IF NOT EXISTS idx_videos_owner_created ON videos(owner_id, created_at DESC);')
        await conn.execute('CREATE INDEX IF NOT EXISTS idx_subscriptions_channel_id ON subscriptions(channel_id);')
        await conn.execute('CREATE INDEX IF NOT EXISTS idx_subscriptions_subscriber_id ON subscriptions(subscriber_id);')
        await conn.execute('CREATE INDEX IF NOT EXISTS idx_likes_resource ON likes(resource_type, resource_id);')

        logger.info("Database tables created/verified successfully")

# Startup and shutdown events
async def startup_database():
    """Initialize database on startup"""
    await db_manager.create_pool()
    await create_tables()

async def shutdown_database():
    """Cleanup database connections on shutdown"""
    await db_manager.close_pool()
