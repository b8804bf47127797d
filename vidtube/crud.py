# crud.py
import logging
from typing import Any, Dict, Optional

import psycopg
from psycopg import AsyncConnection  # For type hints
from psycopg.rows import dict_row

from vidtube import auth_utils
from vidtube.errors import ConflictError

logger = logging.getLogger(__name__)

# Columns safe to hand back to clients; hashed_password and refresh_token never leave this module
PUBLIC_USER_COLUMNS = "id, username, email, full_name, avatar, cover_image, watch_history, created_at, updated_at"

# Image columns a user may replace through the upload endpoints
USER_IMAGE_COLUMNS = ("avatar", "cover_image")

def _conflict_from(error: psycopg.errors.UniqueViolation) -> ConflictError:
    if "username" in str(error):
        return ConflictError("Username already exists")
    if "email" in str(error):
        return ConflictError("Email already exists")
    return ConflictError("Duplicate entry")

# --- User CRUD ---
async def get_user(conn: AsyncConnection, user_id: int) -> Optional[Dict[str, Any]]:
    async with conn.cursor(row_factory=dict_row) as cursor:
        await cursor.execute(f"SELECT {PUBLIC_USER_COLUMNS} FROM users WHERE id = %s", (user_id,))
        return await cursor.fetchone()

async def get_user_credentials(conn: AsyncConnection, user_id: int) -> Optional[Dict[str, Any]]:
    async with conn.cursor(row_factory=dict_row) as cursor:
        await cursor.execute("SELECT * FROM users WHERE id = %s", (user_id,))
        return await cursor.fetchone()

async def find_user_for_login(conn: AsyncConnection, username: Optional[str], email: Optional[str]) -> Optional[Dict[str, Any]]:
    query = """
        SELECT * FROM users
        WHERE lower(username) = lower(%s) OR lower(email) = lower(%s)
        LIMIT 1
    """
    async with conn.cursor(row_factory=dict_row) as cursor:
        await cursor.execute(query, (username, email))
        return await cursor.fetchone()

async def user_exists(conn: AsyncConnection, username: str, email: str) -> bool:
    query = "SELECT 1 FROM users WHERE lower(username) = lower(%s) OR lower(email) = lower(%s) LIMIT 1"
    async with conn.cursor() as cursor:
        await cursor.execute(query, (username, email))
        return await cursor.fetchone() is not None

async def email_taken(conn: AsyncConnection, email: str, exclude_user_id: int) -> bool:
    query = "SELECT 1 FROM users WHERE lower(email) = lower(%s) AND id <> %s LIMIT 1"
    async with conn.cursor() as cursor:
        await cursor.execute(query, (email, exclude_user_id))
        return await cursor.fetchone() is not None

async def create_user(conn: AsyncConnection, username: str, email: str, full_name: str, password: str,
                      avatar: str, cover_image: Optional[str] = None) -> Dict[str, Any]:
    hashed_password = auth_utils.get_password_hash(password)
    query = f"""
        INSERT INTO users (username, email, full_name, hashed_password, avatar, cover_image)
        VALUES (%s, %s, %s, %s, %s, %s)
        RETURNING {PUBLIC_USER_COLUMNS}
    """
    try:
        async with conn.cursor(row_factory=dict_row) as cursor:
            await cursor.execute(query, (username.lower(), email, full_name, hashed_password, avatar, cover_image))
            row = await cursor.fetchone()
            await conn.commit()
    except psycopg.errors.UniqueViolation as e:
        await conn.rollback()
        raise _conflict_from(e)
    logger.info("Created user: %s", row["username"])
    return row

async def update_account(conn: AsyncConnection, user_id: int, full_name: Optional[str],
                         email: Optional[str]) -> Optional[Dict[str, Any]]:
    query = f"""
        UPDATE users
        SET full_name = COALESCE(%s, full_name),
            email = COALESCE(%s, email),
            updated_at = CURRENT_TIMESTAMP
        WHERE id = %s
        RETURNING {PUBLIC_USER_COLUMNS}
    """
    try:
        async with conn.cursor(row_factory=dict_row) as cursor:
            await cursor.execute(query, (full_name, email, user_id))
            row = await cursor.fetchone()
            await conn.commit()
    except psycopg.errors.UniqueViolation as e:
        await conn.rollback()
        raise _conflict_from(e)
    return row

async def update_user_image(conn: AsyncConnection, user_id: int, column: str, url: str) -> Optional[Dict[str, Any]]:
    if column not in USER_IMAGE_COLUMNS:
        raise ValueError(f"Not an image column: {column}")
    query = f"""
        UPDATE users SET {column} = %s, updated_at = CURRENT_TIMESTAMP
        WHERE id = %s
        RETURNING {PUBLIC_USER_COLUMNS}
    """
    async with conn.cursor(row_factory=dict_row) as cursor:
        await cursor.execute(query, (url, user_id))
        row = await cursor.fetchone()
        await conn.commit()
    if row:
        logger.info("Updated %s for user %s", column, user_id)
    return row

async def update_password(conn: AsyncConnection, user_id: int, new_password: str) -> None:
    hashed_password = auth_utils.get_password_hash(new_password)
    async with conn.cursor() as cursor:
        await cursor.execute(
            "UPDATE users SET hashed_password = %s, updated_at = CURRENT_TIMESTAMP WHERE id = %s",
            (hashed_password, user_id),
        )
        await conn.commit()

async def set_refresh_token(conn: AsyncConnection, user_id: int, refresh_token: Optional[str]) -> None:
    # None unsets the stored token (logout)
    async with conn.cursor() as cursor:
        await cursor.execute("UPDATE users SET refresh_token = %s WHERE id = %s", (refresh_token, user_id))
        await conn.commit()

async def record_watch(conn: AsyncConnection, user_id: int, video_id: int) -> None:
    query = """
        UPDATE users
        SET watch_history = array_prepend(%s::integer, array_remove(watch_history, %s::integer))
        WHERE id = %s
    """
    async with conn.cursor() as cursor:
        await cursor.execute(query, (video_id, video_id, user_id))
        await conn.commit()

# --- Subscription CRUD ---
async def toggle_subscription(conn: AsyncConnection, subscriber_id: int, channel_id: int) -> bool:
    """Flip the subscriber -> channel edge; returns True when the edge now exists."""
    async with conn.cursor() as cursor:
        await cursor.execute(
            "DELETE FROM subscriptions WHERE subscriber_id = %s AND channel_id = %s RETURNING id",
            (subscriber_id, channel_id),
        )
        if await cursor.fetchone() is not None:
            await conn.commit()
            logger.info("User %s unsubscribed from channel %s", subscriber_id, channel_id)
            return False

        await cursor.execute(
            """
            INSERT INTO subscriptions (subscriber_id, channel_id) VALUES (%s, %s)
            ON CONFLICT (subscriber_id, channel_id) DO NOTHING
            """,
            (subscriber_id, channel_id),
        )
        await conn.commit()
    logger.info("User %s subscribed to channel %s", subscriber_id, channel_id)
    return True

# --- Video CRUD ---
async def increment_video_views(conn: AsyncConnection, video_id: int) -> Optional[Dict[str, Any]]:
    async with conn.cursor(row_factory=dict_row) as cursor:
        await cursor.execute("UPDATE videos SET views = views + 1 WHERE id = %s RETURNING *", (video_id,))
        row = await cursor.fetchone()
        await conn.commit()
    return row
