# aggregations.py
"""Read models computed from the normalized tables at query time.

Every resolver below is a single SQL statement (stats excepted, which fans out
into independent statements), so each one sees a consistent snapshot. Nothing
is cached between calls.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from psycopg import AsyncConnection
from psycopg.rows import dict_row

from vidtube.database import DatabaseManager
from vidtube.errors import InvalidArgumentError, NotFoundError
from vidtube.schemas import LikeType

logger = logging.getLogger(__name__)

MAX_ID = 2 ** 31 - 1
MAX_PAGE_SIZE = 100
# OFFSET is a bigint in PostgreSQL
MAX_OFFSET = 2 ** 63 - 1

def parse_object_id(value: Any, label: str = "id") -> int:
    """Validate a record id given as text; raises before any query runs."""
    if isinstance(value, bool):
        raise InvalidArgumentError(f"Invalid {label}")
    if isinstance(value, int):
        text = str(value)
    elif isinstance(value, str):
        text = value.strip()
    else:
        raise InvalidArgumentError(f"Invalid {label}")
    if not text.isascii() or not text.isdigit():
        raise InvalidArgumentError(f"Invalid {label}")
    parsed = int(text)
    if not 1 <= parsed <= MAX_ID:
        raise InvalidArgumentError(f"Invalid {label}")
    return parsed

# --- Channel profile ---
# Both subscription joins are collected into arrays so the counts and the
# membership flag derive from the same joined rows.
CHANNEL_PROFILE_QUERY = """
    SELECT
        u.full_name,
        u.username,
        u.avatar,
        u.cover_image,
        u.email,
        cardinality(subscribers.subscriber_ids) AS subscribers_count,
        cardinality(subscribed_to.channel_ids) AS channels_subscribed_to_count,
        COALESCE(%(viewer_id)s::integer = ANY(subscribers.subscriber_ids), FALSE) AS is_subscribed
    FROM users u
    LEFT JOIN LATERAL (
        SELECT COALESCE(array_agg(s.subscriber_id), '{}'::integer[]) AS subscriber_ids
        FROM subscriptions s
        WHERE s.channel_id = u.id
    ) subscribers ON TRUE
    LEFT JOIN LATERAL (
        SELECT COALESCE(array_agg(s.channel_id), '{}'::integer[]) AS channel_ids
        FROM subscriptions s
        WHERE s.subscriber_id = u.id
    ) subscribed_to ON TRUE
    WHERE lower(u.username) = %(username)s
"""

async def resolve_channel_profile(conn: AsyncConnection, viewer_id: Optional[int], username: Optional[str]) -> Dict[str, Any]:
    normalized = (username or "").strip().lower()
    if not normalized:
        raise InvalidArgumentError("Username is required to get profile")

    async with conn.cursor(row_factory=dict_row) as cursor:
        await cursor.execute(CHANNEL_PROFILE_QUERY, {"viewer_id": viewer_id, "username": normalized})
        channel = await cursor.fetchone()

    if channel is None:
        raise NotFoundError("Channel not found")
    logger.debug("Resolved channel profile for %s (viewer=%s)", normalized, viewer_id)
    return channel

# --- Watch history ---
# unnest ... WITH ORDINALITY keeps the order of the stored id list; the owner
# is a left join flattened to one object, or NULL when it has no match.
WATCH_HISTORY_QUERY = """
    SELECT
        v.id,
        v.owner_id,
        v.title,
        v.description,
        v.video_file,
        v.thumbnail,
        v.views,
        v.created_at,
        v.updated_at,
        CASE WHEN o.id IS NULL THEN NULL
             ELSE json_build_object('full_name', o.full_name, 'username', o.username, 'avatar', o.avatar)
        END AS owner
    FROM users u
    CROSS JOIN LATERAL unnest(u.watch_history) WITH ORDINALITY AS history(video_id, position)
    JOIN videos v ON v.id = history.video_id
    LEFT JOIN users o ON o.id = v.owner_id
    WHERE u.id = %s
    ORDER BY history.position
"""

async def resolve_watch_history(conn: AsyncConnection, user_id: int) -> List[Dict[str, Any]]:
    async with conn.cursor(row_factory=dict_row) as cursor:
        await cursor.execute(WATCH_HISTORY_QUERY, (user_id,))
        rows = await cursor.fetchall()
    logger.debug("Resolved %d watch history entries for user %s", len(rows), user_id)
    return rows

# --- Channel stats ---
async def _count_videos(db: DatabaseManager, channel_id: int) -> int:
    async with db.get_connection() as conn:
        async with conn.cursor(row_factory=dict_row) as cursor:
            await cursor.execute("SELECT COUNT(*) AS total FROM videos WHERE owner_id = %s", (channel_id,))
            row = await cursor.fetchone()
    return row["total"] if row else 0

async def _count_subscribers(db: DatabaseManager, channel_id: int) -> int:
    async with db.get_connection() as conn:
        async with conn.cursor(row_factory=dict_row) as cursor:
            await cursor.execute("SELECT COUNT(*) AS total FROM subscriptions WHERE channel_id = %s", (channel_id,))
            row = await cursor.fetchone()
    return row["total"] if row else 0

async def _count_video_likes(db: DatabaseManager, channel_id: int) -> int:
    # Likes point at videos only through an id + type tag, so the owned ids
    # are read first and the likes filtered by membership afterwards.
    async with db.get_connection() as conn:
        async with conn.cursor(row_factory=dict_row) as cursor:
            await cursor.execute("SELECT DISTINCT id FROM videos WHERE owner_id = %s", (channel_id,))
            video_ids = [row["id"] for row in await cursor.fetchall()]
            if not video_ids:
                return 0
            await cursor.execute(
                "SELECT COUNT(*) AS total FROM likes WHERE resource_type = %s AND resource_id = ANY(%s)",
                (LikeType.VIDEO.value, video_ids),
            )
            row = await cursor.fetchone()
    return row["total"] if row else 0

async def _sum_views(db: DatabaseManager, channel_id: int) -> int:
    async with db.get_connection() as conn:
        async with conn.cursor(row_factory=dict_row) as cursor:
            await cursor.execute(
                "SELECT SUM(views)::bigint AS total_views FROM videos WHERE owner_id = %s",
                (channel_id,),
            )
            row = await cursor.fetchone()
    # SUM over no rows is NULL
    return row["total_views"] if row and row["total_views"] is not None else 0

async def resolve_channel_stats(db: DatabaseManager, channel_id: Any) -> Dict[str, int]:
    channel_id = parse_object_id(channel_id, "channel ID")

    total_videos, total_subscribers, total_likes, total_views = await asyncio.gather(
        _count_videos(db, channel_id),
        _count_subscribers(db, channel_id),
        _count_video_likes(db, channel_id),
        _sum_views(db, channel_id),
    )
    return {
        "total_videos": total_videos,
        "total_subscribers": total_subscribers,
        "total_likes": total_likes,
        "total_views": total_views,
    }

# --- Channel videos ---
async def resolve_channel_videos(conn: AsyncConnection, channel_id: Any, page: int = 1, limit: int = 10) -> List[Dict[str, Any]]:
    channel_id = parse_object_id(channel_id, "channel ID")
    if isinstance(page, bool) or not isinstance(page, int) or page < 1:
        raise InvalidArgumentError("page must be a positive integer")
    if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_PAGE_SIZE:
        raise InvalidArgumentError(f"limit must be an integer between 1 and {MAX_PAGE_SIZE}")
    offset = (page - 1) * limit
    if offset > MAX_OFFSET:
        raise InvalidArgumentError("page is out of range")

    query = """
        SELECT * FROM videos
        WHERE owner_id = %s
        ORDER BY created_at DESC, id DESC
        LIMIT %s OFFSET %s
    """
    async with conn.cursor(row_factory=dict_row) as cursor:
        await cursor.execute(query, (channel_id, limit, offset))
        return await cursor.fetchall()
