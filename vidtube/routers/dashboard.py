# routers/dashboard.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from psycopg import AsyncConnection

from vidtube import aggregations, schemas
from vidtube.database import DatabaseManager, get_db_connection, get_db_manager
from vidtube.errors import InvalidArgumentError

router = APIRouter()

@router.get("/stats/{channel_id}", response_model=schemas.ApiResponse[schemas.ChannelStats])
async def get_channel_stats(
    channel_id: str,
    db: DatabaseManager = Depends(get_db_manager)
):
    """Video, subscriber, like and view totals for a channel."""
    try:
        stats = await aggregations.resolve_channel_stats(db, channel_id)
    except InvalidArgumentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return schemas.respond(schemas.ChannelStats(**stats), "Channel stats fetched successfully")

@router.get("/videos/{channel_id}", response_model=schemas.ApiResponse[List[schemas.Video]])
async def get_channel_videos(
    channel_id: str,
    page: int = 1,
    limit: int = 10,
    conn: AsyncConnection = Depends(get_db_connection)
):
    """A page of the channel's videos, newest first."""
    try:
        videos = await aggregations.resolve_channel_videos(conn, channel_id, page=page, limit=limit)
    except InvalidArgumentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return schemas.respond([schemas.Video(**video) for video in videos], "Channel videos fetched successfully")
