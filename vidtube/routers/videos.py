# routers/videos.py
from fastapi import APIRouter, Depends, HTTPException, status
from psycopg import AsyncConnection

from vidtube import aggregations, auth_utils, crud, schemas
from vidtube.database import get_db_connection
from vidtube.errors import InvalidArgumentError

router = APIRouter()

@router.get("/{video_id}", response_model=schemas.ApiResponse[schemas.Video])
async def watch_video(
    video_id: str,
    current_user: dict = Depends(auth_utils.get_current_user),
    conn: AsyncConnection = Depends(get_db_connection)
):
    """Fetch a video, count the view and put it at the top of the caller's history."""
    try:
        target_id = aggregations.parse_object_id(video_id, "video ID")
    except InvalidArgumentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    video = await crud.increment_video_views(conn, target_id)
    if video is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Video not found")

    await crud.record_watch(conn, current_user["id"], target_id)
    return schemas.respond(schemas.Video(**video), "Video fetched successfully")
