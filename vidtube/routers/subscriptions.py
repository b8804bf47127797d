# routers/subscriptions.py
from fastapi import APIRouter, Depends, HTTPException, status
from psycopg import AsyncConnection

from vidtube import aggregations, auth_utils, crud, schemas
from vidtube.database import get_db_connection
from vidtube.errors import InvalidArgumentError

router = APIRouter()

@router.post("/c/{channel_id}", response_model=schemas.ApiResponse[schemas.SubscriptionStatus])
async def toggle_subscription(
    channel_id: str,
    current_user: dict = Depends(auth_utils.get_current_user),
    conn: AsyncConnection = Depends(get_db_connection)
):
    """Subscribe the caller to a channel, or unsubscribe if already subscribed."""
    try:
        target_id = aggregations.parse_object_id(channel_id, "channel ID")
    except InvalidArgumentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if target_id == current_user["id"]:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot subscribe to your own channel")

    channel = await crud.get_user(conn, target_id)
    if channel is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Channel not found")

    subscribed = await crud.toggle_subscription(conn, subscriber_id=current_user["id"], channel_id=target_id)
    message = "Subscribed successfully" if subscribed else "Unsubscribed successfully"
    return schemas.respond(schemas.SubscriptionStatus(channel_id=target_id, subscribed=subscribed), message)
