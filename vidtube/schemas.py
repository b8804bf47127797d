# schemas.py
from datetime import datetime
from enum import Enum
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel, EmailStr

T = TypeVar("T")

# --- Response envelope ---
class ApiResponse(BaseModel, Generic[T]):
    status_code: int
    data: T
    message: str = "Success"
    success: bool = True

def respond(data: Any, message: str, status_code: int = 200) -> dict:
    """Build the uniform envelope every endpoint returns."""
    return {
        "status_code": status_code,
        "data": data,
        "message": message,
        "success": status_code < 400,
    }

# --- User Schemas ---
class PublicUser(BaseModel):
    # Read projection of a user; credentials are never part of it
    id: int
    username: str
    email: EmailStr
    full_name: str
    avatar: str
    cover_image: Optional[str] = None
    watch_history: List[int] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class LoginRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[EmailStr] = None
    password: str

class PasswordChange(BaseModel):
    old_password: str
    new_password: str

class AccountUpdate(BaseModel):
    full_name: Optional[str] = None
    email: Optional[EmailStr] = None

class ChannelProfile(BaseModel):
    full_name: str
    username: str
    avatar: str
    cover_image: Optional[str] = None
    subscribers_count: int
    channels_subscribed_to_count: int
    is_subscribed: bool
    email: EmailStr

# --- Video Schemas ---
class VideoOwner(BaseModel):
    full_name: str
    username: str
    avatar: str

class Video(BaseModel):
    id: int
    owner_id: int
    title: str
    description: Optional[str] = None
    video_file: str
    thumbnail: Optional[str] = None
    views: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class WatchHistoryVideo(Video):
    owner: Optional[VideoOwner] = None

# --- Like / Subscription Schemas ---
class LikeType(str, Enum):
    VIDEO = "video"
    COMMENT = "comment"
    TWEET = "tweet"

class SubscriptionStatus(BaseModel):
    channel_id: int
    subscribed: bool

# --- Dashboard Schemas ---
class ChannelStats(BaseModel):
    total_videos: int = 0
    total_subscribers: int = 0
    total_likes: int = 0
    total_views: int = 0

# --- Auth Schemas ---
class TokenPair(BaseModel):
    access_token: str
    refresh_token: str

class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = None

class LoginResult(TokenPair):
    user: PublicUser
