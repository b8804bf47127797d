# routers/users.py
import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, Request, Response, UploadFile, status
from psycopg import AsyncConnection
from pydantic import EmailStr, TypeAdapter, ValidationError

from vidtube import aggregations, auth_utils, blob_storage, crud, schemas
from vidtube.config import REFRESH_TOKEN_SECRET
from vidtube.database import get_db_connection
from vidtube.errors import ConflictError, InvalidArgumentError, NotFoundError

logger = logging.getLogger(__name__)

router = APIRouter()

email_adapter = TypeAdapter(EmailStr)

def _set_auth_cookies(response: Response, tokens: dict):
    response.set_cookie(auth_utils.ACCESS_TOKEN_COOKIE, tokens["access_token"], **auth_utils.COOKIE_OPTIONS)
    response.set_cookie(auth_utils.REFRESH_TOKEN_COOKIE, tokens["refresh_token"], **auth_utils.COOKIE_OPTIONS)

async def _discard_uploads(*urls: Optional[str]):
    # Blobs uploaded for a request whose database write did not happen
    for url in urls:
        if url:
            await blob_storage.delete_blob(url)

@router.post("/register", response_model=schemas.ApiResponse[schemas.PublicUser],
             status_code=status.HTTP_201_CREATED)
async def register_user(
    full_name: str = Form(""),
    email: str = Form(""),
    username: str = Form(""),
    password: str = Form(""),
    avatar: Optional[UploadFile] = File(None),
    cover_image: Optional[UploadFile] = File(None),
    conn: AsyncConnection = Depends(get_db_connection)
):
    if any(not field.strip() for field in (full_name, email, username, password)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="All fields are required")

    try:
        email_adapter.validate_python(email.strip())
    except ValidationError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid email address")

    if await crud.user_exists(conn, username=username.strip(), email=email.strip()):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User with email or username already exists"
        )

    if avatar is None or not avatar.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Avatar file is required")

    avatar_url = await blob_storage.upload_file_to_blob(avatar, file_type="avatar")
    cover_image_url = None
    if cover_image is not None and cover_image.filename:
        cover_image_url = await blob_storage.upload_file_to_blob(cover_image, file_type="cover-image")

    try:
        user = await crud.create_user(
            conn,
            username=username.strip(),
            email=email.strip(),
            full_name=full_name.strip(),
            password=password,
            avatar=avatar_url,
            cover_image=cover_image_url,
        )
    except ConflictError as e:
        # Lost a race with a concurrent registration
        await _discard_uploads(avatar_url, cover_image_url)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except Exception:
        await _discard_uploads(avatar_url, cover_image_url)
        raise

    return schemas.respond(schemas.PublicUser(**user), "User registered successfully", status.HTTP_201_CREATED)

@router.post("/login", response_model=schemas.ApiResponse[schemas.LoginResult])
async def login_user(
    credentials: schemas.LoginRequest,
    response: Response,
    conn: AsyncConnection = Depends(get_db_connection)
):
    if not (credentials.username or credentials.email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username or email is required")

    user = await crud.find_user_for_login(conn, username=credentials.username, email=credentials.email)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    if not auth_utils.verify_password(credentials.password, user["hashed_password"]):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    tokens = await auth_utils.issue_tokens(conn, user)
    _set_auth_cookies(response, tokens)
    logger.info("User %s logged in", user["id"])

    result = schemas.LoginResult(user=schemas.PublicUser(**user), **tokens)
    return schemas.respond(result, "User logged in successfully")

@router.post("/logout", response_model=schemas.ApiResponse[dict])
async def logout_user(
    response: Response,
    current_user: dict = Depends(auth_utils.get_current_user),
    conn: AsyncConnection = Depends(get_db_connection)
):
    await crud.set_refresh_token(conn, current_user["id"], None)
    response.delete_cookie(auth_utils.ACCESS_TOKEN_COOKIE, **auth_utils.COOKIE_OPTIONS)
    response.delete_cookie(auth_utils.REFRESH_TOKEN_COOKIE, **auth_utils.COOKIE_OPTIONS)
    return schemas.respond({}, "User logged out")

@router.post("/refresh-token", response_model=schemas.ApiResponse[schemas.TokenPair])
async def refresh_access_token(
    request: Request,
    response: Response,
    body: Optional[schemas.RefreshRequest] = Body(None),
    conn: AsyncConnection = Depends(get_db_connection)
):
    incoming_token = request.cookies.get(auth_utils.REFRESH_TOKEN_COOKIE) or (body.refresh_token if body else None)
    if not incoming_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized request")

    user_id = auth_utils.decode_user_id(incoming_token, REFRESH_TOKEN_SECRET)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")

    user = await crud.get_user_credentials(conn, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")

    if incoming_token != user["refresh_token"]:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Refresh token is expired or used")

    tokens = await auth_utils.issue_tokens(conn, user)
    _set_auth_cookies(response, tokens)
    return schemas.respond(schemas.TokenPair(**tokens), "Access token refreshed")

@router.post("/change-password", response_model=schemas.ApiResponse[dict])
async def change_current_password(
    passwords: schemas.PasswordChange,
    current_user: dict = Depends(auth_utils.get_current_user),
    conn: AsyncConnection = Depends(get_db_connection)
):
    user = await crud.get_user_credentials(conn, current_user["id"])
    if user is None or not auth_utils.verify_password(passwords.old_password, user["hashed_password"]):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid old password")

    await crud.update_password(conn, current_user["id"], passwords.new_password)
    return schemas.respond({}, "Password changed successfully")

@router.get("/current-user", response_model=schemas.ApiResponse[schemas.PublicUser])
async def get_current_user(current_user: dict = Depends(auth_utils.get_current_user)):
    return schemas.respond(schemas.PublicUser(**current_user), "Current user fetched successfully")

@router.patch("/update-account", response_model=schemas.ApiResponse[schemas.PublicUser])
async def update_account_details(
    details: schemas.AccountUpdate,
    current_user: dict = Depends(auth_utils.get_current_user),
    conn: AsyncConnection = Depends(get_db_connection)
):
    full_name = details.full_name.strip() if details.full_name else None
    if not (full_name or details.email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Full name or email is required")

    if details.email and await crud.email_taken(conn, details.email, exclude_user_id=current_user["id"]):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already exists")

    try:
        user = await crud.update_account(conn, current_user["id"], full_name=full_name, email=details.email)
    except ConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return schemas.respond(schemas.PublicUser(**user), "Account details updated successfully")

async def _replace_user_image(conn: AsyncConnection, current_user: dict, column: str, file: UploadFile) -> dict:
    previous_url = current_user.get(column)
    url = await blob_storage.upload_file_to_blob(file, file_type=column.replace("_", "-"))
    try:
        user = await crud.update_user_image(conn, current_user["id"], column, url)
    except Exception:
        await _discard_uploads(url)
        raise
    if user is None:
        await _discard_uploads(url)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    if previous_url:
        try:
            await blob_storage.delete_blob(previous_url)
        except ValueError:
            logger.warning("Previous %s of user %s is not a blob URL: %s", column, current_user["id"], previous_url)
    return user

@router.patch("/avatar", response_model=schemas.ApiResponse[schemas.PublicUser])
async def update_user_avatar(
    avatar: Optional[UploadFile] = File(None),
    current_user: dict = Depends(auth_utils.get_current_user),
    conn: AsyncConnection = Depends(get_db_connection)
):
    if avatar is None or not avatar.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Avatar file is missing")

    user = await _replace_user_image(conn, current_user, "avatar", avatar)
    return schemas.respond(schemas.PublicUser(**user), "Avatar image updated successfully")

@router.patch("/cover-image", response_model=schemas.ApiResponse[schemas.PublicUser])
async def update_user_cover_image(
    cover_image: Optional[UploadFile] = File(None),
    current_user: dict = Depends(auth_utils.get_current_user),
    conn: AsyncConnection = Depends(get_db_connection)
):
    if cover_image is None or not cover_image.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cover image file is missing")

    user = await _replace_user_image(conn, current_user, "cover_image", cover_image)
    return schemas.respond(schemas.PublicUser(**user), "Cover image updated successfully")

@router.get("/c/{username}", response_model=schemas.ApiResponse[schemas.ChannelProfile])
async def get_user_channel_profile(
    username: str,
    viewer: Optional[dict] = Depends(auth_utils.get_optional_user),
    conn: AsyncConnection = Depends(get_db_connection)
):
    """Channel profile with subscriber counts and whether the caller follows it."""
    viewer_id = viewer["id"] if viewer else None
    try:
        channel = await aggregations.resolve_channel_profile(conn, viewer_id, username)
    except InvalidArgumentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return schemas.respond(schemas.ChannelProfile(**channel), "User channel profile fetched successfully")

@router.get("/history", response_model=schemas.ApiResponse[List[schemas.WatchHistoryVideo]])
async def get_watch_history(
    current_user: dict = Depends(auth_utils.get_current_user),
    conn: AsyncConnection = Depends(get_db_connection)
):
    """Videos the caller watched, most recent first, each with its owner's public fields."""
    history = await aggregations.resolve_watch_history(conn, current_user["id"])
    return schemas.respond(
        [schemas.WatchHistoryVideo(**video) for video in history],
        "Watch history fetched successfully"
    )
