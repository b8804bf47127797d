# blob_storage.py
import logging
import os
import uuid
from typing import Tuple
from urllib.parse import unquote, urlparse

from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
from azure.storage.blob.aio import BlobServiceClient
from fastapi import UploadFile

from vidtube.config import AZURE_STORAGE_CONNECTION_STRING, AZURE_BLOB_CONTAINER_NAME

logger = logging.getLogger(__name__)

def get_blob_service_client() -> BlobServiceClient:
    return BlobServiceClient.from_connection_string(AZURE_STORAGE_CONNECTION_STRING)

def blob_location(blob_url: str) -> Tuple[str, str]:
    """Split a blob URL into (container name, blob name)."""
    path = unquote(urlparse(blob_url).path).lstrip("/")
    container_name, _, blob_name = path.partition("/")
    if not container_name or not blob_name:
        raise ValueError(f"Not a blob URL: {blob_url}")
    return container_name, blob_name

async def upload_file_to_blob(file: UploadFile, file_type: str = "avatar") -> str:
    """Uploads a file to Azure Blob Storage and returns its URL."""
    # Generate a unique blob name
    file_extension = os.path.splitext(file.filename or "")[1]
    blob_name = f"{file_type}/{uuid.uuid4()}{file_extension}"

    file_content = await file.read()

    async with get_blob_service_client() as blob_service_client:
        container_client = blob_service_client.get_container_client(AZURE_BLOB_CONTAINER_NAME)
        try:
            await container_client.create_container()
        except ResourceExistsError:
            pass

        blob_client = container_client.get_blob_client(blob_name)
        await blob_client.upload_blob(file_content, overwrite=True)
        url = blob_client.url

    logger.info("Uploaded %s blob %s (%d bytes)", file_type, blob_name, len(file_content))
    return url

async def delete_blob(blob_url: str) -> None:
    """Deletes the blob a URL points to; a blob that is already gone is ignored."""
    container_name, blob_name = blob_location(blob_url)
    async with get_blob_service_client() as blob_service_client:
        blob_client = blob_service_client.get_blob_client(container=container_name, blob=blob_name)
        try:
            await blob_client.delete_blob()
        except ResourceNotFoundError:
            logger.warning("Blob %s/%s was already deleted", container_name, blob_name)
            return
    logger.info("Deleted blob %s/%s", container_name, blob_name)
