"""
Media store for the verification pipeline.
Resolves evidence references (photos, videos, audio) to bytes and archives
completed checks as JSON. Uses Azure Blob Storage when a connection string
is configured, otherwise a local directory.
"""

import os
import json
import logging
from azure.storage.blob import BlobServiceClient, ContentSettings

from ..config import get_settings
from ..errors import NotFound

logger = logging.getLogger(__name__)


class MediaStore:
    """Reads evidence media and writes check archives."""

    def __init__(self, connection_string: str | None = None, container: str | None = None,
                 local_dir: str | None = None):
        settings = get_settings()
        self.conn_str = connection_string if connection_string is not None else settings.azure_storage_connection_string
        self.container = container or settings.media_container
        self.local_dir = local_dir or settings.local_media_dir
        self.use_azure = bool(self.conn_str)
        self.blob_service = None

        if self.use_azure:
            try:
                self.blob_service = BlobServiceClient.from_connection_string(self.conn_str)
                logger.info("Azure Blob Storage connected for identity media")
            except ValueError as e:
                logger.warning(f"Blob init failed: {e}. Using local.")
                self.use_azure = False

        if not self.use_azure:
            os.makedirs(os.path.join(self.local_dir, "results"), exist_ok=True)

    async def fetch(self, media_ref: str) -> bytes:
        """Load the bytes behind an evidence reference."""
        if self.use_azure:
            client = self.blob_service.get_blob_client(self.container, media_ref)
            if not client.exists():
                raise NotFound(f"Media not found: {media_ref}")
            return client.download_blob().readall()

        path = self._local_path(media_ref)
        if not os.path.isfile(path):
            raise NotFound(f"Media not found: {media_ref}")
        with open(path, "rb") as f:
            return f.read()

    async def store_result(self, doc_id: str, result: dict) -> str:
        """Store an archived check as JSON."""
        blob_name = f"results/{doc_id}.json"
        data = json.dumps(result, default=str, indent=2)

        if self.use_azure:
            client = self.blob_service.get_blob_client(self.container, blob_name)
            client.upload_blob(data, overwrite=True,
                               content_settings=ContentSettings(content_type="application/json"))
            return f"azure://{self.container}/{blob_name}"
        else:
            path = os.path.join(self.local_dir, "results", f"{doc_id}.json")
            with open(path, "w") as f:
                f.write(data)
            return path

    def _local_path(self, media_ref: str) -> str:
        # References are relative keys; refuse anything escaping the media dir
        root = os.path.abspath(self.local_dir)
        path = os.path.abspath(os.path.join(root, media_ref))
        if os.path.commonpath([root, path]) != root:
            raise NotFound(f"Media not found: {media_ref}")
        return path
