"""Google Drive implementation of the remote store."""

import asyncio
import io
from typing import Any, Callable, Dict, Optional

import google.auth.exceptions
import httplib2
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from .base import RemoteStore, RemoteListFailed, RemoteWriteFailed, RemoteDeleteFailed
from ..auth.authorizer import AuthorizedClient
from ..performance import AsyncRateLimiter
from ..utils.logging import log_async_execution_time

# Failures a single Drive call can surface; anything else is a bug and propagates
REMOTE_ERRORS = (
    HttpError,
    asyncio.TimeoutError,
    OSError,
    httplib2.HttpLib2Error,
    google.auth.exceptions.GoogleAuthError,
)


def escape_query_value(value: str) -> str:
    """Escape a string literal for the Drive query language."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class GoogleDriveStore(RemoteStore):
    """Drive v3 client exposing the operations the reconciler needs."""

    def __init__(
        self,
        service: Any,
        http_factory: Optional[Callable[[], Any]] = None,
        request_timeout: float = 60.0,
        rate_limiter: Optional[AsyncRateLimiter] = None,
        page_size: int = 1000,
        include_shared: bool = True
    ):
        """Initialize the store.

        Args:
            service: Drive v3 resource from ``googleapiclient.discovery.build``
            http_factory: Builds a fresh authorized HTTP object per request so
                parallel requests never share a connection
            request_timeout: Seconds before a single call is abandoned
            rate_limiter: Limiter shared by every call of this store
            page_size: Objects requested per listing page (Drive caps it at 1000)
            include_shared: Also address objects living in shared drives
        """
        super().__init__()
        self.service = service
        self.http_factory = http_factory
        self.request_timeout = request_timeout
        self.rate_limiter = rate_limiter or AsyncRateLimiter(max_calls=100, time_window=100.0)
        self.page_size = min(page_size, 1000)
        self.include_shared = include_shared

    @classmethod
    def from_authorized_client(
        cls,
        client: AuthorizedClient,
        request_timeout: float = 60.0,
        rate_limiter: Optional[AsyncRateLimiter] = None
    ) -> "GoogleDriveStore":
        """Build a store backed by the Drive v3 API."""
        credentials = client.credentials

        def http_factory():
            return AuthorizedHttp(credentials, http=httplib2.Http(timeout=request_timeout))

        service = build("drive", "v3", http=http_factory(), cache_discovery=False)
        return cls(
            service,
            http_factory=http_factory,
            request_timeout=request_timeout,
            rate_limiter=rate_limiter
        )

    @log_async_execution_time
    async def list_folder(self, folder_id: str) -> Dict[str, str]:
        query = f"'{escape_query_value(folder_id)}' in parents and trashed = false"
        index: Dict[str, str] = {}
        seen_tokens = set()
        page_token = None
        pages = 0

        while True:
            request = self.service.files().list(
                q=query,
                fields="nextPageToken, files(id, name)",
                pageSize=self.page_size,
                pageToken=page_token,
                includeItemsFromAllDrives=self.include_shared,
                supportsAllDrives=self.include_shared
            )

            try:
                result = await self._execute(request)
            except REMOTE_ERRORS as e:
                self.logger.error("Error listing Drive folder", folder_id=folder_id, error=str(e))
                raise RemoteListFailed(folder_id, e)

            pages += 1
            for file_data in result.get("files", []):
                name = file_data["name"]
                if name in index and index[name] != file_data["id"]:
                    self.logger.warning(
                        "Duplicate name in Drive folder, keeping last seen",
                        folder_id=folder_id,
                        file_name=name,
                        dropped_id=index[name],
                        kept_id=file_data["id"]
                    )
                index[name] = file_data["id"]

            page_token = result.get("nextPageToken")
            if not page_token:
                break

            if page_token in seen_tokens:
                self.logger.error("Drive returned a repeated page token", folder_id=folder_id, pages=pages)
                raise RemoteListFailed(folder_id, RuntimeError(f"repeated page token after {pages} pages"))
            seen_tokens.add(page_token)

        self.logger.info("Listed Drive folder", folder_id=folder_id, files=len(index), pages=pages)
        return index

    async def find_by_name(self, name: str, folder_id: Optional[str] = None) -> Optional[str]:
        query = f"name = '{escape_query_value(name)}' and trashed = false"
        if folder_id:
            query += f" and '{escape_query_value(folder_id)}' in parents"

        request = self.service.files().list(
            q=query,
            fields="files(id, name)",
            pageSize=10,
            includeItemsFromAllDrives=self.include_shared,
            supportsAllDrives=self.include_shared
        )

        try:
            result = await self._execute(request)
        except REMOTE_ERRORS as e:
            self.logger.error("Error searching Drive", file_name=name, error=str(e))
            raise RemoteListFailed(name, e)

        files = result.get("files", [])
        if not files:
            self.logger.debug("File not found", file_name=name, folder_id=folder_id)
            return None

        if len(files) > 1:
            self.logger.warning(
                "Several Drive files share a name, using the first",
                file_name=name,
                matches=len(files)
            )
        return files[0]["id"]

    async def create(self, name: str, folder_id: str, content: bytes, mime_type: str) -> str:
        request = self.service.files().create(
            body={"name": name, "parents": [folder_id]},
            media_body=self._media(content, mime_type),
            fields="id",
            supportsAllDrives=self.include_shared
        )

        try:
            result = await self._execute(request)
        except REMOTE_ERRORS as e:
            self.logger.error("Error creating Drive file", file_name=name, error=str(e))
            raise RemoteWriteFailed(name, e)

        file_id = result["id"]
        self.logger.info("File uploaded", file_name=name, file_id=file_id, size=len(content))
        return file_id

    async def update(
        self,
        file_id: str,
        content: bytes,
        mime_type: str,
        add_parent: Optional[str] = None,
        name: Optional[str] = None
    ) -> str:
        params: Dict[str, Any] = {
            "fileId": file_id,
            "media_body": self._media(content, mime_type),
            "fields": "id",
            "supportsAllDrives": self.include_shared,
        }
        if add_parent:
            params["addParents"] = add_parent

        request = self.service.files().update(**params)

        try:
            result = await self._execute(request)
        except REMOTE_ERRORS as e:
            self.logger.error("Error updating Drive file", file_name=name, file_id=file_id, error=str(e))
            raise RemoteWriteFailed(name or file_id, e)

        self.logger.info("File updated", file_name=name, file_id=file_id, size=len(content))
        return result.get("id", file_id)

    async def delete(self, file_id: str, name: Optional[str] = None) -> None:
        request = self.service.files().delete(fileId=file_id, supportsAllDrives=self.include_shared)

        try:
            await self._execute(request)
        except HttpError as e:
            if e.resp.status == 404:
                self.logger.warning("File already gone from Drive", file_name=name, file_id=file_id)
                return
            self.logger.error("Error deleting Drive file", file_name=name, file_id=file_id, error=str(e))
            raise RemoteDeleteFailed(file_id, e, name=name)
        except REMOTE_ERRORS as e:
            self.logger.error("Error deleting Drive file", file_name=name, file_id=file_id, error=str(e))
            raise RemoteDeleteFailed(file_id, e, name=name)

        self.logger.info("File deleted from Drive", file_name=name, file_id=file_id)

    def _media(self, content: bytes, mime_type: str) -> MediaIoBaseUpload:
        return MediaIoBaseUpload(io.BytesIO(content), mimetype=mime_type, resumable=False)

    async def _execute(self, request) -> Dict[str, Any]:
        """Run a blocking API request in the executor, rate limited and bounded in time."""
        loop = asyncio.get_running_loop()
        async with self.rate_limiter.limit():
            result = await asyncio.wait_for(
                loop.run_in_executor(None, self._execute_request, request),
                timeout=self.request_timeout
            )
        return result or {}

    def _execute_request(self, request):
        """Execute Google API request (to be run in thread pool)."""
        if self.http_factory is None:
            return request.execute(num_retries=0)
        return request.execute(http=self.http_factory(), num_retries=0)
