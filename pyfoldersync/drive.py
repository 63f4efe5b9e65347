"""Google Drive v3 client implementing the remote store interface."""

from __future__ import annotations

import logging
import mimetypes
import os
import random
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Callable

import httpx

from .config import config
from .exceptions import (
    AuthError,
    InvalidResponseError,
    NetworkError,
    RateLimitError,
    RemoteAPIError,
    RemoteNotFoundError,
)
from .models import FOLDER_MIME_TYPE, RemoteFolderRef, RemoteItem
from .store import StaticTokenProvider, TokenProvider
from .utils import DEFAULT_CHUNK_SIZE, DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY

logger = logging.getLogger(__name__)

LIST_PAGE_SIZE = 1000
LIST_FIELDS = "nextPageToken, files(id, name, mimeType, trashed, size)"
FOLDER_FIELDS = "nextPageToken, files(id, name)"

# Status code Drive uses for an incomplete resumable upload
RESUME_INCOMPLETE = 308


def _quote(value: str) -> str:
    """Escape a value for use inside a Drive query string literal."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class GoogleDriveStore:
    """Remote store backed by the Google Drive v3 REST API."""

    def __init__(
        self,
        access_token: str | None = None,
        token_provider: TokenProvider | None = None,
        account_id: str | None = None,
        api_url: str | None = None,
        upload_url: str | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = 30.0,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize Drive client.

        Args:
            access_token: OAuth access token (uses config if not provided)
            token_provider: Source of tokens; overrides ``access_token``
            account_id: Account passed to the token provider
            api_url: Optional API URL (uses config if not provided)
            upload_url: Optional upload URL (uses config if not provided)
            max_retries: Maximum number of retry attempts (default: 3)
            retry_delay: Initial delay between retries in seconds (default: 1.0)
            timeout: Request timeout in seconds (default: 30.0)
            chunk_size: Bytes sent per request of a resumable upload
            transport: Optional httpx transport (used by tests)
        """
        self.token_provider = token_provider or StaticTokenProvider(
            access_token or config.access_token
        )
        self.account_id = account_id
        self.api_url = (api_url or config.api_url).rstrip("/")
        self.upload_url = (upload_url or config.upload_url).rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.chunk_size = chunk_size
        self._transport = transport
        self._client: httpx.Client | None = None
        self._client_lock = threading.Lock()

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        with self._client_lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.Client(
                    timeout=httpx.Timeout(self.timeout),
                    follow_redirects=True,
                    transport=self._transport,
                )
            return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def _auth_headers(self) -> dict[str, str]:
        token = self.token_provider.get_access_token(self.account_id)
        return {"Authorization": f"Bearer {token}"}

    # =========================
    # Request handling
    # =========================

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Exponential backoff with +/- 25% jitter."""
        base_delay = self.retry_delay * (2**attempt)
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    def _error_for_status(self, response: httpx.Response) -> Exception:
        """Map an error response to one of our exceptions."""
        status_code = response.status_code
        if status_code == 401:
            return AuthError("Access token rejected or expired")
        if status_code == 404:
            return RemoteNotFoundError("Resource not found")
        if status_code == 429:
            return RateLimitError("Rate limit exceeded - please try again later")

        error_msg = f"API request failed with status {status_code}"
        try:
            error_data = response.json()
        except ValueError:
            error_data = None
        if isinstance(error_data, dict):
            error = error_data.get("error")
            msg = error.get("message") if isinstance(error, dict) else error
            if msg:
                error_msg = f"{error_msg}: {msg}"
        if status_code == 403:
            # Drive reports per-user rate limits as 403
            if "rate limit" in error_msg.lower():
                return RateLimitError(error_msg)
            return RemoteAPIError(f"Access forbidden: {error_msg}")
        return RemoteAPIError(error_msg)

    def _send(
        self,
        method: str,
        url: str,
        accept_status: tuple[int, ...] = (),
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request with retry logic.

        Network errors, rate limits and 5xx responses are retried with
        jittered exponential backoff; ``Retry-After`` is honoured for 429.

        Args:
            method: HTTP method
            url: Absolute URL
            accept_status: Non-2xx status codes returned instead of raised
            **kwargs: Additional arguments passed to httpx

        Raises:
            AuthError: On 401 or a missing token
            RemoteNotFoundError: On 404
            NetworkError: If the request fails after all retries
            RemoteAPIError: On other error responses
        """
        client = self._get_client()
        headers = {**kwargs.pop("headers", {}), **self._auth_headers()}
        last_exception: Exception | None = None

        for attempt in range(self.max_retries + 1):
            try:
                response = client.request(method, url, headers=headers, **kwargs)
            except httpx.RequestError as e:
                last_exception = NetworkError(f"Network error: {e}")
                if attempt < self.max_retries:
                    delay = self._calculate_retry_delay(attempt)
                    logger.debug("%s %s failed (%s), retry in %.1fs", method, url, e, delay)
                    time.sleep(delay)
                    continue
                raise last_exception from e

            if response.is_success or response.status_code in accept_status:
                return response

            error = self._error_for_status(response)
            last_exception = error
            retryable = isinstance(error, RateLimitError) or response.status_code >= 500
            if retryable and attempt < self.max_retries:
                retry_after = response.headers.get("Retry-After")
                if retry_after and retry_after.isdigit():
                    delay = float(retry_after)
                else:
                    delay = self._calculate_retry_delay(attempt)
                logger.debug(
                    "%s %s returned %d, retry in %.1fs",
                    method,
                    url,
                    response.status_code,
                    delay,
                )
                time.sleep(delay)
                continue
            raise error

        # If we get here, we've exhausted all retries
        if last_exception:
            raise last_exception
        raise RemoteAPIError("Request failed after all retry attempts")

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        """Make an API request and decode the JSON body."""
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        response = self._send(method, url, **kwargs)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise InvalidResponseError("Invalid JSON response from server") from e

    # =========================
    # Listing
    # =========================

    def _list_files(self, query: str, fields: str) -> list[dict[str, Any]]:
        """Return every file resource matching a query, following pagination."""
        files: list[dict[str, Any]] = []
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {
                "q": query,
                "fields": fields,
                "pageSize": LIST_PAGE_SIZE,
            }
            if page_token:
                params["pageToken"] = page_token
            data = self._request("GET", "/files", params=params)
            if not isinstance(data, dict):
                raise InvalidResponseError("Unexpected listing response")
            files.extend(data.get("files", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                return files

    def list_children(self, folder_id: str) -> dict[str, RemoteItem]:
        """List the non-trashed children of a folder keyed by name.

        Drive allows several children with the same name; only the first
        one returned is used.
        """
        query = f"'{_quote(folder_id)}' in parents and trashed=false"
        children: dict[str, RemoteItem] = {}
        for data in self._list_files(query, LIST_FIELDS):
            try:
                item = RemoteItem.from_api_response(data)
            except KeyError as e:
                raise InvalidResponseError(f"File resource without {e}") from e
            if item.name in children:
                logger.warning(
                    "Duplicate name %r in remote folder %s, ignoring %s",
                    item.name,
                    folder_id,
                    item.id,
                )
                continue
            children[item.name] = item
        logger.debug("Listed %d children of %s", len(children), folder_id)
        return children

    def list_all_folders(self) -> list[RemoteFolderRef]:
        """List every non-trashed folder of the account, sorted by name."""
        query = f"mimeType='{FOLDER_MIME_TYPE}' and trashed=false"
        folders = [
            RemoteFolderRef(id=str(data["id"]), name=str(data.get("name", "")))
            for data in self._list_files(query, FOLDER_FIELDS)
            if "id" in data
        ]
        return sorted(folders, key=lambda f: f.name.lower())

    # =========================
    # Mutations
    # =========================

    def create_folder(self, name: str, parent_id: str) -> str:
        """Create a folder and return its id."""
        data = self._request(
            "POST",
            "/files",
            params={"fields": "id"},
            json={"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]},
        )
        folder_id = data.get("id") if isinstance(data, dict) else None
        if not folder_id:
            raise InvalidResponseError("Folder creation returned no id")
        logger.debug("Created folder %s in %s: %s", name, parent_id, folder_id)
        return str(folder_id)

    def delete(self, remote_id: str) -> None:
        """Delete an item. An item that no longer exists counts as deleted."""
        try:
            self._request("DELETE", f"/files/{remote_id}")
        except RemoteNotFoundError:
            logger.debug("Remote item %s already deleted", remote_id)

    def upload(
        self,
        local_path: Path,
        parent_id: str,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> str:
        """Upload a file through a resumable upload session.

        Args:
            local_path: Local file to upload
            parent_id: Folder receiving the file
            progress_callback: Optional callback function(bytes_uploaded, total_bytes)

        Returns:
            Id of the new file
        """
        file_size = local_path.stat().st_size
        mime_type, _ = mimetypes.guess_type(local_path.name)
        mime_type = mime_type or "application/octet-stream"

        response = self._send(
            "POST",
            f"{self.upload_url}/files",
            params={"uploadType": "resumable", "fields": "id"},
            headers={
                "X-Upload-Content-Type": mime_type,
                "X-Upload-Content-Length": str(file_size),
            },
            json={"name": local_path.name, "parents": [parent_id]},
        )
        session_url = response.headers.get("Location")
        if not session_url:
            raise InvalidResponseError("Upload session returned no Location header")

        bytes_uploaded = 0
        with open(local_path, "rb") as f:
            while True:
                chunk = f.read(self.chunk_size)
                start = bytes_uploaded
                end = start + len(chunk) - 1
                if chunk:
                    content_range = f"bytes {start}-{end}/{file_size}"
                else:
                    content_range = f"bytes */{file_size}"
                response = self._send(
                    "PUT",
                    session_url,
                    accept_status=(RESUME_INCOMPLETE,),
                    content=chunk,
                    headers={
                        "Content-Type": mime_type,
                        "Content-Range": content_range,
                    },
                    follow_redirects=False,
                )
                bytes_uploaded += len(chunk)
                if progress_callback:
                    progress_callback(bytes_uploaded, file_size)
                if response.status_code != RESUME_INCOMPLETE:
                    break
                if not chunk:
                    raise RemoteAPIError("Upload incomplete after sending all data")

        try:
            data = response.json()
        except ValueError as e:
            raise InvalidResponseError("Invalid JSON response from upload") from e
        file_id = data.get("id") if isinstance(data, dict) else None
        if not file_id:
            raise InvalidResponseError("Upload returned no file id")
        logger.debug("Uploaded %s to %s: %s", local_path, parent_id, file_id)
        return str(file_id)

    def download(
        self,
        remote_id: str,
        dest_path: Path,
        progress_callback: Callable[[int, int], None] | None = None,
        timeout: int = 60,
    ) -> None:
        """Download a file, replacing *dest_path* only once it is complete.

        Args:
            remote_id: Id of the file to download
            dest_path: Where to save the file
            progress_callback: Optional callback function(bytes_downloaded, total_bytes)
            timeout: Request timeout in seconds (default: 60)
        """
        url = f"{self.api_url}/files/{remote_id}"
        client = self._get_client()
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{dest_path.name}.", suffix=".part", dir=dest_path.parent
        )
        try:
            with os.fdopen(fd, "wb") as f:
                with client.stream(
                    "GET",
                    url,
                    params={"alt": "media"},
                    headers=self._auth_headers(),
                    timeout=timeout,
                ) as response:
                    if not response.is_success:
                        response.read()
                        raise self._error_for_status(response)

                    total_size = int(response.headers.get("Content-Length", 0))
                    bytes_downloaded = 0
                    for chunk in response.iter_bytes(chunk_size=64 * 1024):
                        if chunk:
                            f.write(chunk)
                            bytes_downloaded += len(chunk)
                            if progress_callback:
                                progress_callback(bytes_downloaded, total_size)
            os.replace(tmp_name, dest_path)
        except httpx.RequestError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise NetworkError(f"Network error during download: {e}") from e
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Downloaded %s to %s", remote_id, dest_path)
