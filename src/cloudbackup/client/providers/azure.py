"""Azure Blob Storage provider transport.

Talks to the Blob service REST API over httpx using a storage account
name and a SAS token. Each file is a block blob; blocks are staged with
Put Block (guarded by Content-MD5) and committed with Put Block List.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import quote
from xml.sax.saxutils import escape

import httpx

from cloudbackup.client.models import METADATA_FULL_SOURCE_PATH, ProviderFileStatus
from cloudbackup.client.providers.base import (
    ProviderFileOperations,
    build_block_metadata,
    generate_block_id,
    generate_block_list,
)
from cloudbackup.core.blocks import get_block_hash
from cloudbackup.core.exceptions import (
    IntegrityError,
    NotFoundError,
    ProviderAuthenticationError,
    TransportError,
)
from cloudbackup.core.types import ProviderType

if TYPE_CHECKING:
    from cloudbackup.client.models import BackupFile, DirectoryMapItem

logger = logging.getLogger(__name__)

API_VERSION = "2021-08-06"
ARCHIVE_TIER = "Archive"
METADATA_HEADER_PREFIX = "x-ms-meta-"

# Error codes the service returns for a Content-MD5 mismatch
INTEGRITY_ERROR_CODES = {"Md5Mismatch", "InvalidMd5"}


class AzureProviderFileOperations(ProviderFileOperations):
    """Provider transport for Azure Blob Storage."""

    def __init__(
        self,
        storage_account_name: str,
        sas_token: str,
        timeout: float = 60.0,
        endpoint: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the Azure transport.

        Args:
            storage_account_name: Azure storage account name.
            sas_token: Shared access signature query string.
            timeout: Request timeout in seconds.
            endpoint: Blob service URL (defaults to the public endpoint).
            transport: Optional httpx transport (used by tests).
        """
        if not storage_account_name or not storage_account_name.strip():
            raise ValueError("storage_account_name must be provided.")
        if not sas_token or not sas_token.strip():
            raise ValueError("sas_token must be provided.")

        self._account = storage_account_name
        self._endpoint = (endpoint or f"https://{storage_account_name}.blob.core.windows.net").rstrip("/")
        self._client = httpx.Client(
            base_url=self._endpoint,
            params=httpx.QueryParams(sas_token.lstrip("?")),
            headers={"x-ms-version": API_VERSION},
            timeout=timeout,
            transport=transport,
        )

    @property
    def provider_type(self) -> ProviderType:
        """Return the provider type."""
        return ProviderType.AZURE

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> AzureProviderFileOperations:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    # === HTTP helpers ===

    def _request(
        self,
        method: str,
        url: str,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        content: bytes | None = None,
    ) -> httpx.Response:
        """Send a request and map failures to provider exceptions."""
        try:
            response = self._client.request(
                method, url, params=params, headers=headers, content=content
            )
        except httpx.RequestError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code < 400:
            return response

        error_code = response.headers.get("x-ms-error-code", "")
        detail = f"{response.status_code} {error_code or response.reason_phrase}"
        if response.status_code == 404:
            raise NotFoundError(f"Resource not found: {detail}", 404)
        if response.status_code in (401, 403):
            raise ProviderAuthenticationError(f"Access denied: {detail}", response.status_code)
        if error_code in INTEGRITY_ERROR_CODES:
            raise IntegrityError(f"Block integrity check failed: {detail}", response.status_code)
        raise TransportError(f"Azure request failed: {detail}", response.status_code)

    def _blob_url(self, file: BackupFile, directory: DirectoryMapItem) -> str:
        return f"/{directory.get_remote_container_name()}/{file.get_remote_file_name()}"

    # === Provider operations ===

    def get_file_status(self, file: BackupFile, directory: DirectoryMapItem) -> ProviderFileStatus:
        """Return the status of a file as it exists (or doesn't) in Azure."""
        logger.debug("Checking the Azure provider status.")

        # the default state for a fresh status object is unsynced
        status = ProviderFileStatus(provider=self.provider_type)
        try:
            response = self._request("HEAD", self._blob_url(file, directory))
        except NotFoundError:
            logger.debug("File sync status in Azure: unsynced (blob does not exist)")
            return status

        status.apply_metadata(self._read_metadata(response))
        logger.debug(f"File sync status in Azure: {status.sync_status.value}")
        return status

    def upload_file_block(
        self,
        file: BackupFile,
        directory: DirectoryMapItem,
        data: bytes,
        block_index: int,
        total_blocks: int,
    ) -> None:
        """Upload, commit and annotate a single block."""
        blob_url = self._blob_url(file, directory)
        block_number = block_index + 1

        logger.debug(f"Uploading file block ({block_number} of {total_blocks}) to Azure storage.")

        try:
            self._put_block(blob_url, file, data, block_index)
        except NotFoundError:
            container = directory.get_remote_container_name()
            logger.info(f"Azure container [{container}] does not exist. Creating it now.")
            self._create_container(container)
            self._put_block(blob_url, file, data, block_index)

        # the block is uncommitted until it is listed with all earlier blocks
        self._put_block_list(blob_url, generate_block_list(file, block_index))
        self._set_metadata(blob_url, build_block_metadata(file, block_index, total_blocks))

        if block_number == total_blocks:
            # the tier only needs to be set once, when the upload completes
            if self._get_access_tier(blob_url) != ARCHIVE_TIER:
                self._set_access_tier(blob_url, ARCHIVE_TIER)
            logger.info(f"Upload of {file.full_source_path} to Azure completed successfully.")

    def _create_container(self, container: str) -> None:
        try:
            self._request("PUT", f"/{container}", params={"restype": "container"})
        except TransportError as e:
            # another agent thread may have created it first
            if e.status_code != 409:
                raise

    def _put_block(self, blob_url: str, file: BackupFile, data: bytes, block_index: int) -> None:
        self._request(
            "PUT",
            blob_url,
            params={"comp": "block", "blockid": generate_block_id(file, block_index)},
            headers={"Content-MD5": get_block_hash(data)},
            content=data,
        )

    def _put_block_list(self, blob_url: str, block_ids: list[str]) -> None:
        body = "".join(f"<Latest>{escape(block_id)}</Latest>" for block_id in block_ids)
        xml = f'<?xml version="1.0" encoding="utf-8"?><BlockList>{body}</BlockList>'
        self._request(
            "PUT",
            blob_url,
            params={"comp": "blocklist"},
            headers={"Content-Type": "application/xml"},
            content=xml.encode("utf-8"),
        )

    def _set_metadata(self, blob_url: str, metadata: dict[str, str]) -> None:
        headers = {
            METADATA_HEADER_PREFIX + key: quote(value, safe="/:")
            if key == METADATA_FULL_SOURCE_PATH
            else value
            for key, value in metadata.items()
        }
        self._request("PUT", blob_url, params={"comp": "metadata"}, headers=headers)

    def _get_access_tier(self, blob_url: str) -> str | None:
        response = self._request("HEAD", blob_url)
        return response.headers.get("x-ms-access-tier")

    def _set_access_tier(self, blob_url: str, tier: str) -> None:
        self._request(
            "PUT",
            blob_url,
            params={"comp": "tier"},
            headers={"x-ms-access-tier": tier},
        )

    @staticmethod
    def _read_metadata(response: httpx.Response) -> dict[str, str]:
        """Extract x-ms-meta-* headers as a metadata dict."""
        return {
            name[len(METADATA_HEADER_PREFIX):]: value
            for name, value in response.headers.items()
            if name.lower().startswith(METADATA_HEADER_PREFIX)
        }
