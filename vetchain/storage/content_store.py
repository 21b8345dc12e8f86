"""
Content Store Abstraction

This module defines the ContentStore interface and provides two implementations:
- InMemoryContentStore: For development and testing
- PinningServiceStore: HTTP pinning service for uploads + public gateway for reads

The content store is responsible for:
- put: uploading opaque blobs or JSON documents, returning a CID
- get: fetching bytes (or a parsed JSON document) by CID

It is NOT responsible for:
- Retries (the caller decides the retry policy)
- Deduplication (identical bytes may or may not yield an existing CID)
- Replication/pinning guarantees (the network's business)

Every failure surfaces as StoreUnavailable.
"""

import json
import time
from abc import ABC, abstractmethod
from typing import Any, Optional, Union

import httpx
from pydantic import BaseModel

from ..config import ContentStoreConfig
from ..core.errors import StoreUnavailable
from ..core.hasher import CanonicalSerializationError, Hasher
from ..observability import get_logger, get_metrics

logger = get_logger(__name__)

Document = Union[dict, BaseModel]


class ContentStore(ABC):
    """
    Abstract content-addressed store.

    All methods are coroutines; every network boundary is a suspension point.
    """

    @abstractmethod
    async def put_bytes(
        self,
        content: bytes,
        filename: str = "file",
        content_type: str = "application/octet-stream",
    ) -> str:
        """
        Upload an opaque blob.

        Returns:
            CID string usable as a durable reference

        Raises:
            StoreUnavailable: if the store rejects or times out
        """
        pass

    @abstractmethod
    async def put_json(self, document: Document) -> str:
        """
        Upload a JSON document (serialized canonically by this layer).

        Raises:
            StoreUnavailable: if the store rejects or times out
        """
        pass

    @abstractmethod
    async def get_bytes(self, cid: str) -> bytes:
        """
        Fetch raw bytes by CID.

        Raises:
            StoreUnavailable: on fetch error or unknown CID
        """
        pass

    async def put(self, content: Union[bytes, Document]) -> str:
        """Upload a blob or a document, whichever `content` is."""
        if isinstance(content, (bytes, bytearray)):
            return await self.put_bytes(bytes(content))
        return await self.put_json(content)

    async def get_json(self, cid: str) -> dict[str, Any]:
        """
        Fetch and parse a JSON document by CID.

        Raises:
            StoreUnavailable: on fetch error, malformed JSON, or non-object JSON
        """
        raw = await self.get_bytes(cid)
        try:
            document = json.loads(raw)
        except (UnicodeDecodeError, ValueError) as e:
            raise StoreUnavailable(f"Malformed JSON document at {cid}: {e}")
        if not isinstance(document, dict):
            raise StoreUnavailable(
                f"Document at {cid} is a {type(document).__name__}, expected an object"
            )
        return document

    async def aclose(self) -> None:
        """Release network resources (no-op by default)."""
        pass

    @staticmethod
    def _encode(document: Document) -> bytes:
        try:
            return Hasher.encode(document)
        except CanonicalSerializationError as e:
            raise StoreUnavailable(f"Document cannot be serialized: {e}")


# ============================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================

class InMemoryContentStore(ContentStore):
    """
    In-memory content store for development and testing.

    CIDs are derived from content, so identical bytes yield identical CIDs.
    Records every put/get for call-count assertions.
    """

    def __init__(self):
        self._blobs: dict[str, bytes] = {}
        self._failing_cids: set[str] = set()
        self._fail_puts = False
        self.puts: list[str] = []
        self.gets: list[str] = []

    def fail_fetch(self, cid: str) -> None:
        """Make fetching `cid` fail (simulated propagation lag / gateway error)."""
        self._failing_cids.add(cid)

    def fail_uploads(self, failing: bool = True) -> None:
        self._fail_puts = failing

    def seed(self, cid: str, content: Union[bytes, dict]) -> None:
        """Store content under an explicit CID (fixtures for externally pinned data)."""
        if isinstance(content, dict):
            content = json.dumps(content).encode("utf-8")
        self._blobs[cid] = content

    def __contains__(self, cid: str) -> bool:
        return cid in self._blobs

    async def put_bytes(
        self,
        content: bytes,
        filename: str = "file",
        content_type: str = "application/octet-stream",
    ) -> str:
        if self._fail_puts:
            get_metrics().record_upload(success=False)
            raise StoreUnavailable("Pinning service rejected the upload")
        cid = Hasher.content_id(content)
        self._blobs[cid] = content
        self.puts.append(cid)
        get_metrics().record_upload(success=True)
        return cid

    async def put_json(self, document: Document) -> str:
        return await self.put_bytes(self._encode(document), "document.json", "application/json")

    async def get_bytes(self, cid: str) -> bytes:
        self.gets.append(cid)
        start = time.perf_counter()
        if cid in self._failing_cids or cid not in self._blobs:
            get_metrics().record_fetch((time.perf_counter() - start) * 1000, success=False)
            raise StoreUnavailable(f"Content not available: {cid}")
        get_metrics().record_fetch((time.perf_counter() - start) * 1000, success=True)
        return self._blobs[cid]


# ============================================================
# HTTP IMPLEMENTATION
# ============================================================

class PinningServiceStore(ContentStore):
    """
    Pinning-service uploads + gateway reads over HTTP.

    Uploads:
        POST {pinning_api_url}/pinning/pinFileToIPFS   (multipart "file")
        POST {pinning_api_url}/pinning/pinJSONToIPFS   (JSON body)
        -> {"IpfsHash": "<cid>", ...}
    Reads:
        GET {gateway_url}{cid}

    Usage:
        async with PinningServiceStore(ContentStoreConfig.from_env()) as store:
            cid = await store.put_json({"name": "Luna"})
    """

    def __init__(
        self,
        config: ContentStoreConfig,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout)

    async def __aenter__(self) -> "PinningServiceStore":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _auth_headers(self) -> dict[str, str]:
        if not self._config.pinning_jwt:
            return {}
        return {"Authorization": f"Bearer {self._config.pinning_jwt}"}

    def _pinning_url(self, path: str) -> str:
        return f"{self._config.pinning_api_url.rstrip('/')}/pinning/{path}"

    async def _pin(self, path: str, **request_kwargs) -> str:
        try:
            response = await self._client.post(self._pinning_url(path), **request_kwargs)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            get_metrics().record_upload(success=False)
            logger.warning("Upload failed", endpoint=path, error=str(e))
            raise StoreUnavailable(f"Pinning service unreachable: {e}")

        if response.status_code >= 400:
            get_metrics().record_upload(success=False)
            detail = _error_detail(response)
            logger.warning("Upload rejected", endpoint=path, status_code=response.status_code, detail=detail)
            raise StoreUnavailable(f"Pinning service rejected upload ({response.status_code}): {detail}")

        try:
            cid = response.json()["IpfsHash"]
        except (ValueError, KeyError, TypeError):
            get_metrics().record_upload(success=False)
            raise StoreUnavailable("Pinning service returned no CID")

        get_metrics().record_upload(success=True)
        logger.debug("Content pinned", endpoint=path, cid=cid)
        return cid

    async def put_bytes(
        self,
        content: bytes,
        filename: str = "file",
        content_type: str = "application/octet-stream",
    ) -> str:
        return await self._pin(
            "pinFileToIPFS",
            files={"file": (filename, content, content_type)},
            headers=self._auth_headers(),
        )

    async def put_json(self, document: Document) -> str:
        headers = {"Content-Type": "application/json", **self._auth_headers()}
        return await self._pin(
            "pinJSONToIPFS",
            content=self._encode(document),
            headers=headers,
        )

    async def get_bytes(self, cid: str) -> bytes:
        start = time.perf_counter()
        try:
            response = await self._client.get(self._config.gateway_url_for(cid), follow_redirects=True)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            # InvalidURL covers CIDs that cannot form a URL (control characters)
            get_metrics().record_fetch((time.perf_counter() - start) * 1000, success=False)
            raise StoreUnavailable(f"Gateway unreachable for {cid!r}: {e}")

        latency_ms = (time.perf_counter() - start) * 1000
        if response.status_code >= 400:
            get_metrics().record_fetch(latency_ms, success=False)
            raise StoreUnavailable(f"Gateway returned {response.status_code} for {cid}")

        get_metrics().record_fetch(latency_ms, success=True)
        return response.content


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("details") or error.get("reason") or error)
        if error:
            return str(error)
    return str(body)[:200]
