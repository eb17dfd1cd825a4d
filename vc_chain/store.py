"""
Content-addressed credential storage.

Stores hold immutable bytes keyed by content id. A credential chain is a
linked list of those ids (previousCredential), so an unresolvable id is a
broken chain, not a transient failure.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional, Protocol, Union

import httpx

from vc_chain.canonical import canonical, content_id
from vc_chain.errors import ChainLinkBroken, ContentNotFound, StoreUnavailable
from vc_chain.eth.metrics import Metrics
from vc_chain.models import Credential

logger = logging.getLogger(__name__)

PINATA_PIN_FILE_URL = "https://api.pinata.cloud/pinning/pinFileToIPFS"


class ContentStore(Protocol):
    def put(self, data: bytes) -> str: ...

    def get(self, cid: str) -> bytes: ...


class InMemoryContentStore:
    """Process-local store with CIDv1 (sha2-256) addressing."""

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, data: bytes) -> str:
        cid = content_id(data)
        with self._lock:
            self._blobs[cid] = bytes(data)
        return cid

    def get(self, cid: str) -> bytes:
        with self._lock:
            data = self._blobs.get(cid)
        if data is None:
            raise ContentNotFound(f"No content for {cid}")
        return data

    def __contains__(self, cid: str) -> bool:
        return cid in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)


class PinataContentStore:
    """
    IPFS via Pinata: uploads through pinFileToIPFS (JWT), reads through a gateway.

    The gateway may be public; uploads need a Pinata JWT.
    """

    def __init__(
        self,
        gateway_url: str,
        jwt: str = "",
        *,
        timeout_seconds: float = 15.0,
        metrics: Optional[Metrics] = None,
        http: Optional[httpx.Client] = None,
    ):
        self.gateway_url = gateway_url.rstrip("/")
        self.jwt = jwt
        self.metrics = metrics or Metrics()
        self.http = http or httpx.Client(timeout=timeout_seconds)

    def put(self, data: bytes) -> str:
        if not self.jwt:
            raise StoreUnavailable("PINATA_JWT is not configured; uploads are disabled")
        try:
            resp = self.http.post(
                PINATA_PIN_FILE_URL,
                headers={"Authorization": f"Bearer {self.jwt}"},
                files={"file": ("vc.json", data, "application/json")},
            )
        except httpx.HTTPError as e:
            self.metrics.inc("store_errors_total")
            raise StoreUnavailable(f"Pinata upload failed: {e}") from e
        if resp.status_code >= 400:
            self.metrics.inc("store_errors_total")
            raise StoreUnavailable(f"Pinata upload failed: HTTP {resp.status_code} {resp.text[:200]}")
        try:
            body = resp.json()
        except ValueError as e:
            self.metrics.inc("store_errors_total")
            raise StoreUnavailable(f"Pinata returned non-JSON: {resp.text[:200]}") from e
        cid = body.get("IpfsHash") if isinstance(body, dict) else None
        if not cid:
            raise StoreUnavailable("Pinata response lacks IpfsHash")
        logger.info(f"Pinned {len(data)} bytes as {cid}")
        return cid

    def get(self, cid: str) -> bytes:
        if not cid or not isinstance(cid, str):
            raise ContentNotFound("Invalid or missing CID")
        url = f"{self.gateway_url}/{cid}"
        try:
            resp = self.http.get(url)
        except httpx.HTTPError as e:
            self.metrics.inc("store_errors_total")
            raise StoreUnavailable(f"Gateway unreachable for {cid}: {e}") from e
        if resp.status_code in (400, 404, 410):
            raise ContentNotFound(f"Gateway has no content for {cid} (HTTP {resp.status_code})")
        if resp.status_code >= 400:
            self.metrics.inc("store_errors_total")
            raise StoreUnavailable(f"Gateway error for {cid}: HTTP {resp.status_code}")
        return resp.content


def put_credential(store: ContentStore, credential: Union[Credential, Dict[str, Any]]) -> str:
    """Store the canonical form of a credential and return its content id."""
    return store.put(canonical(credential))


def load_credential(store: ContentStore, cid: str) -> Credential:
    """
    Fetch and parse a stored credential.

    Raises:
        ContentNotFound: cid unknown to the store
        ChainLinkBroken: content is not a credential
        StoreUnavailable: transport failure
    """
    raw = store.get(cid)
    try:
        return Credential.model_validate_json(raw)
    except ValueError as e:
        raise ChainLinkBroken(f"Content at {cid} is not a valid credential: {e}") from e
