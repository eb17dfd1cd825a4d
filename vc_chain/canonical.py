"""
Canonical JSON for credentials.

The same bytes are used as the pre-image for vcHash, as the content-addressed
storage payload and as the source of the price string that gets signed.
"""

from __future__ import annotations

import base64
import hashlib
import json
from typing import Any, Union

from eth_utils import keccak

# CIDv1 prefix: version 1, raw codec, sha2-256 multihash of 32 bytes
_CID_V1_RAW_SHA256 = b"\x01\x55\x12\x20"


def _plain(obj: Any) -> Any:
    # Credential models expose to_dict(); everything else is already JSON-shaped
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return obj


def canonical(obj: Any) -> bytes:
    """Canonical JSON serialization for deterministic hashing."""
    return json.dumps(
        _plain(obj), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def canonicalize(credential: Any) -> str:
    """
    Canonical string form of a credential (model or plain dict).

    Idempotent: canonicalize(parse(canonicalize(x))) == canonicalize(x).
    """
    return canonical(credential).decode("utf-8")


def parse(data: Union[str, bytes]) -> Any:
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    return json.loads(data)


def hash_vc_payload(credential: Any) -> str:
    """Keccak256 of the canonical credential (vcHash), 0x-prefixed."""
    return "0x" + keccak(canonical(credential)).hex()


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def content_id(data: bytes) -> str:
    """CIDv1 (raw codec, sha2-256, base32 multibase) for immutable bytes."""
    digest = hashlib.sha256(data).digest()
    encoded = base64.b32encode(_CID_V1_RAW_SHA256 + digest).decode("ascii")
    return "b" + encoded.lower().rstrip("=")
