"""
Deterministic binding tags.

Context tag (scopes a price proof to one credential instance):
    v1: Keccak256(packed("zkp-bind-v1", chainId, escrow, productId, stage, schemaVersion))
    v2: Keccak256(packed("zkp-bind-v2", chainId, escrow, productId, stage, schemaVersion, previousVCCid))

Linkage tag (binds a purchase tx-hash commitment to its delivery commitment):
    Keccak256(packed("tx-hash-bind-v1", chainId, escrow, productId, buyer))

Pure functions of their inputs: issuer and holder derive the same tag without
a handshake. The version prefixes keep the three families disjoint.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Final, Optional, Union

from eth_utils import is_address, to_checksum_address
from web3 import Web3

from vc_chain import DEFAULT_SCHEMA_VERSION, STAGES

if TYPE_CHECKING:
    from vc_chain.models import BindingContext, Commitment

CONTEXT_TAG_V1: Final[str] = "zkp-bind-v1"
CONTEXT_TAG_V2: Final[str] = "zkp-bind-v2"
LINKAGE_TAG_V1: Final[str] = "tx-hash-bind-v1"

IntLike = Union[int, str]


def _uint(value: Any, label: str) -> int:
    """Validate a non-negative integer given as int or decimal string."""
    if isinstance(value, bool):
        raise ValueError(f"{label} must be a non-negative integer, got {value!r}")
    if isinstance(value, int):
        n = value
    elif isinstance(value, str) and value.strip().isdigit():
        n = int(value.strip())
    else:
        raise ValueError(f"{label} must be a non-negative integer, got {value!r}")
    if n < 0 or n >= 2**256:
        raise ValueError(f"{label} out of range")
    return n


def _address(value: Any, label: str) -> str:
    if not isinstance(value, str) or not is_address(value):
        raise ValueError(f"{label} is not a valid address: {value!r}")
    return to_checksum_address(value)


def _stage(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value not in STAGES:
        raise ValueError(f"Invalid stage: {value!r}. Must be 0, 1, or 2")
    return value


def derive_context_tag(
    *,
    chain_id: IntLike,
    escrow_addr: str,
    product_id: IntLike,
    stage: int,
    schema_version: str = DEFAULT_SCHEMA_VERSION,
    previous_credential_id: Optional[str] = None,
) -> bytes:
    """
    Compute the 32-byte context binding tag.

    Args:
        chain_id: EVM chain id
        escrow_addr: Product escrow contract address (any case)
        product_id: Product id from the escrow contract
        stage: 0 listing, 1 order confirmation, 2 delivery
        schema_version: Credential schema version
        previous_credential_id: Content id of the previous stage (selects v2)

    Returns:
        32-byte Keccak256 tag

    Raises:
        ValueError: On any malformed input
    """
    chain = _uint(chain_id, "chainId")
    escrow = _address(escrow_addr, "escrowAddr")
    pid = _uint(product_id, "productId")
    stg = _stage(stage)
    if not isinstance(schema_version, str) or not schema_version:
        raise ValueError(f"Invalid schemaVersion: {schema_version!r}. Must be a string")

    if previous_credential_id:
        tag = Web3.solidity_keccak(
            ["string", "uint256", "address", "uint256", "uint8", "string", "string"],
            [CONTEXT_TAG_V2, chain, escrow, pid, stg, schema_version, previous_credential_id],
        )
    else:
        tag = Web3.solidity_keccak(
            ["string", "uint256", "address", "uint256", "uint8", "string"],
            [CONTEXT_TAG_V1, chain, escrow, pid, stg, schema_version],
        )
    return bytes(tag)


def context_tag_for(ctx: "BindingContext") -> bytes:
    """Context tag for a BindingContext carried in a credential."""
    return derive_context_tag(
        chain_id=ctx.chain_id,
        escrow_addr=ctx.escrow_addr,
        product_id=ctx.product_id,
        stage=ctx.stage,
        schema_version=ctx.schema_version,
        previous_credential_id=ctx.previous_vc_cid,
    )


def derive_linkage_tag(
    *,
    chain_id: IntLike,
    escrow_addr: str,
    product_id: IntLike,
    buyer_addr: str,
) -> bytes:
    """
    Compute the 32-byte tag shared by a purchase and a delivery tx-hash commitment.

    Raises:
        ValueError: On any malformed input
    """
    tag = Web3.solidity_keccak(
        ["string", "uint256", "address", "uint256", "address"],
        [
            LINKAGE_TAG_V1,
            _uint(chain_id, "chainId"),
            _address(escrow_addr, "escrowAddr"),
            _uint(product_id, "productId"),
            _address(buyer_addr, "buyerAddr"),
        ],
    )
    return bytes(tag)


def to_hex32(b: bytes) -> str:
    """Convert 32-byte value to 0x-prefixed hex string."""
    if len(b) != 32:
        raise ValueError("expected 32-byte value")
    return "0x" + b.hex()


def normalize_hex(value: str) -> str:
    """Lower-case hex without 0x prefix."""
    v = value.strip().lower()
    return v[2:] if v.startswith("0x") else v


def tags_equal(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return normalize_hex(a) == normalize_hex(b)


def verify_binding_tags_match(
    purchase: Optional["Commitment"], delivery: Optional["Commitment"]
) -> bool:
    """
    True when both tx-hash commitments carry the same linkage tag.

    Missing commitments or missing tags are never linked.
    """
    if purchase is None or delivery is None:
        return False
    return tags_equal(purchase.binding_tag, delivery.binding_tag)
