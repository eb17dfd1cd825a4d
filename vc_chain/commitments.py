"""
Commitment engine.

Blinding is deterministic (Keccak256 of escrow || seller), so seller and buyer
reproduce the same Pedersen commitment for the same hidden price without ever
exchanging a blinding factor. The Pedersen math itself runs in the prover.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional, Protocol, Tuple

from eth_utils import is_address, to_checksum_address
from web3 import Web3

from vc_chain.binding import context_tag_for, normalize_hex, to_hex32
from vc_chain.errors import MalformedCommitmentResponse
from vc_chain.models import BindingContext, Commitment

logger = logging.getLogger(__name__)

U64_MAX = 2**64 - 1
_TX_HASH = re.compile(r"^0x[0-9a-fA-F]{64}$")


class Prover(Protocol):
    def commit(self, value: int, blinding_hex: str) -> Dict[str, Any]: ...

    def commit_with_binding(
        self, value: int, blinding_hex: str, binding_tag_hex: str
    ) -> Dict[str, Any]: ...

    def verify(
        self, commitment: str, proof: str, binding_tag_hex: Optional[str] = None
    ) -> Dict[str, Any]: ...

    def commit_tx_hash(
        self, tx_hash: str, binding_tag_hex: Optional[str] = None
    ) -> Dict[str, Any]: ...


def derive_blinding(escrow_addr: str, seller_addr: str) -> bytes:
    """
    Deterministic 32-byte blinding factor.

    Keccak256(packed(address escrow, address seller)) over checksummed addresses,
    so address case never changes the result.
    """
    for label, addr in (("escrowAddr", escrow_addr), ("sellerAddr", seller_addr)):
        if not isinstance(addr, str) or not is_address(addr):
            raise ValueError(f"{label} is not a valid address: {addr!r}")
    return bytes(
        Web3.solidity_keccak(
            ["address", "address"],
            [to_checksum_address(escrow_addr), to_checksum_address(seller_addr)],
        )
    )


def verify_commitment(vc_commitment: Optional[str], on_chain_commitment: Optional[str]) -> bool:
    """
    Equality of a credential commitment and the on-chain stored one.

    Case- and 0x-insensitive. Not a cryptographic check by itself: it compares
    against a value that was produced by a verified commitment.
    """
    if not vc_commitment or not on_chain_commitment:
        return False
    return normalize_hex(vc_commitment) == normalize_hex(on_chain_commitment)


def _validated(resp: Dict[str, Any], what: str) -> Tuple[str, str, bool]:
    commitment = resp.get("commitment")
    proof = resp.get("proof")
    if not commitment or not proof:
        raise MalformedCommitmentResponse(f"Prover response for {what} lacks commitment or proof")
    verified = resp.get("verified") is True
    if not verified:
        # Recoverable: callers decide whether to use an unverified commitment
        logger.warning(f"Prover did not verify {what} commitment {str(commitment)[:18]}...")
    return str(commitment), str(proof), verified


class CommitmentEngine:
    """Prepares prover inputs and validates prover outputs."""

    def __init__(self, prover: Prover):
        self.prover = prover

    def commit_value(
        self, value: int, blinding: bytes, binding_tag: Optional[bytes] = None
    ) -> Commitment:
        """
        Commit to a u64 value (price in minor units).

        Raises:
            ValueError: Value outside u64 or blinding not 32 bytes
            ProverUnavailable: Prover unreachable
            MalformedCommitmentResponse: Missing commitment/proof
        """
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= U64_MAX:
            raise ValueError(f"Invalid value: {value!r}. Must be a valid u64 number")
        blinding_hex = to_hex32(blinding)
        if binding_tag is None:
            resp = self.prover.commit(value, blinding_hex)
        else:
            resp = self.prover.commit_with_binding(value, blinding_hex, to_hex32(binding_tag))
        commitment, proof, verified = _validated(resp, "value")
        return Commitment(
            commitment=commitment,
            proof=proof,
            verified=verified,
            binding_tag=to_hex32(binding_tag) if binding_tag is not None else None,
        )

    def commit_price(
        self,
        value: int,
        *,
        escrow_addr: str,
        seller_addr: str,
        context: BindingContext,
    ) -> Commitment:
        """Commit a hidden price with deterministic blinding, bound to a credential context."""
        blinding = derive_blinding(escrow_addr, seller_addr)
        tag = context_tag_for(context)
        c = self.commit_value(value, blinding, binding_tag=tag)
        return c.model_copy(
            update={
                "proof_type": "zkRangeProof-v1",
                "description": "This ZKP proves the price is in the allowed range without revealing it.",
                "binding_context": context,
            }
        )

    def commit_tx_hash(self, tx_hash: str, binding_tag: Optional[bytes] = None) -> Commitment:
        """
        Commit to a 32-byte transaction hash.

        Raises:
            ValueError: tx_hash is not 0x + 64 hex chars
        """
        if not isinstance(tx_hash, str) or not _TX_HASH.match(tx_hash):
            raise ValueError("tx_hash must be a 0x-prefixed 32-byte hex string")
        tag_hex = to_hex32(binding_tag) if binding_tag is not None else None
        resp = self.prover.commit_tx_hash(tx_hash, tag_hex)
        commitment, proof, verified = _validated(resp, "tx-hash")
        return Commitment(commitment=commitment, proof=proof, verified=verified, binding_tag=tag_hex)

    def verify(self, commitment: Commitment) -> bool:
        """Prover verification of commitment + proof (+ binding tag if present)."""
        resp = self.prover.verify(commitment.commitment, commitment.proof, commitment.binding_tag)
        if "verified" not in resp:
            raise MalformedCommitmentResponse("Prover verify response lacks 'verified'")
        return resp["verified"] is True
