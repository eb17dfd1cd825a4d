"""
Escrow chain client.

Provides:
- Escrow state reads (public price commitment, phase, parties)
- Commitment event lookups (purchase / delivery)
- RPC health monitoring
- Non-behavioral metrics
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from eth_abi import decode
from eth_utils import keccak
from web3 import Web3

from vc_chain.binding import normalize_hex
from vc_chain.eth.metrics import Metrics

logger = logging.getLogger(__name__)


# Minimal ABI (read only what we use)
ESCROW_ABI = [
    {
        "type": "function",
        "name": "publicPriceCommitment",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "bytes32"}],
    },
    {
        "type": "function",
        "name": "commitmentFrozen",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "phase",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
    {
        "type": "function",
        "name": "buyer",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "type": "function",
        "name": "owner",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "type": "function",
        "name": "id",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

EVENT_SIGNATURES = {
    "purchase": "PurchaseConfirmedWithCommitment(uint256,bytes32,address,string)",
    "delivery": "DeliveryConfirmedWithCommitment(uint256,bytes32,address,string)",
}


def event_topic(kind: str) -> str:
    """topic0 for a commitment event kind ("purchase" or "delivery")."""
    if kind not in EVENT_SIGNATURES:
        raise ValueError(f"Unknown event kind: {kind!r}")
    return "0x" + keccak(text=EVENT_SIGNATURES[kind]).hex()


def commitment_topic(commitment: str) -> str:
    """Commitment as an indexed bytes32 topic (left-padded, or truncated to 32 bytes)."""
    h = normalize_hex(commitment)
    if len(h) < 64:
        h = h.rjust(64, "0")
    return "0x" + h[:64]


def uint_topic(value: int) -> str:
    return "0x" + int(value).to_bytes(32, "big").hex()


def _hex(v: Any) -> str:
    if isinstance(v, (bytes, bytearray)):
        return "0x" + bytes(v).hex()
    return str(v)


@dataclass(frozen=True)
class EscrowState:
    address: str
    public_price_commitment: str
    commitment_frozen: bool
    phase: int
    buyer: str
    owner: str
    product_id: int


@dataclass(frozen=True)
class CommitmentEvent:
    """A matching commitment event. Deliberately carries no transaction hash."""

    block_number: int
    vc_cid: str
    product_id: int
    succeeded: bool = True


@dataclass
class ChainClient:
    """Read-only escrow client."""

    w3: Web3
    metrics: Metrics

    @staticmethod
    def from_env(rpc_url: str, *, metrics: Optional[Metrics] = None) -> ChainClient:
        w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 8}))
        return ChainClient(w3=w3, metrics=metrics or Metrics())

    def ping(self) -> bool:
        """
        Check RPC health by fetching current block number.

        Returns:
            True if RPC reachable, False otherwise
        """
        t0 = time.time()
        try:
            _ = self.w3.eth.block_number
            self.metrics.observe("rpc_latency_ms", (time.time() - t0) * 1000.0)
            return True
        except Exception:
            self.metrics.inc("rpc_errors_total")
            return False

    def escrow(self, address: str):
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=ESCROW_ABI)

    def escrow_state(self, address: str) -> EscrowState:
        """
        Read the escrow views the verifier depends on.

        Raises:
            Exception: If any RPC call fails
        """
        t0 = time.time()
        c = self.escrow(address)
        try:
            fn = c.functions
            state = EscrowState(
                address=Web3.to_checksum_address(address),
                public_price_commitment=_hex(fn.publicPriceCommitment().call()),
                commitment_frozen=bool(fn.commitmentFrozen().call()),
                phase=int(fn.phase().call()),
                buyer=str(fn.buyer().call()),
                owner=str(fn.owner().call()),
                product_id=int(fn.id().call()),
            )
        except Exception:
            self.metrics.inc("escrow_read_errors_total")
            raise
        self.metrics.observe("escrow_read_ms", (time.time() - t0) * 1000.0)
        return state

    def find_commitment_events(
        self,
        address: str,
        kind: str,
        commitment: str,
        product_id: Optional[int] = None,
    ) -> List[CommitmentEvent]:
        """
        Logs of `kind` on the escrow matching the indexed commitment (and product id).

        Returns:
            Matching events in log order
        """
        topics: List[Optional[str]] = [
            event_topic(kind),
            uint_topic(product_id) if product_id is not None else None,
            commitment_topic(commitment),
        ]
        params: Dict[str, Any] = {
            "address": Web3.to_checksum_address(address),
            "topics": topics,
            "fromBlock": 0,
            "toBlock": "latest",
        }
        t0 = time.time()
        try:
            logs = self.w3.eth.get_logs(params)
        except Exception:
            self.metrics.inc("event_query_errors_total")
            raise
        self.metrics.observe("event_query_ms", (time.time() - t0) * 1000.0)

        events = []
        for log in logs:
            (vc_cid,) = decode(["string"], bytes(log["data"]))
            log_topics = log["topics"]
            events.append(
                CommitmentEvent(
                    block_number=int(log["blockNumber"]),
                    vc_cid=vc_cid,
                    product_id=int.from_bytes(bytes(log_topics[1]), "big"),
                    succeeded=not log.get("removed", False),
                )
            )
        logger.debug(f"{len(events)} {kind} commitment event(s) matched")
        return events
