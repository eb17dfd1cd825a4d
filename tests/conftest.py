"""
Shared fakes for credential-chain tests.

FakeProver mimics the Pedersen prover's contract: the commitment depends only
on the committed value and blinding, the proof also depends on the binding
tag, and verify() accepts only (commitment, proof, tag) triples it issued.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

import pytest
from eth_utils import keccak

from vc_chain.binding import normalize_hex
from vc_chain.builder import CredentialBuilder
from vc_chain.commitments import CommitmentEngine
from vc_chain.eth.chain_client import CommitmentEvent, EscrowState
from vc_chain.signing import LocalKeyHandle
from vc_chain.store import InMemoryContentStore

CHAIN_ID = 11155111
ESCROW = "0x" + "aa" * 20
OTHER_ESCROW = "0x" + "dd" * 20
PRODUCT_ID = 7


class FakeProver:
    """Deterministic in-process stand-in for the prover service."""

    def __init__(self, *, verified: bool = True):
        self.verified = verified
        self.calls: List[Tuple[str, dict]] = []
        self._issued: Dict[Tuple[str, str], Optional[str]] = {}

    def _issue(self, secret: str, tag: Optional[str]) -> dict:
        commitment = "0x" + keccak(text=f"commit:{secret}").hex()
        proof = keccak(text=f"proof:{secret}:{tag}").hex()
        self._issued[(commitment, proof)] = tag
        return {"commitment": commitment, "proof": proof, "verified": self.verified}

    def commit(self, value, blinding_hex):
        self.calls.append(("/commit", {"value": value, "blinding_hex": blinding_hex}))
        return self._issue(f"{value}:{blinding_hex}", None)

    def commit_with_binding(self, value, blinding_hex, binding_tag_hex):
        self.calls.append(
            ("/commit-with-binding", {"value": value, "blinding_hex": blinding_hex, "binding_tag_hex": binding_tag_hex})
        )
        resp = self._issue(f"{value}:{blinding_hex}", binding_tag_hex)
        resp["binding_tag_hex"] = binding_tag_hex
        return resp

    def verify(self, commitment, proof, binding_tag_hex=None):
        self.calls.append(("/verify", {"commitment": commitment, "proof": proof}))
        key = (commitment, proof)
        return {"verified": key in self._issued and self._issued[key] == binding_tag_hex}

    def commit_tx_hash(self, tx_hash, binding_tag_hex=None):
        self.calls.append(("/commit-tx-hash", {"tx_hash": tx_hash, "binding_tag_hex": binding_tag_hex}))
        return self._issue(f"tx:{tx_hash}", binding_tag_hex)


class FakeChain:
    """Chain reader over fixed escrow state and emitted commitment events."""

    def __init__(self, *, price_commitment: str = "", events: Optional[Dict[str, list]] = None):
        self.price_commitment = price_commitment
        self.events: Dict[str, list] = events or {"purchase": [], "delivery": []}

    def escrow_state(self, address):
        return EscrowState(
            address=address,
            public_price_commitment=self.price_commitment,
            commitment_frozen=True,
            phase=2,
            buyer="0x" + "00" * 20,
            owner="0x" + "00" * 20,
            product_id=PRODUCT_ID,
        )

    def emit(self, kind: str, commitment: str, vc_cid: str, block_number: int = 100, product_id: int = PRODUCT_ID):
        self.events[kind].append((normalize_hex(commitment), vc_cid, block_number, product_id))

    def find_commitment_events(self, address, kind, commitment, product_id=None):
        return [
            CommitmentEvent(block_number=block, vc_cid=cid, product_id=pid)
            for c, cid, block, pid in self.events[kind]
            if c == normalize_hex(commitment) and (product_id is None or pid == product_id)
        ]


@pytest.fixture
def seller_key():
    return LocalKeyHandle("0x" + "11" * 32)


@pytest.fixture
def buyer_key():
    return LocalKeyHandle("0x" + "22" * 32)


@pytest.fixture
def prover():
    return FakeProver()


@pytest.fixture
def engine(prover):
    return CommitmentEngine(prover)


@pytest.fixture
def builder(engine):
    return CredentialBuilder(CHAIN_ID, engine)


@pytest.fixture
def store():
    return InMemoryContentStore()


@pytest.fixture
def listing(builder, seller_key):
    return builder.listing(
        seller_addr=seller_key.get_address(),
        escrow_addr=ESCROW,
        product_id=PRODUCT_ID,
        product_name="Battery Cell",
        price_value=4 * 10**18,
        batch="B-01",
        quantity=10,
    )
