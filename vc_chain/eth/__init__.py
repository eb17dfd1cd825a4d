"""
vc-chain Ethereum integration.

Escrow state reads and commitment-event lookups. Only block numbers leave
this layer; transaction hashes stay hidden behind their commitments.
"""

from vc_chain.eth.chain_client import ChainClient, CommitmentEvent, EscrowState
from vc_chain.eth.metrics import Metrics
from vc_chain.eth.settings import Settings

__all__ = [
    "ChainClient",
    "CommitmentEvent",
    "EscrowState",
    "Metrics",
    "Settings",
]
