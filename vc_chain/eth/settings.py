"""
Client configuration.

Environment variables:
- RPC_URL: Ethereum JSON-RPC endpoint (required for chain checks)
- VC_CHAIN_ID: Chain id used in DIDs and EIP-712 domains (default: 11155111)
- PROVER_URL: Commitment prover base URL (default: http://localhost:5010)
- PROVER_TIMEOUT: Prover request timeout in seconds (default: 10)
- IPFS_GATEWAY_URL: Gateway used for credential fetches
- PINATA_JWT: Pinata API token for uploads (optional)
- ALLOW_UNBOUND_DOMAIN: Accept signatures over a domain without verifyingContract (default: true)
- STRICT_LINKAGE: Refuse to synthesize a missing binding context (default: false)
"""

from __future__ import annotations

import os
from dataclasses import dataclass


def _req(name: str) -> str:
    """Get required environment variable or raise."""
    v = os.getenv(name)
    if not v:
        raise RuntimeError(f"Missing required env var: {name}")
    return v


def _opt(name: str, default: str) -> str:
    return os.getenv(name, default)


def _opt_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for verifier and builder clients."""

    RPC_URL: str = ""
    VC_CHAIN_ID: int = 11155111

    PROVER_URL: str = "http://localhost:5010"
    PROVER_TIMEOUT: float = 10.0

    IPFS_GATEWAY_URL: str = "https://gateway.pinata.cloud/ipfs"
    PINATA_JWT: str = ""

    # Verification policy
    ALLOW_UNBOUND_DOMAIN: bool = True
    STRICT_LINKAGE: bool = False

    @staticmethod
    def load() -> Settings:
        """Load settings from environment variables."""
        return Settings(
            RPC_URL=_opt("RPC_URL", ""),
            VC_CHAIN_ID=int(_opt("VC_CHAIN_ID", "11155111")),
            PROVER_URL=_opt("PROVER_URL", "http://localhost:5010"),
            PROVER_TIMEOUT=float(_opt("PROVER_TIMEOUT", "10")),
            IPFS_GATEWAY_URL=_opt("IPFS_GATEWAY_URL", "https://gateway.pinata.cloud/ipfs"),
            PINATA_JWT=_opt("PINATA_JWT", ""),
            ALLOW_UNBOUND_DOMAIN=_opt_bool("ALLOW_UNBOUND_DOMAIN", True),
            STRICT_LINKAGE=_opt_bool("STRICT_LINKAGE", False),
        )

    def rpc_url(self) -> str:
        """RPC endpoint, raising when chain access is needed but unconfigured."""
        return self.RPC_URL or _req("RPC_URL")
