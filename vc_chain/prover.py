"""
HTTP client for the external commitment prover (Pedersen + Bulletproofs).

The prover is a black box: this client only moves JSON. Response-shape
validation lives in vc_chain.commitments.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import httpx

from vc_chain.errors import MalformedCommitmentResponse, ProverUnavailable
from vc_chain.eth.metrics import Metrics

logger = logging.getLogger(__name__)


class ProverClient:
    """
    Prover endpoints:
        POST /commit               {value, blinding_hex}
        POST /commit-with-binding  {value, blinding_hex, binding_tag_hex}
        POST /verify               {commitment, proof, binding_tag_hex?}
        POST /commit-tx-hash       {tx_hash, binding_tag_hex?}

    No internal retries. Timeouts surface as ProverUnavailable; callers may
    retry since blinding and tags are deterministic.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        *,
        metrics: Optional[Metrics] = None,
        http: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.metrics = metrics or Metrics()
        self.http = http or httpx.Client(timeout=self.timeout_seconds)

    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        t0 = time.time()
        try:
            resp = self.http.post(url, json=body)
        except httpx.HTTPError as e:
            self.metrics.inc("prover_errors_total")
            logger.warning(f"Prover unreachable at {url}: {e}")
            raise ProverUnavailable(f"Prover unreachable at {url}: {e}") from e
        self.metrics.observe("prover_latency_ms", (time.time() - t0) * 1000.0)

        if resp.status_code >= 400:
            self.metrics.inc("prover_errors_total")
            raise ProverUnavailable(
                f"Prover returned HTTP {resp.status_code} for {path}: {resp.text[:200]}"
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedCommitmentResponse(f"Prover returned non-JSON body for {path}") from e
        if not isinstance(data, dict):
            raise MalformedCommitmentResponse(f"Prover returned {type(data).__name__} for {path}")
        return data

    def commit(self, value: int, blinding_hex: str) -> Dict[str, Any]:
        return self._post("/commit", {"value": value, "blinding_hex": blinding_hex})

    def commit_with_binding(
        self, value: int, blinding_hex: str, binding_tag_hex: str
    ) -> Dict[str, Any]:
        return self._post(
            "/commit-with-binding",
            {"value": value, "blinding_hex": blinding_hex, "binding_tag_hex": binding_tag_hex},
        )

    def verify(
        self, commitment: str, proof: str, binding_tag_hex: Optional[str] = None
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"commitment": commitment, "proof": proof}
        if binding_tag_hex:
            body["binding_tag_hex"] = binding_tag_hex
        return self._post("/verify", body)

    def commit_tx_hash(self, tx_hash: str, binding_tag_hex: Optional[str] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"tx_hash": tx_hash}
        if binding_tag_hex:
            body["binding_tag_hex"] = binding_tag_hex
        return self._post("/commit-tx-hash", body)

    def close(self) -> None:
        self.http.close()
