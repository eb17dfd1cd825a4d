"""
Supply-chain provenance tree.

Follows componentCredentials (the component products used), not
previousCredential (one product's lifecycle). Components are fetched and
checked in parallel; a component whose content id does not resolve becomes an
Invalid leaf instead of aborting the walk.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from vc_chain.errors import CredentialChainError
from vc_chain.models import ZERO_ADDRESS, Credential, address_from_did
from vc_chain.store import ContentStore, load_credential
from vc_chain.verifier import CheckStatus, Verifier

logger = logging.getLogger(__name__)

MAX_DEPTH = 10


@dataclass
class ProvenanceNode:
    cid: str
    credential: Optional[Credential] = None
    verified: bool = False
    delivered: bool = False
    error: Optional[str] = None
    components: List[ProvenanceNode] = field(default_factory=list)

    @property
    def status(self) -> str:
        """Invalid, Delivered, In Delivery, Awaiting Confirm or Available."""
        if not self.verified:
            return "Invalid"
        if self.delivered:
            return "Delivered"
        vc = self.credential
        if vc is None:
            return "Available"
        holder = address_from_did(vc.holder.id) if vc.holder.id else ZERO_ADDRESS
        if holder == address_from_did(vc.issuer.id):
            return "Delivered"
        transporter = (vc.credential_subject.subject_details.transporter or "").lower()
        if transporter and transporter != ZERO_ADDRESS:
            return "In Delivery"
        if holder != ZERO_ADDRESS or vc.has_role_proof("holder"):
            return "Awaiting Confirm"
        return "Available"

    @property
    def product_name(self) -> str:
        if self.credential is None:
            return "Unknown"
        return self.credential.credential_subject.product_name or "Unknown"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cid": self.cid,
            "productName": self.product_name,
            "status": self.status,
            "verified": self.verified,
            "delivered": self.delivered,
            "error": self.error,
            "components": [c.to_dict() for c in self.components],
        }


def count_total(node: ProvenanceNode) -> int:
    return sum(1 + count_total(c) for c in node.components)


def count_verified(node: ProvenanceNode) -> int:
    return sum(int(c.verified) + count_verified(c) for c in node.components)


def count_delivered(node: ProvenanceNode) -> int:
    return sum(int(c.verified and c.delivered) + count_delivered(c) for c in node.components)


class ProvenanceWalker:
    """
    Builds the component tree below a root credential.

    With a Verifier, a node only counts as verified when its present proofs
    recover to their DIDs; without one, a resolvable credential is enough.
    """

    def __init__(
        self,
        store: ContentStore,
        verifier: Optional[Verifier] = None,
        *,
        max_depth: int = MAX_DEPTH,
        max_workers: int = 8,
    ):
        self.store = store
        self.verifier = verifier
        self.max_depth = max_depth
        self.max_workers = max_workers

    def _check(self, cid: str, vc: Credential) -> ProvenanceNode:
        node = ProvenanceNode(cid=cid, credential=vc, delivered=vc.is_delivered)
        if self.verifier is not None and vc.proof:
            result = self.verifier.check_signatures(vc)
            if result.status is CheckStatus.FAILED:
                node.error = result.detail
                return node
        node.verified = True
        return node

    def _fetch(self, cid: str) -> ProvenanceNode:
        try:
            vc = load_credential(self.store, cid)
        except CredentialChainError as e:
            logger.warning(f"Component {cid} unresolvable: {e}")
            return ProvenanceNode(cid=cid, error=f"{e.code}: {e}")
        return self._check(cid, vc)

    def _expand(self, node: ProvenanceNode, depth: int, pool: ThreadPoolExecutor) -> None:
        if node.credential is None:
            return
        cids = list(node.credential.credential_subject.component_credentials)
        if not cids:
            return
        if depth >= self.max_depth:
            node.components = [
                ProvenanceNode(cid=cid, error="Max depth reached") for cid in cids
            ]
            return
        node.components = list(pool.map(self._fetch, cids))
        for child in node.components:
            self._expand(child, depth + 1, pool)

    def walk(self, root: Credential, root_cid: str = "") -> ProvenanceNode:
        """Resolve the full component tree (depth capped at max_depth)."""
        node = self._check(root_cid, root)
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            self._expand(node, 0, pool)
        logger.info(
            f"Provenance of {root.id}: {count_total(node)} component(s), "
            f"{count_verified(node)} verified, {count_delivered(node)} delivered"
        )
        return node

    def walk_cid(self, cid: str) -> ProvenanceNode:
        return self.walk(load_credential(self.store, cid), cid)
