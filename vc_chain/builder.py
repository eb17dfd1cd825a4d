"""
Credential chain builder.

Stage 0 (listing)             seller-issued, holder is the zero-address DID
Stage 1 (order confirmation)  seller-issued to the buyer, links stage 0 by content id
Stage 2 (delivery)            buyer-built draft, links stage 1, signed by seller then buyer

A credential is immutable once it carries a proof, apart from the unsigned
subject fields listed in MUTABLE_SUBJECT_FIELDS.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Iterable, Optional, Union

from vc_chain import STAGE_DELIVERY, STAGE_LISTING
from vc_chain.binding import derive_linkage_tag
from vc_chain.canonical import canonical
from vc_chain.commitments import CommitmentEngine
from vc_chain.errors import ChainLinkBroken, MissingRequiredField, SignedPayloadMutation
from vc_chain.models import (
    MUTABLE_SUBJECT_FIELDS,
    W3C_CONTEXT,
    ZERO_ADDRESS,
    BindingContext,
    Commitment,
    Credential,
    Proof,
    address_from_did,
    chain_id_from_did,
    did_ethr,
    normalize_subject,
)
from vc_chain.signing import (
    VC_TYPES,
    VC_TYPES_LEGACY,
    SigningDomain,
    prepare_signing_payload,
    recover_signer,
)
from vc_chain.store import ContentStore, load_credential

logger = logging.getLogger(__name__)

IntLike = Union[int, str]


def signed_region(credential: Credential) -> bytes:
    """Canonical bytes of the part of a credential covered by signatures."""
    return canonical(prepare_signing_payload(credential))


def _dump(value: Any) -> Any:
    return value.to_dict() if isinstance(value, Commitment) else value


class CredentialBuilder:
    """Builds the three stages of a product's credential chain."""

    def __init__(
        self,
        chain_id: int,
        engine: Optional[CommitmentEngine] = None,
        *,
        strict_linkage: bool = False,
    ):
        self.chain_id = int(chain_id)
        self.engine = engine
        self.strict_linkage = strict_linkage

    def did(self, address: str) -> str:
        return did_ethr(self.chain_id, address)

    def _require_engine(self) -> CommitmentEngine:
        if self.engine is None:
            raise MissingRequiredField("a CommitmentEngine is required to generate commitments")
        return self.engine

    def listing(
        self,
        *,
        seller_addr: str,
        escrow_addr: str,
        product_id: IntLike,
        product_name: str,
        price_value: Optional[int] = None,
        price_commitment: Optional[Commitment] = None,
        batch: str = "",
        quantity: int = 0,
        component_credentials: Iterable[str] = (),
        certificate: Optional[Dict[str, str]] = None,
        seller_name: str = "Seller",
        credential_id: Optional[str] = None,
    ) -> Credential:
        """
        Stage 0 listing credential.

        The price is committed with deterministic blinding and a stage-0
        context tag, unless a ready commitment is passed in.

        Raises:
            MissingRequiredField: Neither price_value nor price_commitment given
        """
        if price_commitment is None:
            if price_value is None:
                raise MissingRequiredField("listing needs price_value or price_commitment")
            ctx = BindingContext(
                chain_id=self.chain_id,
                escrow_addr=escrow_addr,
                product_id=product_id,
                stage=STAGE_LISTING,
            )
            price_commitment = self._require_engine().commit_price(
                price_value, escrow_addr=escrow_addr, seller_addr=seller_addr, context=ctx
            )

        subject = normalize_subject(
            {
                "id": self.did(seller_addr),
                "productName": product_name,
                "batch": batch,
                "quantity": quantity,
                "previousCredential": "",
                "componentCredentials": list(component_credentials),
                "certificateCredential": certificate,
                "price": {"hidden": True, "zkpProof": price_commitment.to_dict()},
                "subjectDetails": {"productContract": escrow_addr},
            }
        )
        vc = Credential.model_validate(
            {
                "@context": [W3C_CONTEXT],
                "id": credential_id or f"urn:uuid:{uuid.uuid4()}",
                "type": ["VerifiableCredential"],
                "issuer": {"id": self.did(seller_addr), "name": seller_name},
                "holder": {"id": self.did(ZERO_ADDRESS), "name": "T.B.D."},
                "credentialSubject": subject,
            }
        )
        logger.info(f"Built listing credential {vc.id} for product {product_id}")
        return vc

    def order_confirmation(
        self,
        stage0: Credential,
        stage0_cid: str,
        *,
        buyer_addr: str,
        seller_addr: str,
        purchase_tx_hash_commitment: Optional[Commitment] = None,
    ) -> Credential:
        """
        Stage 1: seller confirms the order to the buyer.

        Keeps the listing's price commitment and issuance date; clears proofs so
        the seller signs the new payload.
        """
        if not stage0_cid:
            raise MissingRequiredField("stage0_cid is missing, cannot link previousCredential")

        data = stage0.to_dict()
        cs = data["credentialSubject"]
        cs["id"] = self.did(buyer_addr)
        cs["previousCredential"] = stage0_cid
        if purchase_tx_hash_commitment is not None:
            cs["purchaseTxHashCommitment"] = purchase_tx_hash_commitment.to_dict()

        data["issuer"] = {"id": self.did(seller_addr), "name": "Seller"}
        data["holder"] = {"id": self.did(buyer_addr), "name": "Buyer"}
        data["credentialSubject"] = normalize_subject(cs)
        data["proof"] = []
        vc = Credential.model_validate(data)
        logger.info(f"Built order confirmation {vc.id} -> {stage0_cid}")
        return vc

    def delivery_draft(
        self,
        stage1: Credential,
        stage1_cid: str,
        *,
        price_commitment: Commitment,
        transporter: Optional[str] = None,
        on_chain_commitment: Optional[str] = None,
    ) -> Credential:
        """
        Stage 2 draft built by the buyer. Carries no proofs.

        price_commitment is the buyer's re-derived commitment to the same hidden price.
        """
        if not stage1_cid:
            raise MissingRequiredField("stage1_cid is missing, cannot link previousCredential")

        zkp = price_commitment
        if not zkp.proof_type:
            zkp = zkp.model_copy(update={"proof_type": "zkRangeProof-v1"})

        data = stage1.to_dict()
        cs = data["credentialSubject"]
        cs["previousCredential"] = stage1_cid
        cs["price"] = {"hidden": True, "zkpProof": zkp.to_dict()}
        details = dict(cs.get("subjectDetails") or {})
        if transporter:
            details["transporter"] = transporter
        if on_chain_commitment:
            details["onChainCommitment"] = on_chain_commitment
        cs["subjectDetails"] = details
        data["credentialSubject"] = normalize_subject(cs)
        data["proof"] = []
        return Credential.model_validate(data)

    def delivery_price_commitment(
        self,
        stage1: Credential,
        stage1_cid: str,
        value: int,
        *,
        escrow_addr: str,
        seller_addr: str,
        product_id: IntLike,
    ) -> Commitment:
        """
        Buyer-side commitment for the delivery stage.

        Same deterministic blinding as the listing, so the commitment matches
        the on-chain one; the tag is re-scoped to stage 2 and the stage 1 cid.

        Raises:
            ChainLinkBroken: No binding context on stage 1 and strict_linkage is set
        """
        previous = stage1.credential_subject.price_commitment
        recovered = previous.binding_context if previous is not None else None

        if recovered is not None:
            ctx = recovered.model_copy(
                update={"stage": STAGE_DELIVERY, "previous_vc_cid": stage1_cid}
            )
        elif self.strict_linkage:
            raise ChainLinkBroken(f"No binding context recoverable from {stage1.id}")
        else:
            logger.warning(
                f"No binding context on {stage1.id}; synthesizing one for the delivery stage"
            )
            ctx = BindingContext(
                chain_id=self.chain_id,
                escrow_addr=escrow_addr,
                product_id=product_id,
                stage=STAGE_DELIVERY,
                previous_vc_cid=stage1_cid,
            )
        return self._require_engine().commit_price(
            value, escrow_addr=escrow_addr, seller_addr=seller_addr, context=ctx
        )

    def tx_hash_commitment(
        self,
        tx_hash: str,
        *,
        escrow_addr: str,
        product_id: IntLike,
        buyer_addr: str,
    ) -> Commitment:
        """Commit a purchase or delivery tx hash under the shared linkage tag."""
        tag = derive_linkage_tag(
            chain_id=self.chain_id,
            escrow_addr=escrow_addr,
            product_id=product_id,
            buyer_addr=buyer_addr,
        )
        return self._require_engine().commit_tx_hash(tx_hash, binding_tag=tag)

    def _covers(self, vc: Credential, proof: Proof, contract_address: Optional[str]) -> bool:
        """True when the proof's signer is recovered over the credential's current payload."""
        expected = address_from_did(proof.verification_method)
        chain_id = chain_id_from_did(proof.verification_method) or self.chain_id
        contracts = {
            c.lower()
            for c in (
                contract_address,
                vc.credential_subject.subject_details.product_contract,
            )
            if c
        }
        domains = [SigningDomain(chain_id, c) for c in sorted(contracts)] + [SigningDomain(chain_id)]

        attempts = [(d, VC_TYPES, prepare_signing_payload(vc)) for d in domains]
        attempts.append((SigningDomain(chain_id), VC_TYPES_LEGACY, prepare_signing_payload(vc, legacy=True)))
        for domain, types, payload in attempts:
            try:
                recovered = recover_signer(domain, payload, proof.signature, types)
            except Exception as e:
                logger.debug(f"[{proof.role}] recovery under {domain.verifying_contract} failed: {e}")
                continue
            if recovered.lower() == expected:
                return True
        return False

    def attach_proof(
        self, vc: Credential, proof: Proof, contract_address: Optional[str] = None
    ) -> Credential:
        """
        Append a role proof.

        The signer must be recoverable over the credential as it stands, under
        the bound domain (`contract_address` or subjectDetails.productContract)
        or the unbound one. Roles may sign under different domains.

        Raises:
            ValueError: The role already signed
            SignedPayloadMutation: The proof does not cover the current signed region
        """
        if vc.has_role_proof(proof.role):
            raise ValueError(f"{vc.id} already carries an {proof.role} proof")
        if not self._covers(vc, proof, contract_address):
            raise SignedPayloadMutation(
                f"{proof.role} proof does not cover the signed region of {vc.id}"
            )
        out = vc.model_copy(deep=True)
        out.proof.append(proof)
        return out

    def append_unsigned(self, vc: Credential, **fields: Any) -> Credential:
        """
        Set credentialSubject fields (camelCase keys).

        After the first proof only the unsigned fields may change.

        Raises:
            SignedPayloadMutation: A signed field was touched on a signed credential
        """
        if vc.proof:
            signed = sorted(k for k in fields if k not in MUTABLE_SUBJECT_FIELDS)
            if signed:
                raise SignedPayloadMutation(f"Cannot modify signed fields of {vc.id}: {signed}")
            before = signed_region(vc)

        data = vc.to_dict()
        cs = data["credentialSubject"]
        for name, value in fields.items():
            cs[name] = _dump(value)
        out = Credential.model_validate(data)

        if vc.proof and signed_region(out) != before:
            raise SignedPayloadMutation(f"Signed payload of {vc.id} changed")
        return out

    def require_previous(self, store: ContentStore, cid: str) -> Credential:
        """
        Resolve the previous stage before building the next one.

        Raises:
            ChainLinkBroken: cid empty, unknown or not a credential
            StoreUnavailable: Store unreachable
        """
        if not cid:
            raise ChainLinkBroken("previous credential content id is empty")
        return load_credential(store, cid)
