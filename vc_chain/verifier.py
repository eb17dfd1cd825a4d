"""
Credential verification.

Five independent checks, each reported on its own:
    signatures          EIP-712 signer recovery per role proof
    price commitment    prover verification (+ on-chain publicPriceCommitment)
    tx-hash commitment  prover verification of purchase / delivery commitments
    linkage             purchase and delivery commitments share a linkage tag
    on-chain event      commitment event exists, surfacing the block number only

A check that was not run stays NOT_CHECKED and never counts as passing.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from vc_chain.binding import context_tag_for, tags_equal, to_hex32
from vc_chain.commitments import CommitmentEngine, Prover, verify_commitment
from vc_chain.errors import (
    BindingTagMismatch,
    CommitmentMismatch,
    CredentialChainError,
    SignatureInvalid,
)
from vc_chain.eth.chain_client import CommitmentEvent, EscrowState
from vc_chain.models import Commitment, Credential, Role, address_from_did, chain_id_from_did
from vc_chain.signing import (
    VC_TYPES,
    VC_TYPES_LEGACY,
    SigningDomain,
    prepare_signing_payload,
    recover_signer,
)

logger = logging.getLogger(__name__)

DEFAULT_CHAIN_ID = 11155111

TX_HASH_FIELDS = {
    "purchaseTxHashCommitment": "purchase_tx_hash_commitment",
    "txHashCommitment": "tx_hash_commitment",
}
EVENT_FIELDS = {"purchase": "purchaseTxHashCommitment", "delivery": "txHashCommitment"}

ALL_CHECKS = ("signatures", "price", "purchase_tx", "delivery_tx", "linkage", "events")


class CheckStatus(str, Enum):
    VERIFIED = "verified"
    FAILED = "failed"
    NOT_PRESENT = "not-present"
    NOT_CHECKED = "not-checked"


@dataclass
class CheckResult:
    status: CheckStatus = CheckStatus.NOT_CHECKED
    error: Optional[str] = None
    detail: str = ""
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status is CheckStatus.VERIFIED

    @classmethod
    def failed(cls, exc: CredentialChainError, **data: Any) -> CheckResult:
        return cls(CheckStatus.FAILED, error=exc.code, detail=str(exc), data=data)

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["status"] = self.status.value
        return out


@dataclass
class RoleVerification:
    """Outcome of one role's proof, in the shape the HTTP API reports."""

    role: str
    matching_vc: bool = False
    matching_signer: bool = False
    signature_verified: bool = False
    recovered_address: Optional[str] = None
    expected_address: Optional[str] = None
    domain: Optional[str] = None
    error: Optional[str] = None


@dataclass
class VerificationReport:
    signatures: CheckResult = field(default_factory=CheckResult)
    price_commitment: CheckResult = field(default_factory=CheckResult)
    purchase_tx_hash: CheckResult = field(default_factory=CheckResult)
    delivery_tx_hash: CheckResult = field(default_factory=CheckResult)
    linkage: CheckResult = field(default_factory=CheckResult)
    purchase_event: CheckResult = field(default_factory=CheckResult)
    delivery_event: CheckResult = field(default_factory=CheckResult)

    def results(self) -> Dict[str, CheckResult]:
        return {
            "signatures": self.signatures,
            "priceCommitment": self.price_commitment,
            "purchaseTxHashCommitment": self.purchase_tx_hash,
            "txHashCommitment": self.delivery_tx_hash,
            "linkage": self.linkage,
            "purchaseEvent": self.purchase_event,
            "deliveryEvent": self.delivery_event,
        }

    @property
    def any_failed(self) -> bool:
        return any(r.status is CheckStatus.FAILED for r in self.results().values())

    def to_dict(self) -> Dict[str, Any]:
        return {name: r.to_dict() for name, r in self.results().items()}


class ChainReader(Protocol):
    def escrow_state(self, address: str) -> EscrowState: ...

    def find_commitment_events(
        self, address: str, kind: str, commitment: str, product_id: Optional[int] = None
    ) -> List[CommitmentEvent]: ...


class Verifier:
    """
    Runs verification checks against optional prover and chain capabilities.

    Without a prover, commitment checks report NOT_CHECKED; without a chain,
    on-chain comparisons are skipped.
    """

    def __init__(
        self,
        prover: Optional[Prover] = None,
        chain: Optional[ChainReader] = None,
        *,
        allow_unbound_domain: bool = True,
        default_chain_id: int = DEFAULT_CHAIN_ID,
    ):
        self.engine = CommitmentEngine(prover) if prover is not None else None
        self.chain = chain
        self.allow_unbound_domain = allow_unbound_domain
        self.default_chain_id = default_chain_id

    # -- signatures ---------------------------------------------------------

    def _attempts(
        self, vc: Credential, chain_id: int, contract_address: Optional[str]
    ) -> List[Tuple[str, SigningDomain, Dict[str, Any], Dict[str, Any]]]:
        payload = prepare_signing_payload(vc)
        legacy_payload = prepare_signing_payload(vc, legacy=True)
        domain = SigningDomain(chain_id=chain_id, verifying_contract=contract_address)
        unbound = domain.unbound()
        attempts = []
        if contract_address:
            attempts.append(("bound", domain, VC_TYPES, payload))
        if self.allow_unbound_domain or not contract_address:
            attempts.append(("unbound", unbound, VC_TYPES, payload))
            attempts.append(("legacy", unbound, VC_TYPES_LEGACY, legacy_payload))
        return attempts

    def verify_proof(
        self, vc: Credential, role: Role, contract_address: Optional[str] = None
    ) -> RoleVerification:
        """Recover the signer of the role's proof under each accepted domain in turn."""
        result = RoleVerification(role=role)
        proofs = vc.proofs_for(role)
        if not proofs:
            result.error = f"No {role} proof provided"
            return result
        proof = proofs[0]

        party = vc.issuer if role == "issuer" else vc.holder
        method = proof.verification_method.lower()
        if not method.startswith("did:ethr:"):
            result.error = f"Invalid verificationMethod format in {role} proof"
            return result
        expected = address_from_did(method)
        result.expected_address = expected
        if address_from_did(party.id) != expected:
            result.error = f"DID mismatch: {role}.id ({party.id}) != {proof.verification_method}"
            return result
        result.matching_vc = True

        chain_id = (
            chain_id_from_did(method) or chain_id_from_did(party.id) or self.default_chain_id
        )
        for name, domain, types, payload in self._attempts(vc, chain_id, contract_address):
            try:
                recovered = recover_signer(domain, payload, proof.signature, types)
            except Exception as e:
                logger.debug(f"[{role}] {name} domain recovery failed: {e}")
                continue
            result.recovered_address = recovered
            if recovered.lower() == expected:
                result.matching_signer = True
                result.signature_verified = True
                result.domain = name
                result.error = None
                if name != "bound" and contract_address:
                    logger.warning(f"[{role}] signature of {vc.id} is not bound to {contract_address}")
                return result
            result.error = f"Signature does not match expected address for {role}"
        return result

    def verify_signature(
        self, vc: Credential, role: Role, contract_address: Optional[str] = None
    ) -> RoleVerification:
        """
        Raises:
            SignatureInvalid: The role's proof does not recover to its DID
        """
        result = self.verify_proof(vc, role, contract_address)
        if not result.signature_verified:
            raise SignatureInvalid(result.error or f"{role} signature invalid")
        return result

    def check_signatures(
        self,
        vc: Credential,
        contract_address: Optional[str] = None,
        *,
        roles: Optional[Iterable[Role]] = None,
    ) -> CheckResult:
        """Every present role proof (or each of `roles`) must verify."""
        wanted = list(roles) if roles is not None else [p.role for p in vc.proof]
        if not wanted:
            return CheckResult(CheckStatus.NOT_PRESENT, detail="credential carries no proofs")

        per_role = {role: self.verify_proof(vc, role, contract_address) for role in dict.fromkeys(wanted)}
        data = {role: asdict(r) for role, r in per_role.items()}
        bad = [r for r in per_role.values() if not r.signature_verified]
        if bad:
            return CheckResult.failed(
                SignatureInvalid("; ".join(r.error or f"{r.role} invalid" for r in bad)), **data
            )
        return CheckResult(CheckStatus.VERIFIED, detail=f"{len(per_role)} proof(s) verified", data=data)

    # -- commitments ---------------------------------------------------------

    def _prover_verify(self, c: Commitment) -> Optional[CheckResult]:
        """None when the prover accepts; otherwise the result to report."""
        if self.engine is None:
            return CheckResult(CheckStatus.NOT_CHECKED, detail="no prover configured")
        try:
            ok = self.engine.verify(c)
        except CredentialChainError as e:
            logger.warning(f"Prover verification unavailable: {e}")
            return CheckResult(CheckStatus.NOT_CHECKED, error=e.code, detail=str(e))
        if not ok:
            return CheckResult.failed(CommitmentMismatch("prover rejected commitment/proof"))
        return None

    def check_price_commitment(
        self, vc: Credential, contract_address: Optional[str] = None
    ) -> CheckResult:
        c = vc.credential_subject.price_commitment
        if c is None:
            return CheckResult(CheckStatus.NOT_PRESENT, detail="no price commitment")

        data: Dict[str, Any] = {"bindingTag": bool(c.binding_tag)}
        if c.binding_context is not None and c.binding_tag:
            try:
                expected = to_hex32(context_tag_for(c.binding_context))
            except ValueError as e:
                return CheckResult.failed(
                    BindingTagMismatch(f"bindingContext cannot be re-derived: {e}"), **data
                )
            if not tags_equal(expected, c.binding_tag):
                return CheckResult.failed(
                    BindingTagMismatch("bindingTag does not match bindingContext"), **data
                )

        checked = False
        if self.engine is not None:
            outcome = self._prover_verify(c)
            if outcome is not None:
                outcome.data.update(data)
                return outcome
            checked = True
            data["proverVerified"] = True

        if self.chain is not None and contract_address:
            try:
                state = self.chain.escrow_state(contract_address)
            except Exception as e:
                logger.warning(f"Escrow read failed for {contract_address}: {e}")
                return CheckResult(CheckStatus.NOT_CHECKED, detail=f"escrow read failed: {e}", data=data)
            data["commitmentFrozen"] = state.commitment_frozen
            data["onChainMatch"] = verify_commitment(c.commitment, state.public_price_commitment)
            if not data["onChainMatch"]:
                return CheckResult.failed(
                    CommitmentMismatch("price commitment differs from on-chain publicPriceCommitment"),
                    **data,
                )
            checked = True

        if not checked:
            return CheckResult(CheckStatus.NOT_CHECKED, detail="no prover or chain configured", data=data)
        return CheckResult(CheckStatus.VERIFIED, data=data)

    def check_tx_hash_commitment(
        self, vc: Credential, field_name: str = "txHashCommitment"
    ) -> CheckResult:
        """Prover verification of a tx-hash commitment; absence is NOT_PRESENT."""
        if field_name not in TX_HASH_FIELDS:
            raise ValueError(f"Unknown tx-hash commitment field: {field_name}")
        c: Optional[Commitment] = getattr(vc.credential_subject, TX_HASH_FIELDS[field_name])
        if c is None:
            return CheckResult(CheckStatus.NOT_PRESENT, detail=f"no {field_name}")
        data = {"bindingTag": bool(c.binding_tag)}
        outcome = self._prover_verify(c)
        if outcome is not None:
            outcome.data.update(data)
            return outcome
        return CheckResult(CheckStatus.VERIFIED, data=data)

    def check_linkage(self, vc: Credential) -> CheckResult:
        """Purchase and delivery commitments must carry the same linkage tag."""
        cs = vc.credential_subject
        purchase, delivery = cs.purchase_tx_hash_commitment, cs.tx_hash_commitment
        if purchase is None or delivery is None:
            return CheckResult(CheckStatus.NOT_PRESENT, detail="purchase or delivery commitment absent")
        if not tags_equal(purchase.binding_tag, delivery.binding_tag):
            return CheckResult.failed(
                BindingTagMismatch("purchase and delivery linkage tags differ"),
                purchaseTag=bool(purchase.binding_tag),
                deliveryTag=bool(delivery.binding_tag),
            )
        return CheckResult(CheckStatus.VERIFIED, data={"linked": True})

    def check_onchain_event(
        self,
        vc: Credential,
        kind: str,
        contract_address: Optional[str] = None,
        cid: Optional[str] = None,
    ) -> CheckResult:
        """
        Correlate a tx-hash commitment with its on-chain event.

        Only the block number is reported; the transaction hash never leaves
        the chain client.
        """
        if kind not in EVENT_FIELDS:
            raise ValueError(f"Unknown event kind: {kind!r}")
        c: Optional[Commitment] = getattr(
            vc.credential_subject, TX_HASH_FIELDS[EVENT_FIELDS[kind]]
        )
        if c is None:
            return CheckResult(CheckStatus.NOT_PRESENT, detail=f"no {EVENT_FIELDS[kind]}")
        if self.chain is None or not contract_address:
            return CheckResult(CheckStatus.NOT_CHECKED, detail="no chain client or contract")

        product_id = None
        price = vc.credential_subject.price_commitment
        if price is not None and price.binding_context is not None:
            try:
                product_id = int(price.binding_context.product_id)
            except (TypeError, ValueError):
                logger.warning(
                    f"Ignoring non-numeric productId {price.binding_context.product_id!r} in event query"
                )

        try:
            events = self.chain.find_commitment_events(contract_address, kind, c.commitment, product_id)
        except CredentialChainError as e:
            return CheckResult(CheckStatus.NOT_CHECKED, error=e.code, detail=str(e))
        except Exception as e:
            logger.warning(f"Event query failed for {kind}: {e}")
            return CheckResult(CheckStatus.NOT_CHECKED, detail=f"event query failed: {e}")

        events = [e for e in events if e.succeeded]
        if not events:
            return CheckResult.failed(
                CommitmentMismatch(f"no matching {kind} event for this commitment")
            )
        exact = [e for e in events if cid and e.vc_cid == cid]
        if cid and not exact and kind == "delivery":
            return CheckResult.failed(
                CommitmentMismatch(f"delivery event content id differs from {cid}"),
                blockNumber=events[0].block_number,
                contentIdMatch=False,
            )
        event = (exact or events)[0]
        data = {"blockNumber": event.block_number, "contentIdMatch": bool(exact)}
        detail = "" if exact or not cid else "commitment matches but content id differs"
        return CheckResult(CheckStatus.VERIFIED, detail=detail, data=data)

    # -- composite -----------------------------------------------------------

    def verify(
        self,
        vc: Credential,
        *,
        cid: Optional[str] = None,
        contract_address: Optional[str] = None,
        checks: Iterable[str] = ALL_CHECKS,
    ) -> VerificationReport:
        """Run the requested subset of checks. Unrequested checks stay NOT_CHECKED."""
        wanted = set(checks)
        unknown = wanted.difference(ALL_CHECKS)
        if unknown:
            raise ValueError(f"Unknown checks: {sorted(unknown)}")

        report = VerificationReport()
        if "signatures" in wanted:
            report.signatures = self.check_signatures(vc, contract_address)
        if "price" in wanted:
            report.price_commitment = self.check_price_commitment(vc, contract_address)
        if "purchase_tx" in wanted:
            report.purchase_tx_hash = self.check_tx_hash_commitment(vc, "purchaseTxHashCommitment")
        if "delivery_tx" in wanted:
            report.delivery_tx_hash = self.check_tx_hash_commitment(vc, "txHashCommitment")
        if "linkage" in wanted:
            report.linkage = self.check_linkage(vc)
        if "events" in wanted:
            report.purchase_event = self.check_onchain_event(vc, "purchase", contract_address, cid)
            report.delivery_event = self.check_onchain_event(vc, "delivery", contract_address, cid)

        logger.info(
            f"Verified {vc.id}: "
            + ", ".join(f"{k}={r.status.value}" for k, r in report.results().items())
        )
        return report
