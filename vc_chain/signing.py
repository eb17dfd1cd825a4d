"""
EIP-712 typed-data signing of credentials.

Domain: {name: "VC", version: "1.0", chainId, verifyingContract?}
verifyingContract binds the signature to one escrow contract; without it a
signature can be replayed against any contract on the same chain.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Union

from eth_account import Account
from eth_account.messages import SignableMessage, encode_typed_data
from eth_utils import keccak, to_checksum_address
from hexbytes import HexBytes

from vc_chain import DEFAULT_SCHEMA_VERSION
from vc_chain.errors import MissingRequiredField
from vc_chain.models import (
    MUTABLE_SUBJECT_FIELDS,
    ROLE_ALIASES,
    Credential,
    Proof,
    address_from_did,
    did_ethr,
    normalize_subject,
)

logger = logging.getLogger(__name__)

DOMAIN_NAME = "VC"
DOMAIN_VERSION = "1.0"

_SHARED_TYPES: Dict[str, List[Dict[str, str]]] = {
    "Party": [
        {"name": "id", "type": "string"},
        {"name": "name", "type": "string"},
    ],
    "CredentialSubject": [
        {"name": "id", "type": "string"},
        {"name": "productName", "type": "string"},
        {"name": "batch", "type": "string"},
        {"name": "quantity", "type": "uint256"},
        {"name": "previousCredential", "type": "string"},
        {"name": "componentCredentials", "type": "string[]"},
        {"name": "certificateCredential", "type": "Certificate"},
        {"name": "price", "type": "string"},
    ],
    "Certificate": [
        {"name": "name", "type": "string"},
        {"name": "cid", "type": "string"},
    ],
}

# schemaVersion is a typed field: a v1.0 signature cannot be replayed as another version
VC_TYPES: Dict[str, List[Dict[str, str]]] = {
    "Credential": [
        {"name": "id", "type": "string"},
        {"name": "context", "type": "string[]"},
        {"name": "type", "type": "string[]"},
        {"name": "schemaVersion", "type": "string"},
        {"name": "issuer", "type": "Party"},
        {"name": "holder", "type": "Party"},
        {"name": "issuanceDate", "type": "string"},
        {"name": "credentialSubject", "type": "CredentialSubject"},
    ],
    **_SHARED_TYPES,
}

# Credentials signed before schemaVersion existed
VC_TYPES_LEGACY: Dict[str, List[Dict[str, str]]] = {
    "Credential": [f for f in VC_TYPES["Credential"] if f["name"] != "schemaVersion"],
    **_SHARED_TYPES,
}


@dataclass(frozen=True)
class SigningDomain:
    """EIP-712 domain for credential signatures."""

    chain_id: int
    verifying_contract: Optional[str] = None
    name: str = DOMAIN_NAME
    version: str = DOMAIN_VERSION

    def as_eip712(self) -> Dict[str, Any]:
        domain: Dict[str, Any] = {
            "name": self.name,
            "version": self.version,
            "chainId": int(self.chain_id),
        }
        if self.verifying_contract:
            domain["verifyingContract"] = to_checksum_address(self.verifying_contract)
        return domain

    def unbound(self) -> "SigningDomain":
        """Same domain without verifyingContract (backward compatibility)."""
        return SigningDomain(chain_id=self.chain_id, name=self.name, version=self.version)


class SigningKeyHandle(Protocol):
    """Opaque signing capability (wallet, HSM, local key)."""

    def get_address(self) -> str: ...

    def sign_typed_data(
        self, domain: Dict[str, Any], types: Dict[str, Any], payload: Dict[str, Any]
    ) -> str: ...


class LocalKeyHandle:
    """SigningKeyHandle backed by an in-process secp256k1 key."""

    def __init__(self, private_key: Union[str, bytes]):
        self._account = Account.from_key(private_key)

    @classmethod
    def generate(cls) -> "LocalKeyHandle":
        return cls(Account.create().key)

    def get_address(self) -> str:
        return self._account.address

    def sign_typed_data(
        self, domain: Dict[str, Any], types: Dict[str, Any], payload: Dict[str, Any]
    ) -> str:
        signed = self._account.sign_message(encode_typed_data(domain, types, payload))
        return "0x" + bytes(signed.signature).hex()


def _as_credential(credential: Union[Credential, Dict[str, Any]]) -> Credential:
    if isinstance(credential, Credential):
        return credential.model_copy(deep=True)
    return Credential.model_validate(copy.deepcopy(credential))


def prepare_signing_payload(
    credential: Union[Credential, Dict[str, Any]], *, legacy: bool = False
) -> Dict[str, Any]:
    """
    Build the typed-data message for a credential.

    - Deep copy, drop proofs and the mutable/privacy-sensitive subject fields
    - Price as its canonical string
    - DIDs lower-cased
    - schemaVersion defaulted to "1.0" (omitted for legacy types)
    """
    vc = _as_credential(credential).to_dict()
    vc.pop("proof", None)
    vc.pop("proofs", None)

    cs = normalize_subject(vc.get("credentialSubject"))
    for name in MUTABLE_SUBJECT_FIELDS:
        cs.pop(name, None)

    if not vc.get("id"):
        raise MissingRequiredField("credential id is required for signing")

    issuer = vc.get("issuer") or {}
    holder = vc.get("holder") or {}
    payload: Dict[str, Any] = {
        "id": vc["id"],
        "context": list(vc.get("@context") or []),
        "type": list(vc.get("type") or []),
        "issuer": {"id": (issuer.get("id") or "").lower(), "name": issuer.get("name") or ""},
        "holder": {"id": (holder.get("id") or "").lower(), "name": holder.get("name") or ""},
        "issuanceDate": vc.get("issuanceDate") or "",
        "credentialSubject": {
            "id": (cs["id"] or "").lower(),
            "productName": cs["productName"],
            "batch": cs["batch"],
            "quantity": int(cs["quantity"]),
            "previousCredential": cs["previousCredential"],
            "componentCredentials": list(cs["componentCredentials"]),
            "certificateCredential": {
                "name": cs["certificateCredential"]["name"],
                "cid": cs["certificateCredential"]["cid"],
            },
            "price": cs["price"],
        },
    }
    if not legacy:
        payload["schemaVersion"] = vc.get("schemaVersion") or DEFAULT_SCHEMA_VERSION
    return payload


def signable_message(
    domain: SigningDomain, payload: Dict[str, Any], types: Optional[Dict[str, Any]] = None
) -> SignableMessage:
    return encode_typed_data(domain.as_eip712(), copy.deepcopy(types or VC_TYPES), payload)


def payload_hash(
    domain: SigningDomain, payload: Dict[str, Any], types: Optional[Dict[str, Any]] = None
) -> str:
    """EIP-712 digest keccak256(0x19 || 0x01 || domainSeparator || hashStruct(message))."""
    msg = signable_message(domain, payload, types)
    digest = keccak(b"\x19" + bytes(msg.version) + bytes(msg.header) + bytes(msg.body))
    return "0x" + digest.hex()


def recover_signer(
    domain: SigningDomain,
    payload: Dict[str, Any],
    signature: str,
    types: Optional[Dict[str, Any]] = None,
) -> str:
    """Recover the checksummed signer address of a typed-data signature."""
    return Account.recover_message(
        signable_message(domain, payload, types), signature=HexBytes(signature)
    )


def sign_credential(
    credential: Union[Credential, Dict[str, Any]],
    role: str,
    key: SigningKeyHandle,
    domain: SigningDomain,
) -> Proof:
    """
    Sign a credential as issuer or holder.

    Args:
        credential: Credential to sign (not modified)
        role: "issuer"/"holder" (legacy "seller"/"buyer" accepted)
        key: Signing capability
        domain: EIP-712 domain, ideally with verifying_contract set

    Returns:
        Role-tagged Proof carrying signature and payloadHash

    Raises:
        ValueError: Unknown role or key does not match the role's DID
        MissingRequiredField: Credential lacks an id
    """
    role = ROLE_ALIASES.get(role.lower(), role.lower())
    if role not in ("issuer", "holder"):
        raise ValueError(f"Unknown signer role: {role}")

    vc = _as_credential(credential)
    signer = key.get_address().lower()
    party = vc.issuer if role == "issuer" else vc.holder
    if address_from_did(party.id) != signer:
        raise ValueError(f"Signer {signer} does not match {role} DID {party.id}")

    payload = prepare_signing_payload(vc)
    digest = payload_hash(domain, payload)
    signature = key.sign_typed_data(domain.as_eip712(), copy.deepcopy(VC_TYPES), payload)

    logger.info(
        f"Signed credential {vc.id} as {role} (chainId={domain.chain_id}, "
        f"verifyingContract={domain.verifying_contract or 'none'})"
    )
    return Proof(
        verification_method=did_ethr(domain.chain_id, signer),
        signature=signature,
        payload_hash=digest,
        role=role,
    )
