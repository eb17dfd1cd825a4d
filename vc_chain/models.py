from __future__ import annotations

import json
import time
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, field_serializer, field_validator, model_validator

from vc_chain import DEFAULT_SCHEMA_VERSION, SUPPORTED_SCHEMA_VERSIONS
from vc_chain.canonical import canonicalize
from vc_chain.errors import SchemaVersionUnsupported

Role = Literal["issuer", "holder"]

# Legacy role names written by older signers
ROLE_ALIASES = {"seller": "issuer", "buyer": "holder"}

W3C_CONTEXT = "https://www.w3.org/2018/credentials/v1"
ZERO_ADDRESS = "0x" + "0" * 40

# Subject fields that may change after a proof exists (never part of the signed payload)
MUTABLE_SUBJECT_FIELDS = (
    "txHashCommitment",
    "purchaseTxHashCommitment",
    "deliveryStatus",
    "vcHash",
    "transactionId",
)

# Field-default table applied once per stage transition
SUBJECT_DEFAULTS: Dict[str, Any] = {
    "id": "",
    "productName": "",
    "batch": "",
    "quantity": 0,
    "previousCredential": "",
    "componentCredentials": list,
    "certificateCredential": lambda: {"name": "", "cid": ""},
    "price": dict,
    "subjectDetails": dict,
}


def now_utc() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def did_ethr(chain_id: Union[int, str], address: str) -> str:
    return f"did:ethr:{chain_id}:{address}"


def address_from_did(did: str) -> str:
    """Trailing address of a did:ethr identifier, lower-cased, fragment stripped."""
    return did.split(":")[-1].split("#")[0].lower()


def chain_id_from_did(did: Optional[str]) -> Optional[int]:
    if not did or not isinstance(did, str):
        return None
    parts = did.lower().split(":")
    if len(parts) < 4 or not parts[2].isdigit():
        return None
    return int(parts[2])


def normalize_subject(subject: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Fill absent or null credentialSubject fields from SUBJECT_DEFAULTS."""
    cs = dict(subject or {})
    for name, default in SUBJECT_DEFAULTS.items():
        if cs.get(name) is None:
            cs[name] = default() if callable(default) else default
    if not isinstance(cs["componentCredentials"], list):
        cs["componentCredentials"] = []
    cert = cs["certificateCredential"]
    if isinstance(cert, dict):
        cs["certificateCredential"] = {
            "name": cert.get("name") or "",
            "cid": cert.get("cid") or "",
        }
    return cs


class BindingContext(BaseModel):
    chain_id: str = Field(alias="chainId")
    escrow_addr: str = Field(alias="escrowAddr")
    product_id: str = Field(alias="productId")
    stage: int
    schema_version: str = Field(default=DEFAULT_SCHEMA_VERSION, alias="schemaVersion")
    previous_vc_cid: Optional[str] = Field(default=None, alias="previousVCCid")

    model_config = {"populate_by_name": True}

    @field_validator("chain_id", "product_id", mode="before")
    @classmethod
    def _int_as_str(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) and not isinstance(v, bool) else v


class Commitment(BaseModel):
    """Opaque prover commitment plus the binding data it was produced under."""

    commitment: str
    proof: str
    protocol: str = "bulletproofs-pedersen"
    version: str = "1.0"
    encoding: str = "hex"
    verified: Optional[bool] = None
    proof_type: Optional[str] = Field(default=None, alias="proofType")
    description: Optional[str] = None
    binding_tag: Optional[str] = Field(default=None, alias="bindingTag")
    binding_context: Optional[BindingContext] = Field(default=None, alias="bindingContext")

    model_config = {"populate_by_name": True, "extra": "allow"}

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class HiddenPrice(BaseModel):
    kind: Literal["hidden"] = Field(default="hidden", exclude=True)
    hidden: bool = True
    zkp_proof: Commitment = Field(alias="zkpProof")

    model_config = {"populate_by_name": True}


class EmptyPrice(BaseModel):
    kind: Literal["empty"] = Field(default="empty", exclude=True)


PriceField = Union[HiddenPrice, EmptyPrice]


def parse_price(raw: Any) -> PriceField:
    """Resolve the string-or-object price field into the tagged union."""
    if isinstance(raw, (HiddenPrice, EmptyPrice)):
        return raw
    if raw is None or raw == "":
        return EmptyPrice()
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return EmptyPrice()
    if isinstance(raw, dict) and isinstance(raw.get("zkpProof"), dict):
        zkp = raw["zkpProof"]
        if zkp.get("commitment") and zkp.get("proof"):
            return HiddenPrice(zkp_proof=Commitment.model_validate(zkp))
    return EmptyPrice()


def price_to_string(price: PriceField) -> str:
    """Canonical string form of the price, as stored and as signed."""
    if isinstance(price, HiddenPrice):
        return canonicalize({"hidden": True, "zkpProof": price.zkp_proof.to_dict()})
    return canonicalize({})


class Party(BaseModel):
    id: str
    name: str = ""


class CertificateRef(BaseModel):
    name: str = ""
    cid: str = ""


class SubjectDetails(BaseModel):
    product_contract: Optional[str] = Field(default=None, alias="productContract")
    transporter: Optional[str] = None
    on_chain_commitment: Optional[str] = Field(default=None, alias="onChainCommitment")

    model_config = {"populate_by_name": True, "extra": "allow"}


class CredentialSubject(BaseModel):
    id: str = ""
    product_name: str = Field(default="", alias="productName")
    batch: str = ""
    quantity: int = 0
    previous_credential: str = Field(default="", alias="previousCredential")
    component_credentials: List[str] = Field(default_factory=list, alias="componentCredentials")
    certificate_credential: CertificateRef = Field(
        default_factory=CertificateRef, alias="certificateCredential"
    )
    price: PriceField = Field(default_factory=EmptyPrice)
    purchase_tx_hash_commitment: Optional[Commitment] = Field(
        default=None, alias="purchaseTxHashCommitment"
    )
    tx_hash_commitment: Optional[Commitment] = Field(default=None, alias="txHashCommitment")
    delivery_status: Optional[bool] = Field(default=None, alias="deliveryStatus")
    subject_details: SubjectDetails = Field(default_factory=SubjectDetails, alias="subjectDetails")
    vc_hash: Optional[str] = Field(default=None, alias="vcHash")
    transaction_id: Optional[str] = Field(default=None, alias="transactionId")

    model_config = {"populate_by_name": True, "extra": "allow"}

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return normalize_subject(data)
        return data

    @field_validator("price", mode="before")
    @classmethod
    def _parse_price(cls, v: Any) -> Any:
        return parse_price(v)

    @field_serializer("price")
    def _serialize_price(self, price: PriceField) -> str:
        return price_to_string(price)

    @property
    def price_commitment(self) -> Optional[Commitment]:
        return self.price.zkp_proof if isinstance(self.price, HiddenPrice) else None


class Proof(BaseModel):
    type: str = "EcdsaSecp256k1Signature2019"
    created: str = Field(default_factory=now_utc)
    proof_purpose: str = Field(default="assertionMethod", alias="proofPurpose")
    verification_method: str = Field(alias="verificationMethod")
    signature: str = Field(validation_alias=AliasChoices("signature", "jws"))
    payload_hash: Optional[str] = Field(default=None, alias="payloadHash")
    role: Role

    model_config = {"populate_by_name": True}

    @field_validator("role", mode="before")
    @classmethod
    def _legacy_role(cls, v: Any) -> Any:
        if isinstance(v, str):
            return ROLE_ALIASES.get(v.lower(), v.lower())
        return v


class Credential(BaseModel):
    """One stage of a product's credential chain."""

    context: List[str] = Field(default_factory=lambda: [W3C_CONTEXT], alias="@context")
    id: str
    type: List[str] = Field(default_factory=lambda: ["VerifiableCredential"])
    schema_version: str = Field(default=DEFAULT_SCHEMA_VERSION, alias="schemaVersion")
    issuer: Party
    holder: Party
    issuance_date: str = Field(default_factory=now_utc, alias="issuanceDate")
    credential_subject: CredentialSubject = Field(alias="credentialSubject")
    proof: List[Proof] = Field(default_factory=list)

    model_config = {"populate_by_name": True}

    @model_validator(mode="before")
    @classmethod
    def _ingest(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        # Legacy map form: {"proofs": {"issuerProof": {...}, "holderProof": {...}}}
        legacy = data.pop("proofs", None)
        proofs = data.get("proof")
        if isinstance(proofs, dict):
            proofs = [proofs]
        proofs = list(proofs or [])
        if isinstance(legacy, dict) and not proofs:
            for key, role in (("issuerProof", "issuer"), ("holderProof", "holder")):
                entry = legacy.get(key)
                if entry:
                    proofs.append({"role": role, **entry})
        data["proof"] = proofs
        if not data.get("schemaVersion") and not data.get("schema_version"):
            data["schemaVersion"] = DEFAULT_SCHEMA_VERSION
        return data

    @field_validator("schema_version")
    @classmethod
    def _supported_schema(cls, v: str) -> str:
        if v not in SUPPORTED_SCHEMA_VERSIONS:
            raise SchemaVersionUnsupported(
                f"Unsupported schemaVersion '{v}'. Supported: {SUPPORTED_SCHEMA_VERSIONS}"
            )
        return v

    @field_validator("context", "type", mode="before")
    @classmethod
    def _listify(cls, v: Any) -> Any:
        return [v] if isinstance(v, str) else v

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    def proofs_for(self, role: Role) -> List[Proof]:
        return [p for p in self.proof if p.role == role]

    def has_role_proof(self, role: Role) -> bool:
        return bool(self.proofs_for(role))

    @property
    def is_delivered(self) -> bool:
        """Terminal once both issuer and holder have signed."""
        return self.has_role_proof("issuer") and self.has_role_proof("holder")

    def legacy_proofs(self) -> Dict[str, Dict[str, Any]]:
        """Proofs in the legacy {issuerProof, holderProof} map form."""
        out: Dict[str, Dict[str, Any]] = {}
        for p in self.proof:
            entry = p.model_dump(by_alias=True, exclude_none=True)
            entry["jws"] = entry.pop("signature")
            out[f"{p.role}Proof"] = entry
        return out

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "Credential":
        return cls.model_validate_json(data)
