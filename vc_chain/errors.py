"""
Credential-chain error taxonomy.

Every error carries a stable ``code`` used in verification reports, so a caller
can tell "this check failed" apart from "the prover was down".
"""

from __future__ import annotations


class CredentialChainError(Exception):
    """Base class for all credential-chain errors."""

    code = "CredentialChainError"


class SignatureInvalid(CredentialChainError):
    """Recovered signer does not match the DID declared for the proof's role."""

    code = "SignatureInvalid"


class CommitmentMismatch(CredentialChainError):
    """Credential commitment differs from on-chain state or fails prover verification."""

    code = "CommitmentMismatch"


class BindingTagMismatch(CredentialChainError):
    """Purchase and delivery commitments are not bound to the same linkage tag."""

    code = "BindingTagMismatch"


class ProverUnavailable(CredentialChainError):
    """Prover service unreachable, timed out or returned a server error. Retryable."""

    code = "ProverUnavailable"


class MalformedCommitmentResponse(CredentialChainError):
    """Prover answered without a commitment or proof."""

    code = "MalformedCommitmentResponse"


class StoreUnavailable(CredentialChainError):
    """Content store unreachable. Retryable."""

    code = "StoreUnavailable"


class SchemaVersionUnsupported(CredentialChainError):
    """Credential declares a schemaVersion this implementation does not know."""

    code = "SchemaVersionUnsupported"


class ChainLinkBroken(CredentialChainError):
    """A referenced credential (previous stage or component) cannot be resolved."""

    code = "ChainLinkBroken"


class ContentNotFound(ChainLinkBroken):
    """Content id is not present in the store."""

    code = "ContentNotFound"


class SignedPayloadMutation(CredentialChainError):
    """A signed field was changed after a proof was attached. Fatal to the stage transition."""

    code = "SignedPayloadMutation"


class MissingRequiredField(CredentialChainError):
    """A field required to build or sign a stage is absent. Fatal to the stage transition."""

    code = "MissingRequiredField"
