"""
Commitment engine tests.

Verifies:
- Deterministic blinding (same inputs, same factor; either address changes it)
- verify_commitment equality semantics
- Engine input validation and prover response handling
"""

from __future__ import annotations

import pytest

from conftest import ESCROW, FakeProver
from vc_chain.binding import derive_context_tag, to_hex32
from vc_chain.commitments import CommitmentEngine, derive_blinding, verify_commitment
from vc_chain.errors import MalformedCommitmentResponse, ProverUnavailable
from vc_chain.models import BindingContext

SELLER = "0x" + "bb" * 20


class TestBlinding:
    def test_deterministic(self):
        assert derive_blinding(ESCROW, SELLER) == derive_blinding(ESCROW, SELLER)
        assert len(derive_blinding(ESCROW, SELLER)) == 32

    def test_either_address_changes_it(self):
        base = derive_blinding(ESCROW, SELLER)
        assert derive_blinding("0x" + "ab" * 20, SELLER) != base
        assert derive_blinding(ESCROW, "0x" + "bc" * 20) != base

    def test_order_matters(self):
        assert derive_blinding(ESCROW, SELLER) != derive_blinding(SELLER, ESCROW)

    def test_case_insensitive(self):
        assert derive_blinding(ESCROW.upper().replace("0X", "0x"), SELLER) == derive_blinding(ESCROW, SELLER)

    def test_rejects_bad_address(self):
        with pytest.raises(ValueError):
            derive_blinding("0x12", SELLER)


class TestVerifyCommitment:
    C = "0x" + "ab12" * 16

    def test_equal(self):
        assert verify_commitment(self.C, self.C)

    def test_one_digit_flipped(self):
        flipped = self.C[:-1] + ("3" if self.C[-1] != "3" else "4")
        assert not verify_commitment(self.C, flipped)

    def test_case_and_prefix_insensitive(self):
        assert verify_commitment(self.C, self.C.upper().replace("0X", ""))
        assert verify_commitment(self.C[2:], self.C)

    @pytest.mark.parametrize("a,b", [("", C), (C, ""), (None, C), (C, None)])
    def test_missing_is_false(self, a, b):
        assert not verify_commitment(a, b)


class TestEngine:
    def test_commit_value_without_tag_uses_commit(self, engine, prover):
        c = engine.commit_value(1000, derive_blinding(ESCROW, SELLER))
        assert prover.calls[-1][0] == "/commit"
        assert c.commitment and c.proof and c.verified is True
        assert c.binding_tag is None

    def test_commit_value_with_tag_uses_binding_endpoint(self, engine, prover):
        tag = b"\x05" * 32
        c = engine.commit_value(1000, derive_blinding(ESCROW, SELLER), binding_tag=tag)
        path, body = prover.calls[-1]
        assert path == "/commit-with-binding"
        assert body["binding_tag_hex"] == to_hex32(tag)
        assert c.binding_tag == to_hex32(tag)
        assert engine.verify(c)

    @pytest.mark.parametrize("value", [-1, 2**64, 1.5, True, "10"])
    def test_rejects_non_u64(self, engine, value):
        with pytest.raises(ValueError):
            engine.commit_value(value, b"\x00" * 32)

    def test_rejects_short_blinding(self, engine):
        with pytest.raises(ValueError):
            engine.commit_value(1, b"\x00" * 16)

    def test_same_value_same_blinding_same_commitment(self, engine):
        blinding = derive_blinding(ESCROW, SELLER)
        a = engine.commit_value(4 * 10**18, blinding, binding_tag=b"\x01" * 32)
        b = engine.commit_value(4 * 10**18, blinding, binding_tag=b"\x02" * 32)
        assert a.commitment == b.commitment
        assert a.proof != b.proof

    def test_commit_price_embeds_context(self, engine):
        ctx = BindingContext(chain_id=1, escrow_addr=ESCROW, product_id=3, stage=0)
        c = engine.commit_price(500, escrow_addr=ESCROW, seller_addr=SELLER, context=ctx)
        assert c.binding_context == ctx
        assert c.binding_tag == to_hex32(
            derive_context_tag(chain_id=1, escrow_addr=ESCROW, product_id=3, stage=0)
        )
        assert c.proof_type == "zkRangeProof-v1"
        assert c.to_dict()["bindingContext"]["productId"] == "3"

    def test_unverified_response_is_returned_with_warning(self, caplog):
        engine = CommitmentEngine(FakeProver(verified=False))
        c = engine.commit_value(1, b"\x00" * 32)
        assert c.verified is False
        assert "did not verify" in caplog.text

    def test_missing_proof_is_malformed(self):
        class NoProof(FakeProver):
            def commit(self, value, blinding_hex):
                return {"commitment": "0x01", "verified": True}

        with pytest.raises(MalformedCommitmentResponse):
            CommitmentEngine(NoProof()).commit_value(1, b"\x00" * 32)

    def test_prover_unavailable_propagates(self):
        class Down(FakeProver):
            def commit_tx_hash(self, tx_hash, binding_tag_hex=None):
                raise ProverUnavailable("connection refused")

        with pytest.raises(ProverUnavailable):
            CommitmentEngine(Down()).commit_tx_hash("0x" + "12" * 32)

    def test_commit_tx_hash(self, engine, prover):
        c = engine.commit_tx_hash("0x" + "12" * 32, binding_tag=b"\x09" * 32)
        assert prover.calls[-1][0] == "/commit-tx-hash"
        assert c.binding_tag == to_hex32(b"\x09" * 32)
        assert engine.verify(c)

    @pytest.mark.parametrize("tx_hash", ["0x1234", "12" * 32, "0x" + "zz" * 32, None])
    def test_commit_tx_hash_requires_32_bytes(self, engine, tx_hash):
        with pytest.raises(ValueError):
            engine.commit_tx_hash(tx_hash)

    def test_verify_requires_verified_field(self):
        class Silent(FakeProver):
            def verify(self, commitment, proof, binding_tag_hex=None):
                return {}

        engine = CommitmentEngine(Silent())
        c = engine.commit_value(1, b"\x00" * 32)
        with pytest.raises(MalformedCommitmentResponse):
            engine.verify(c)
