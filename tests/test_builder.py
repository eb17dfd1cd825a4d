"""
Credential builder tests.

Verifies:
- Stage linkage by content id (listing -> order confirmation -> delivery)
- Buyer re-derives the listing's price commitment
- Binding context recovery and the fallback policy
- Signed-payload immutability and unsigned appends
- Causal prerequisite: the previous stage must resolve
"""

from __future__ import annotations

import pytest

from conftest import CHAIN_ID, ESCROW, OTHER_ESCROW, PRODUCT_ID
from vc_chain.binding import context_tag_for, derive_linkage_tag, to_hex32
from vc_chain.builder import CredentialBuilder, signed_region
from vc_chain.commitments import derive_blinding
from vc_chain.errors import (
    ChainLinkBroken,
    ContentNotFound,
    MissingRequiredField,
    SignedPayloadMutation,
)
from vc_chain.models import ZERO_ADDRESS, Commitment, did_ethr
from vc_chain.signing import SigningDomain, sign_credential
from vc_chain.store import put_credential

SPEC_ESCROW = "0x" + "aa" * 20
SPEC_SELLER = "0x" + "bb" * 20
SPEC_BUYER = "0x" + "cc" * 20
PRICE = 4 * 10**18


def test_listing_to_order_confirmation_links_by_cid(builder, store, prover):
    """Listing of 4e18 units, then order confirmation for buyer 0xCCC..."""
    stage0 = builder.listing(
        seller_addr=SPEC_SELLER,
        escrow_addr=SPEC_ESCROW,
        product_id=1,
        product_name="Steel Coil",
        price_value=PRICE,
    )
    blinding_hex = to_hex32(derive_blinding(SPEC_ESCROW, SPEC_SELLER))
    assert prover.calls[0][1]["blinding_hex"] == blinding_hex
    assert prover.calls[0][1]["value"] == PRICE

    cid0 = put_credential(store, stage0)
    stage1 = builder.order_confirmation(stage0, cid0, buyer_addr=SPEC_BUYER, seller_addr=SPEC_SELLER)

    assert stage1.credential_subject.previous_credential == cid0
    assert stage1.holder.id == did_ethr(CHAIN_ID, SPEC_BUYER)
    assert stage1.credential_subject.id == did_ethr(CHAIN_ID, SPEC_BUYER)
    assert stage1.credential_subject.price_commitment == stage0.credential_subject.price_commitment
    assert stage1.proof == []


def test_listing_shape(listing, seller_key):
    assert listing.issuer.id == did_ethr(CHAIN_ID, seller_key.get_address())
    assert listing.holder.id == did_ethr(CHAIN_ID, ZERO_ADDRESS)
    assert listing.credential_subject.previous_credential == ""
    c = listing.credential_subject.price_commitment
    assert c.binding_context.stage == 0
    assert c.binding_tag == to_hex32(context_tag_for(c.binding_context))


def test_listing_needs_a_price(builder):
    with pytest.raises(MissingRequiredField):
        builder.listing(seller_addr=SPEC_SELLER, escrow_addr=ESCROW, product_id=1, product_name="x")


def test_listing_without_engine_needs_commitment():
    with pytest.raises(MissingRequiredField):
        CredentialBuilder(CHAIN_ID).listing(
            seller_addr=SPEC_SELLER, escrow_addr=ESCROW, product_id=1, product_name="x", price_value=1
        )


def test_order_confirmation_requires_cid(builder, listing, buyer_key, seller_key):
    with pytest.raises(MissingRequiredField):
        builder.order_confirmation(
            listing, "", buyer_addr=buyer_key.get_address(), seller_addr=seller_key.get_address()
        )


def test_order_confirmation_clears_proofs(builder, listing, seller_key, buyer_key):
    signed = builder.attach_proof(listing, sign_credential(listing, "issuer", seller_key, SigningDomain(CHAIN_ID)))
    stage1 = builder.order_confirmation(
        signed, "bafkreiabc", buyer_addr=buyer_key.get_address(), seller_addr=seller_key.get_address()
    )
    assert stage1.proof == []


class TestDelivery:
    def _stage1(self, builder, listing, store, seller_key, buyer_key):
        cid0 = put_credential(store, listing)
        stage1 = builder.order_confirmation(
            listing, cid0, buyer_addr=buyer_key.get_address(), seller_addr=seller_key.get_address()
        )
        return stage1, put_credential(store, stage1)

    def test_buyer_reproduces_commitment(self, builder, listing, store, seller_key, buyer_key):
        stage1, cid1 = self._stage1(builder, listing, store, seller_key, buyer_key)
        c = builder.delivery_price_commitment(
            stage1, cid1, PRICE, escrow_addr=ESCROW, seller_addr=seller_key.get_address(), product_id=PRODUCT_ID
        )
        assert c.commitment == listing.credential_subject.price_commitment.commitment
        assert c.binding_context.stage == 2
        assert c.binding_context.previous_vc_cid == cid1
        assert c.binding_tag == to_hex32(context_tag_for(c.binding_context))

    def test_draft_links_stage1(self, builder, listing, store, seller_key, buyer_key):
        stage1, cid1 = self._stage1(builder, listing, store, seller_key, buyer_key)
        c = builder.delivery_price_commitment(
            stage1, cid1, PRICE, escrow_addr=ESCROW, seller_addr=seller_key.get_address(), product_id=PRODUCT_ID
        )
        draft = builder.delivery_draft(stage1, cid1, price_commitment=c, transporter="0x" + "ee" * 20)
        assert draft.proof == []
        assert draft.credential_subject.previous_credential == cid1
        assert draft.credential_subject.price_commitment.proof == c.proof
        assert draft.credential_subject.subject_details.transporter == "0x" + "ee" * 20

    def _unbound_stage1(self, builder, seller_key, buyer_key):
        bare = builder.listing(
            seller_addr=seller_key.get_address(),
            escrow_addr=ESCROW,
            product_id=PRODUCT_ID,
            product_name="Legacy",
            price_commitment=Commitment(commitment="0xc0", proof="ff"),
        )
        return builder.order_confirmation(
            bare, "bafkreizero", buyer_addr=buyer_key.get_address(), seller_addr=seller_key.get_address()
        )

    def test_missing_context_is_synthesized(self, builder, seller_key, buyer_key, caplog):
        stage1 = self._unbound_stage1(builder, seller_key, buyer_key)
        c = builder.delivery_price_commitment(
            stage1, "bafkreione", PRICE, escrow_addr=ESCROW, seller_addr=seller_key.get_address(), product_id=PRODUCT_ID
        )
        assert c.binding_context.product_id == str(PRODUCT_ID)
        assert c.binding_context.previous_vc_cid == "bafkreione"
        assert "synthesizing" in caplog.text

    def test_strict_linkage_refuses_fallback(self, engine, seller_key, buyer_key):
        strict = CredentialBuilder(CHAIN_ID, engine, strict_linkage=True)
        stage1 = self._unbound_stage1(strict, seller_key, buyer_key)
        with pytest.raises(ChainLinkBroken):
            strict.delivery_price_commitment(
                stage1, "bafkreione", PRICE, escrow_addr=ESCROW, seller_addr=seller_key.get_address(), product_id=PRODUCT_ID
            )


class TestImmutability:
    def test_one_proof_per_role(self, builder, listing, seller_key):
        proof = sign_credential(listing, "issuer", seller_key, SigningDomain(CHAIN_ID))
        signed = builder.attach_proof(listing, proof)
        with pytest.raises(ValueError):
            builder.attach_proof(signed, proof)

    def test_attach_detects_changed_payload(self, builder, listing, seller_key, buyer_key):
        stage1 = builder.order_confirmation(
            listing, "bafkreiabc", buyer_addr=buyer_key.get_address(), seller_addr=seller_key.get_address()
        )
        domain = SigningDomain(CHAIN_ID, ESCROW)
        signed = builder.attach_proof(stage1, sign_credential(stage1, "issuer", seller_key, domain))

        tampered = stage1.model_copy(deep=True)
        tampered.credential_subject.batch = "other"
        holder_proof = sign_credential(tampered, "holder", buyer_key, domain)
        with pytest.raises(SignedPayloadMutation):
            builder.attach_proof(signed, holder_proof)

        ok = builder.attach_proof(signed, sign_credential(signed, "holder", buyer_key, domain))
        assert ok.is_delivered

    def test_proof_over_other_payload_rejected(self, builder, listing, seller_key):
        proof = sign_credential(listing, "issuer", seller_key, SigningDomain(CHAIN_ID, ESCROW))
        changed = listing.model_copy(deep=True)
        changed.credential_subject.product_name = "Counterfeit"
        with pytest.raises(SignedPayloadMutation):
            builder.attach_proof(changed, proof)

    def test_mixed_domain_countersignature(self, builder, listing, seller_key, buyer_key):
        stage1 = builder.order_confirmation(
            listing, "bafkreiabc", buyer_addr=buyer_key.get_address(), seller_addr=seller_key.get_address()
        )
        signed = builder.attach_proof(
            stage1, sign_credential(stage1, "issuer", seller_key, SigningDomain(CHAIN_ID, ESCROW))
        )
        both = builder.attach_proof(signed, sign_credential(signed, "holder", buyer_key, SigningDomain(CHAIN_ID)))
        assert both.is_delivered

    def test_explicit_contract_for_bound_proof(self, builder, listing, seller_key):
        proof = sign_credential(listing, "issuer", seller_key, SigningDomain(CHAIN_ID, OTHER_ESCROW))
        with pytest.raises(SignedPayloadMutation):
            builder.attach_proof(listing, proof)
        signed = builder.attach_proof(listing, proof, contract_address=OTHER_ESCROW)
        assert signed.has_role_proof("issuer")

    def test_append_unsigned_after_signing(self, builder, listing, seller_key, buyer_key, engine):
        signed = builder.attach_proof(listing, sign_credential(listing, "issuer", seller_key, SigningDomain(CHAIN_ID)))
        tag = derive_linkage_tag(
            chain_id=CHAIN_ID, escrow_addr=ESCROW, product_id=PRODUCT_ID, buyer_addr=buyer_key.get_address()
        )
        tx = engine.commit_tx_hash("0x" + "12" * 32, binding_tag=tag)
        updated = builder.append_unsigned(signed, txHashCommitment=tx, deliveryStatus=True)
        assert updated.credential_subject.tx_hash_commitment == tx
        assert updated.credential_subject.delivery_status is True
        assert signed_region(updated) == signed_region(signed)
        assert updated.proof == signed.proof

    def test_append_signed_field_after_signing_rejected(self, builder, listing, seller_key):
        signed = builder.attach_proof(listing, sign_credential(listing, "issuer", seller_key, SigningDomain(CHAIN_ID)))
        with pytest.raises(SignedPayloadMutation):
            builder.append_unsigned(signed, productName="Counterfeit")

    def test_unsigned_credential_accepts_any_field(self, builder, listing):
        updated = builder.append_unsigned(listing, batch="B-02")
        assert updated.credential_subject.batch == "B-02"


class TestRequirePrevious:
    def test_resolves(self, builder, listing, store):
        cid = put_credential(store, listing)
        assert builder.require_previous(store, cid).id == listing.id

    def test_unknown_cid(self, builder, store):
        with pytest.raises(ContentNotFound):
            builder.require_previous(store, "bafkreimissing")

    def test_empty_cid(self, builder, store):
        with pytest.raises(ChainLinkBroken):
            builder.require_previous(store, "")

    def test_non_credential_content(self, builder, store):
        cid = store.put(b'{"hello": "world"}')
        with pytest.raises(ChainLinkBroken):
            builder.require_previous(store, cid)
