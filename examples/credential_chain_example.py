"""
Credential Chain Example

Walks one product through listing, order confirmation and delivery against a
running prover (PROVER_URL, default http://localhost:5010), then verifies the
delivered credential.
"""

from __future__ import annotations

import os

from vc_chain.builder import CredentialBuilder
from vc_chain.commitments import CommitmentEngine
from vc_chain.prover import ProverClient
from vc_chain.signing import LocalKeyHandle, SigningDomain, sign_credential
from vc_chain.store import InMemoryContentStore, put_credential
from vc_chain.verifier import Verifier

CHAIN_ID = 11155111
ESCROW = "0x" + "aa" * 20
PRODUCT_ID = 1
PRICE_WEI = 4 * 10**18


def main() -> None:
    """Example workflow."""
    prover = ProverClient(os.getenv("PROVER_URL", "http://localhost:5010"))
    builder = CredentialBuilder(CHAIN_ID, CommitmentEngine(prover))
    store = InMemoryContentStore()
    seller, buyer = LocalKeyHandle.generate(), LocalKeyHandle.generate()
    domain = SigningDomain(CHAIN_ID, ESCROW)

    # 1. Listing (stage 0), signed by the seller
    stage0 = builder.listing(
        seller_addr=seller.get_address(),
        escrow_addr=ESCROW,
        product_id=PRODUCT_ID,
        product_name="Battery Cell",
        price_value=PRICE_WEI,
    )
    stage0 = builder.attach_proof(stage0, sign_credential(stage0, "issuer", seller, domain))
    cid0 = put_credential(store, stage0)
    print("Stage 0:", cid0)

    # 2. Order confirmation (stage 1) with a linked purchase tx-hash commitment
    purchase = builder.tx_hash_commitment(
        "0x" + "12" * 32, escrow_addr=ESCROW, product_id=PRODUCT_ID, buyer_addr=buyer.get_address()
    )
    stage1 = builder.order_confirmation(
        builder.require_previous(store, cid0),
        cid0,
        buyer_addr=buyer.get_address(),
        seller_addr=seller.get_address(),
        purchase_tx_hash_commitment=purchase,
    )
    stage1 = builder.attach_proof(stage1, sign_credential(stage1, "issuer", seller, domain))
    cid1 = put_credential(store, stage1)
    print("Stage 1:", cid1)

    # 3. Delivery (stage 2): buyer re-derives the price commitment, both parties sign
    price = builder.delivery_price_commitment(
        stage1, cid1, PRICE_WEI, escrow_addr=ESCROW, seller_addr=seller.get_address(), product_id=PRODUCT_ID
    )
    draft = builder.delivery_draft(stage1, cid1, price_commitment=price)
    draft = builder.attach_proof(draft, sign_credential(draft, "issuer", seller, domain))
    final = builder.attach_proof(draft, sign_credential(draft, "holder", buyer, domain))

    delivery = builder.tx_hash_commitment(
        "0x" + "34" * 32, escrow_addr=ESCROW, product_id=PRODUCT_ID, buyer_addr=buyer.get_address()
    )
    final = builder.append_unsigned(final, txHashCommitment=delivery, deliveryStatus=True)
    print("Stage 2:", put_credential(store, final))

    # 4. Verify
    report = Verifier(prover).verify(final, contract_address=ESCROW)
    for name, result in report.results().items():
        print(f"  {name:<26} {result.status.value}")


if __name__ == "__main__":
    main()
