from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Optional

from vc_chain.binding import derive_context_tag, derive_linkage_tag, to_hex32
from vc_chain.canonical import canonicalize, hash_vc_payload, parse
from vc_chain.commitments import derive_blinding
from vc_chain.errors import CredentialChainError
from vc_chain.eth.chain_client import ChainClient
from vc_chain.eth.settings import Settings
from vc_chain.models import Credential
from vc_chain.prover import ProverClient
from vc_chain.provenance import ProvenanceNode, ProvenanceWalker, count_delivered, count_total, count_verified
from vc_chain.store import PinataContentStore
from vc_chain.verifier import CheckStatus, Verifier

STATUS_ICONS = {
    CheckStatus.VERIFIED: "✅",
    CheckStatus.FAILED: "❌",
    CheckStatus.NOT_PRESENT: "➖",
    CheckStatus.NOT_CHECKED: "⏭️ ",
}


def read_json(path: str) -> Any:
    if path == "-":
        return parse(sys.stdin.read())
    with open(path, "r", encoding="utf-8") as f:
        return parse(f.read())


def load_vc(path: str) -> Credential:
    return Credential.model_validate(read_json(path))


def cmd_blinding(args) -> int:
    print(to_hex32(derive_blinding(args.escrow, args.seller)))
    return 0


def cmd_context_tag(args) -> int:
    tag = derive_context_tag(
        chain_id=args.chain_id,
        escrow_addr=args.escrow,
        product_id=args.product_id,
        stage=args.stage,
        schema_version=args.schema_version,
        previous_credential_id=args.previous_cid,
    )
    print(to_hex32(tag))
    return 0


def cmd_linkage_tag(args) -> int:
    tag = derive_linkage_tag(
        chain_id=args.chain_id,
        escrow_addr=args.escrow,
        product_id=args.product_id,
        buyer_addr=args.buyer,
    )
    print(to_hex32(tag))
    return 0


def cmd_canonicalize(args) -> int:
    data = read_json(args.file)
    print(canonicalize(data))
    if args.hash:
        print(f"vcHash: {hash_vc_payload(data)}", file=sys.stderr)
    return 0


def build_verifier(args, settings: Settings) -> Verifier:
    prover = None
    prover_url = args.prover_url or (settings.PROVER_URL if args.use_prover else "")
    if prover_url:
        prover = ProverClient(prover_url, settings.PROVER_TIMEOUT)
    chain = None
    rpc_url = args.rpc_url or settings.RPC_URL
    if rpc_url and args.contract:
        chain = ChainClient.from_env(rpc_url)
    return Verifier(
        prover,
        chain,
        allow_unbound_domain=settings.ALLOW_UNBOUND_DOMAIN,
        default_chain_id=settings.VC_CHAIN_ID,
    )


def cmd_verify(args) -> int:
    settings = Settings.load()
    vc = load_vc(args.file)
    verifier = build_verifier(args, settings)

    report = verifier.verify(vc, cid=args.cid, contract_address=args.contract)
    if args.is_certificate:
        report.signatures = verifier.check_signatures(vc, args.contract, roles=["issuer"])

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(f"🔍 Credential {vc.id}")
        for name, result in report.results().items():
            line = f"   {STATUS_ICONS[result.status]} {name:<26}: {result.status.value}"
            if result.error:
                line += f" ({result.error})"
            print(line)
            if result.detail and result.status is not CheckStatus.VERIFIED:
                print(f"      {result.detail}")
            if "blockNumber" in result.data:
                print(f"      block: {result.data['blockNumber']}")
    return 1 if report.any_failed else 0


def print_tree(node: ProvenanceNode, indent: int = 0) -> None:
    pad = "   " * indent
    icon = "✅" if node.verified else "❌"
    print(f"{pad}{icon} {node.product_name} [{node.status}] {node.cid}")
    if node.error:
        print(f"{pad}   {node.error}")
    for child in node.components:
        print_tree(child, indent + 1)


def cmd_provenance(args) -> int:
    settings = Settings.load()
    store = PinataContentStore(args.gateway or settings.IPFS_GATEWAY_URL, settings.PINATA_JWT)
    walker = ProvenanceWalker(
        store,
        Verifier(default_chain_id=settings.VC_CHAIN_ID),
        max_depth=args.max_depth,
    )
    root = walker.walk_cid(args.cid)

    if args.json:
        print(json.dumps(root.to_dict(), indent=2))
        return 0
    print_tree(root)
    print("")
    print(f"• Total components: {count_total(root)}")
    print(f"• Verified components: {count_verified(root)}")
    print(f"• Delivered components: {count_delivered(root)}")
    return 0


def main(argv: Optional[list[str]] = None) -> None:
    p = argparse.ArgumentParser(prog="vc-chain")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    # blinding
    b = sub.add_parser("blinding", help="Derive the deterministic price blinding factor")
    b.add_argument("--escrow", required=True)
    b.add_argument("--seller", required=True)
    b.set_defaults(func=cmd_blinding)

    # context-tag
    c = sub.add_parser("context-tag", help="Derive a price-proof context binding tag")
    c.add_argument("--chain-id", required=True)
    c.add_argument("--escrow", required=True)
    c.add_argument("--product-id", required=True)
    c.add_argument("--stage", type=int, required=True, choices=[0, 1, 2])
    c.add_argument("--schema-version", default="1.0")
    c.add_argument("--previous-cid", help="Previous credential content id (v2 tag)")
    c.set_defaults(func=cmd_context_tag)

    # linkage-tag
    lt = sub.add_parser("linkage-tag", help="Derive the purchase/delivery linkage tag")
    lt.add_argument("--chain-id", required=True)
    lt.add_argument("--escrow", required=True)
    lt.add_argument("--product-id", required=True)
    lt.add_argument("--buyer", required=True)
    lt.set_defaults(func=cmd_linkage_tag)

    # canonicalize
    cz = sub.add_parser("canonicalize", help="Print canonical JSON of a credential")
    cz.add_argument("file", help="Credential JSON file ('-' for stdin)")
    cz.add_argument("--hash", action="store_true", help="Also print vcHash to stderr")
    cz.set_defaults(func=cmd_canonicalize)

    # verify
    v = sub.add_parser("verify", help="Verify a credential")
    v.add_argument("file", help="Credential JSON file ('-' for stdin)")
    v.add_argument("--cid", help="Content id of the credential (event cross-check)")
    v.add_argument("--contract", help="Escrow contract address (verifyingContract)")
    v.add_argument("--prover-url", help="Prover base URL")
    v.add_argument("--use-prover", action="store_true", help="Use PROVER_URL from the environment")
    v.add_argument("--rpc-url", help="Ethereum RPC URL")
    v.add_argument("--is-certificate", action="store_true", help="Issuer-only credential")
    v.add_argument("--json", action="store_true")
    v.set_defaults(func=cmd_verify)

    # provenance
    pv = sub.add_parser("provenance", help="Walk the component provenance tree")
    pv.add_argument("--cid", required=True)
    pv.add_argument("--gateway", help="IPFS gateway URL")
    pv.add_argument("--max-depth", type=int, default=10)
    pv.add_argument("--json", action="store_true")
    pv.set_defaults(func=cmd_provenance)

    args = p.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        rc = args.func(args)
    except (CredentialChainError, ValueError) as e:
        print(f"❌ {type(e).__name__}: {e}", file=sys.stderr)
        rc = 2
    if rc:
        raise SystemExit(rc)


if __name__ == "__main__":
    main()
