"""
vc-chain Verification API Server

Flask REST API for:
- Credential signature and commitment verification
- Credential retrieval from the content store

Run:
    flask --app api.server run --port 5000

Or with gunicorn (production):
    gunicorn -w 4 -b 0.0.0.0:5000 api.server:app
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime, timezone

from flask import Flask, jsonify, request
from flask_cors import CORS
from pydantic import ValidationError

from vc_chain import __version__
from vc_chain.canonical import parse
from vc_chain.errors import ContentNotFound, CredentialChainError, SchemaVersionUnsupported, StoreUnavailable
from vc_chain.eth.chain_client import ChainClient
from vc_chain.eth.settings import Settings
from vc_chain.models import Credential
from vc_chain.prover import ProverClient
from vc_chain.store import ContentStore, PinataContentStore
from vc_chain.verifier import Verifier

logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app, origins=["http://localhost:3000", "http://localhost:3001"])

# Commitment checks reported next to the per-role signature results
COMMITMENT_CHECKS = ("price", "purchase_tx", "delivery_tx", "linkage")


def get_settings() -> Settings:
    if "VC_SETTINGS" not in app.config:
        app.config["VC_SETTINGS"] = Settings.load()
    return app.config["VC_SETTINGS"]


def get_verifier() -> Verifier:
    """Verifier from app config, built from Settings on first use."""
    if "VC_VERIFIER" not in app.config:
        s = get_settings()
        chain = ChainClient.from_env(s.RPC_URL) if s.RPC_URL else None
        app.config["VC_VERIFIER"] = Verifier(
            ProverClient(s.PROVER_URL, s.PROVER_TIMEOUT),
            chain,
            allow_unbound_domain=s.ALLOW_UNBOUND_DOMAIN,
            default_chain_id=s.VC_CHAIN_ID,
        )
    return app.config["VC_VERIFIER"]


def get_store() -> ContentStore:
    if "VC_STORE" not in app.config:
        s = get_settings()
        app.config["VC_STORE"] = PinataContentStore(s.IPFS_GATEWAY_URL, s.PINATA_JWT)
    return app.config["VC_STORE"]


@app.route("/api/health")
def health_check():
    """Health check endpoint."""
    return jsonify({
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
    })


@app.route("/verify-vc", methods=["POST"])
def verify_vc():
    """
    Verify a credential's role signatures and commitments.

    Body:
        vc: Credential JSON
        isCertificate: Issuer-only credential (skip holder proof)
        contractAddress: Escrow address used as EIP-712 verifyingContract
    """
    body = request.get_json(silent=True) or {}
    raw = body.get("vc")
    if not raw:
        return jsonify({"error": "VC data is required."}), 400
    is_certificate = bool(body.get("isCertificate", False))
    contract = body.get("contractAddress") or None

    try:
        vc = Credential.model_validate(parse(raw) if isinstance(raw, str) else raw)
    except SchemaVersionUnsupported as e:
        return jsonify({"error": str(e), "code": e.code}), 400
    except (ValidationError, ValueError) as e:
        return jsonify({"error": f"Invalid VC: {e}"}), 400

    try:
        verifier = get_verifier()
        issuer = verifier.verify_proof(vc, "issuer", contract)
        holder = None if is_certificate else verifier.verify_proof(vc, "holder", contract)
        report = verifier.verify(vc, contract_address=contract, checks=COMMITMENT_CHECKS)
    except Exception as e:
        logger.exception("Error verifying VC")
        return jsonify({"error": str(e)}), 500

    return jsonify({
        "message": "VC verification complete.",
        "issuer": asdict(issuer),
        "holder": asdict(holder) if holder is not None else None,
        "checks": report.to_dict(),
    })


@app.route("/fetch-vc", methods=["POST"])
def fetch_vc():
    """Fetch a stored credential by content id."""
    body = request.get_json(silent=True) or {}
    cid = body.get("cid")
    if not cid:
        return jsonify({"error": "Cid is required."}), 400

    try:
        data = parse(get_store().get(cid))
    except ContentNotFound as e:
        return jsonify({"error": str(e), "code": e.code}), 404
    except StoreUnavailable as e:
        return jsonify({"error": str(e), "code": e.code}), 502
    except CredentialChainError as e:
        return jsonify({"error": str(e), "code": e.code}), 500
    except ValueError:
        return jsonify({"error": f"Content at {cid} is not JSON"}), 422

    return jsonify({"message": "VC fetching complete.", "vc": data})


if __name__ == "__main__":
    app.run(debug=True, port=5000)
