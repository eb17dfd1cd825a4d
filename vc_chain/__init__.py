"""
vc-chain - Privacy-preserving supply-chain credential chain.

Listing -> order confirmation -> delivery credentials, with hidden prices and
transaction hashes committed through an external Pedersen/Bulletproofs prover.
"""

__version__ = "0.1.0"

DEFAULT_SCHEMA_VERSION = "1.0"

# Schema versions this implementation signs and verifies
SUPPORTED_SCHEMA_VERSIONS = [
    "1.0",
]

# Credential stages (index into the binding context)
STAGE_LISTING = 0
STAGE_ORDER_CONFIRMATION = 1
STAGE_DELIVERY = 2
STAGES = (STAGE_LISTING, STAGE_ORDER_CONFIRMATION, STAGE_DELIVERY)
