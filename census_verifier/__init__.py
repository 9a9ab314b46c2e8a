"""
Anonymous census verifier.

Verifies zero-knowledge proofs of census membership and issues signed
attestations that a downstream ledger can check cheaply.
"""

__version__ = "0.1.0"


def print_disclaimer():
    """Print the operational disclaimer."""
    print(
        "The verifier trusts its verification key and signer keypair files.\n"
        "Protect verifier-keypair.json: anyone holding it can mint attestations.\n"
        "The in-memory nullifier registry forgets consumed nullifiers on restart;\n"
        "use a database URL for any deployment that counts real submissions."
    )
