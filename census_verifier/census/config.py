"""
Protocol configuration for the census verifier.

These values are shared with the membership circuit and the consuming
ledger program. Changing any of them breaks compatibility with proofs and
attestations produced against the previous values.
"""

# ============================================================================
# FIELD PARAMETERS
# ============================================================================

# BN254 (alt_bn128) scalar field, the field Groth16 public signals live in
CURVE_NAME = "bn254"
FIELD_MODULUS = (
    21888242871839275222246405745257275088548364400416034343698204186575808495617
)
FIELD_ELEMENT_BITS = 254

# Every field element is serialized to exactly this many bytes
FIELD_ELEMENT_BYTES = 32
U256_LIMIT = 1 << (8 * FIELD_ELEMENT_BYTES)

# ============================================================================
# MERKLE TREE
# ============================================================================

# 2^20 leaves (~1M citizens)
TREE_DEPTH = 20
MAX_TREE_DEPTH = 32

# Root reported for a tree with no leaves
EMPTY_TREE_ROOT = 0

# Number of previous roots a proof may still be built against
ROOT_HISTORY_SIZE = 30

# Must match the hash inside the membership circuit
DEFAULT_HASHER = "poseidon"

# ============================================================================
# VERIFIER BACKEND
# ============================================================================

# "mock" accepts self-describing test proofs; never deploy it
DEFAULT_BACKEND = "groth16"

# ============================================================================
# PUBLIC SIGNALS
# ============================================================================

# Order fixed by the circuit
PUBLIC_SIGNAL_NAMES = ("root", "nullifierHash", "signalHash", "externalNullifier")
PUBLIC_SIGNAL_COUNT = len(PUBLIC_SIGNAL_NAMES)

# ============================================================================
# ATTESTATION MESSAGE
# ============================================================================

TIMESTAMP_BYTES = 8
ATTESTATION_FIELD_COUNT = 4
ATTESTATION_MESSAGE_BYTES = TIMESTAMP_BYTES + ATTESTATION_FIELD_COUNT * FIELD_ELEMENT_BYTES
SIGNATURE_BYTES = 64
PUBLIC_KEY_BYTES = 32

# Consumers reject attestations older than this
ATTESTATION_MAX_AGE_SECONDS = 300

# ============================================================================
# DOMAIN SEPARATION
# ============================================================================

DOMAIN_SEPARATOR_PREFIX = b"ZK_CENSUS_V1_"

DOMAIN_SEPARATORS = {
    "identity_nullifier": b"zk-census-nullifier-v1",
    "identity_trapdoor": b"zk-census-trapdoor-v1",
    "signal": DOMAIN_SEPARATOR_PREFIX + b"SIGNAL",
}

# ============================================================================
# VALIDATION
# ============================================================================


def validate_config() -> bool:
    """
    Validate configuration parameters.

    Returns:
        True if configuration is valid

    Raises:
        AssertionError: If configuration is invalid
    """
    assert FIELD_MODULUS < U256_LIMIT, "Field elements must fit in 32 bytes"
    assert FIELD_MODULUS.bit_length() == FIELD_ELEMENT_BITS, "Unexpected field size"
    assert 0 < TREE_DEPTH <= MAX_TREE_DEPTH, "Invalid tree depth"
    assert ATTESTATION_MESSAGE_BYTES == 136, "Attestation layout changed"
    assert PUBLIC_SIGNAL_COUNT == 4, "Circuit exposes exactly four public signals"
    assert ROOT_HISTORY_SIZE >= 1, "Root history must keep the current root"

    return True


# Auto-validate on import
validate_config()
