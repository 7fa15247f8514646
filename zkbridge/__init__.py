"""
ZKBRIDGE: Private Deposit Claims for a Bitcoin Bridge

A depositor pays a custodial locker output on Bitcoin and embeds a
commitment to a secret in the same transaction. Later, anyone holding the
secret can claim the wrapped asset on the destination chain with a
zero-knowledge proof, without linking the claim to the deposit.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                         DEPOSIT BRIDGE CLAIMS                           │
    │                                                                          │
    │  OFF-CHAIN                                                              │
    │    commitment.py  Commitment, nullifier and field reductions            │
    │    deposit.py     Deposit notes and template deposit transactions       │
    │    txparser.py    Raw transaction parsing, locker and marker outputs    │
    │    witness.py     Padded transaction, Merkle path, hidden-root slots    │
    │    prover.py      Groth16 orchestration (mock and snarkjs backends)     │
    │    provider.py    Esplora block-data client with retry                  │
    │    pipeline.py    Fetch, build and prove into a claim package           │
    │                                                                          │
    │  DESTINATION LEDGER                                                     │
    │    claim.py       Nullifier set, locker registry, claim state machine   │
    │                                                                          │
    │  SUPPORT                                                                │
    │    hardening.py   Error taxonomy, validators, thread-safety primitives  │
    │    resilience.py  Circuit breaker and retry policy                      │
    │    observability.py  Structured logging and hash-chained audit log      │
    │    config.py      Typed configuration with env overrides                │
    │    schema.py      JSON Schema validation of persisted documents         │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Core Concepts
─────────────

    Commitment: SHA-256 of secret, amount, destination chain id and
    recipient, pushed in an OP_RETURN output of the deposit transaction.

    Nullifier: field-reduced SHA-256 of the secret with a domain byte.
    Published at claim time; the destination ledger accepts each nullifier
    once.

    Candidate roots: the block Merkle root travels among random padding
    roots so an observer cannot tell which block holds the deposit.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

__version__ = "0.3.0"


# Lazy imports keep ``zkbridge --version`` and config commands light
def __getattr__(name):
    """Lazy import zkbridge modules on first access."""

    if name in ("parse_transaction", "Transaction", "TxOutput", "compute_txid", "strip_witness"):
        from zkbridge import txparser
        return getattr(txparser, name)

    if name in ("FieldElement", "compute_commitment", "compute_nullifier",
                "compute_locker_script_hash", "hash_to_field", "hash_to_int",
                "BN254_SCALAR_FIELD"):
        from zkbridge import commitment
        return getattr(commitment, name)

    if name in ("Deposit", "create_deposit", "load_deposit", "save_deposit",
                "build_deposit_transaction"):
        from zkbridge import deposit
        return getattr(deposit, name)

    if name in ("MerkleProof", "MerkleProofBundle", "WitnessVector", "build_witness",
                "check_witness"):
        from zkbridge import witness
        return getattr(witness, name)

    if name in ("Proof", "ProofOrchestrator", "MockProofBackend", "SnarkjsBackend",
                "create_backend"):
        from zkbridge import prover
        return getattr(prover, name)

    if name in ("ClaimVerifier", "ClaimEvent", "InMemoryMinter", "NullifierState"):
        from zkbridge import claim
        return getattr(claim, name)

    if name in ("MempoolSpaceProvider", "StaticProvider", "fetch_verified_transaction"):
        from zkbridge import provider
        return getattr(provider, name)

    if name in ("ClaimPipeline", "ClaimPackage"):
        from zkbridge import pipeline
        return getattr(pipeline, name)

    if name in ("get_config", "get_config_manager"):
        from zkbridge import config
        return getattr(config, name)

    raise AttributeError(f"module 'zkbridge' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Parser
    "parse_transaction",
    "Transaction",
    "TxOutput",
    "compute_txid",
    "strip_witness",
    # Commitments
    "FieldElement",
    "compute_commitment",
    "compute_nullifier",
    "compute_locker_script_hash",
    "hash_to_field",
    "hash_to_int",
    "BN254_SCALAR_FIELD",
    # Deposits
    "Deposit",
    "create_deposit",
    "load_deposit",
    "save_deposit",
    "build_deposit_transaction",
    # Witness
    "MerkleProof",
    "MerkleProofBundle",
    "WitnessVector",
    "build_witness",
    "check_witness",
    # Proofs
    "Proof",
    "ProofOrchestrator",
    "MockProofBackend",
    "SnarkjsBackend",
    "create_backend",
    # Claims
    "ClaimVerifier",
    "ClaimEvent",
    "InMemoryMinter",
    "NullifierState",
    # Providers and pipeline
    "MempoolSpaceProvider",
    "StaticProvider",
    "fetch_verified_transaction",
    "ClaimPipeline",
    "ClaimPackage",
    # Config
    "get_config",
    "get_config_manager",
]
