"""
ZKBRIDGE Off-Chain Claim Pipeline

Ties the off-chain components together for one deposit:

    provider ──► parse_transaction ──► build_witness ──► prove ──► ClaimPackage
                 (expected txid)        (hidden root)     verify

Every step raises on the first problem. Artifacts are written only after
the whole pipeline succeeded, and atomically.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from zkbridge.claim import ClaimEvent, ClaimVerifier
from zkbridge.config import CircuitParameters
from zkbridge.core import load_json, write_json_atomic
from zkbridge.deposit import Deposit
from zkbridge.hardening import ProofGenerationFailed
from zkbridge.observability import (
    BridgeLayer,
    correlation_id_var,
    generate_correlation_id,
    get_logger,
    timed_operation,
)
from zkbridge.prover import Proof, ProofOrchestrator
from zkbridge.provider import BlockDataProvider, fetch_verified_transaction
from zkbridge.schema import require_valid
from zkbridge.witness import DEFAULT_PARAMETERS, WitnessVector, build_witness


logger = get_logger("pipeline", BridgeLayer.PIPELINE)


@dataclass(frozen=True)
class ClaimPackage:
    """Everything a claimant submits, in claim-call order."""
    txid: str
    proof: Proof
    public_signals: Tuple[int, ...]
    candidate_roots: Tuple[int, ...]
    display_roots: Tuple[str, ...]
    nullifier: int
    amount: int
    recipient: str
    locker_script_hash: int
    block_height: int = 0

    @classmethod
    def from_witness(cls, witness: WitnessVector, proof: Proof, signals: List[int]) -> 'ClaimPackage':
        return cls(
            txid=witness.txid,
            proof=proof,
            public_signals=tuple(signals),
            candidate_roots=tuple(r.to_int() for r in witness.candidate_roots),
            display_roots=witness.merkle.display_roots,
            nullifier=witness.nullifier,
            amount=witness.amount,
            recipient="0x" + witness.recipient.to_bytes(20, "big").hex(),
            locker_script_hash=witness.locker_script_hash,
            block_height=witness.merkle.block_height,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "txid": self.txid,
            "block_height": self.block_height,
            "proof": self.proof.to_dict(),
            "public_signals": [str(s) for s in self.public_signals],
            "claim": {
                "candidate_roots": [str(r) for r in self.candidate_roots],
                "display_roots": list(self.display_roots),
                "nullifier": str(self.nullifier),
                "amount": self.amount,
                "recipient": self.recipient,
                "locker_script_hash": str(self.locker_script_hash),
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ClaimPackage':
        require_valid(data, "claim-package")
        claim = data["claim"]
        return cls(
            txid=data["txid"],
            proof=Proof.from_dict(data["proof"]),
            public_signals=tuple(int(s) for s in data["public_signals"]),
            candidate_roots=tuple(int(r) for r in claim["candidate_roots"]),
            display_roots=tuple(claim["display_roots"]),
            nullifier=int(claim["nullifier"]),
            amount=claim["amount"],
            recipient=claim["recipient"],
            locker_script_hash=int(claim["locker_script_hash"]),
            block_height=data.get("block_height", 0),
        )

    def submit(self, verifier: ClaimVerifier, display: bool = False) -> ClaimEvent:
        """Present this package to a claim verifier."""
        if display:
            return verifier.claim_with_display_roots(
                self.proof, self.display_roots, self.nullifier,
                self.amount, self.recipient, self.locker_script_hash,
            )
        return verifier.claim(
            self.proof, self.candidate_roots, self.nullifier,
            self.amount, self.recipient, self.locker_script_hash,
        )


class ClaimPipeline:
    """Fetch, parse, build and prove for one deposit at a time."""

    def __init__(
        self,
        provider: BlockDataProvider,
        orchestrator: ProofOrchestrator,
        params: CircuitParameters = DEFAULT_PARAMETERS,
        root_index: Optional[int] = None,
    ):
        self.provider = provider
        self.orchestrator = orchestrator
        self.params = params
        self.root_index = root_index

    @timed_operation(logger, "prepare")
    def prepare(self, deposit: Deposit, txid: str) -> WitnessVector:
        transaction = fetch_verified_transaction(self.provider, txid, deposit.locker_script)
        merkle_proof = self.provider.fetch_merkle_proof(transaction.txid)
        return build_witness(deposit, transaction, merkle_proof, self.params, self.root_index)

    def generate(self, deposit: Deposit, txid: str) -> ClaimPackage:
        token = correlation_id_var.set(generate_correlation_id())
        try:
            witness = self.prepare(deposit, txid)
            proof, signals = self.orchestrator.prove(witness)
            if not self.orchestrator.verify(proof, signals):
                raise ProofGenerationFailed("Generated proof does not verify locally", txid=witness.txid)
            package = ClaimPackage.from_witness(witness, proof, signals)
            logger.info(
                "Claim package ready",
                operation="generate",
                txid=package.txid,
                proof_digest=proof.digest,
            )
            return package
        finally:
            correlation_id_var.reset(token)


def write_package(package: ClaimPackage, path: Union[str, Path]) -> Path:
    return write_json_atomic(path, require_valid(package.to_dict(), "claim-package"))


def load_package(path: Union[str, Path]) -> ClaimPackage:
    return ClaimPackage.from_dict(load_json(path))


def write_circuit_input(witness: WitnessVector, path: Union[str, Path]) -> Path:
    """Circuit input JSON for external provers."""
    return write_json_atomic(path, witness.to_circuit_input(), indent=None)
