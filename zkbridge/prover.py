"""
ZKBRIDGE Proof Orchestration

Thin boundary around the external Groth16 proof system. The orchestrator
hands a ``WitnessVector`` to a backend and returns ``(proof, signals)``,
where ``signals`` is in exactly the order the claim verifier assembles:

    [candidate_roots..., nullifier, amount, chain_id, recipient, locker_script_hash]

Backends:
    - MockProofBackend: evaluates the claim relation in Python and issues a
      deterministic proof bound to the public signals. NOT
      CRYPTOGRAPHICALLY SECURE - for testing and dry runs only.
    - SnarkjsBackend: runs the compiled circuit's witness generator and
      ``snarkjs groth16 prove|verify`` as subprocesses.

Proof generation is blocking and can take seconds; run it off any
interactive path.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import hashlib
import json
import shlex
import subprocess
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from zkbridge.commitment import BN254_SCALAR_FIELD
from zkbridge.config import ProverConfig
from zkbridge.core import canonical_json_bytes, sha256_hex
from zkbridge.hardening import CryptoUtils, ProofGenerationFailed
from zkbridge.observability import BridgeLayer, get_logger, timed_operation
from zkbridge.witness import WitnessVector, check_witness


logger = get_logger("prover", BridgeLayer.PROVER)


# =============================================================================
# PROOF
# =============================================================================

@dataclass(frozen=True)
class Proof:
    """
    A Groth16 proof in snarkjs JSON form (decimal string coordinates).

    The proof demonstrates knowledge of a witness satisfying the claim
    circuit for a given public signal vector, without revealing it.
    """
    pi_a: Tuple[str, ...]
    pi_b: Tuple[Tuple[str, ...], ...]
    pi_c: Tuple[str, ...]
    protocol: str = "groth16"
    curve: str = "bn128"
    generated_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(),
        compare=False,
    )

    @property
    def digest(self) -> str:
        """Content-addressed identifier for the proof."""
        return sha256_hex(canonical_json_bytes(self.to_dict()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pi_a": list(self.pi_a),
            "pi_b": [list(p) for p in self.pi_b],
            "pi_c": list(self.pi_c),
            "protocol": self.protocol,
            "curve": self.curve,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Proof':
        return cls(
            pi_a=tuple(str(x) for x in data["pi_a"]),
            pi_b=tuple(tuple(str(x) for x in p) for p in data["pi_b"]),
            pi_c=tuple(str(x) for x in data["pi_c"]),
            protocol=data.get("protocol", "groth16"),
            curve=data.get("curve", "bn128"),
        )


# =============================================================================
# BACKEND PROTOCOLS
# =============================================================================

class ProofVerifier(Protocol):
    """Verification primitive as seen by the claim verifier."""

    def verify(self, proof: Proof, public_signals: Sequence[int]) -> bool:
        ...


class ProofBackend(ProofVerifier, Protocol):
    """Full proof primitive."""

    def prove(self, witness: WitnessVector) -> Tuple[Proof, List[int]]:
        ...


class MockProofBackend:
    """
    Mock Groth16 backend for testing.

    ``prove`` refuses witnesses that violate the claim relation, then
    derives curve-point-shaped values from a keyed hash of the public
    signals. ``verify`` recomputes them, so a proof only verifies against
    the exact signal vector it was generated for.
    NOT CRYPTOGRAPHICALLY SECURE - for testing only.
    """

    def __init__(self, key: bytes = b"zkbridge-mock-groth16"):
        self._key = key

    def _binding(self, signals: Sequence[int]) -> bytes:
        words = b"".join(int(s).to_bytes(32, "big") for s in signals)
        return hashlib.sha256(self._key + len(signals).to_bytes(2, "big") + words).digest()

    def _element(self, binding: bytes, label: str) -> str:
        value = int.from_bytes(hashlib.sha256(binding + label.encode()).digest(), "big")
        return str(value % BN254_SCALAR_FIELD)

    def _proof_for(self, signals: Sequence[int]) -> Proof:
        b = self._binding(signals)
        return Proof(
            pi_a=(self._element(b, "a0"), self._element(b, "a1"), "1"),
            pi_b=(
                (self._element(b, "b00"), self._element(b, "b01")),
                (self._element(b, "b10"), self._element(b, "b11")),
                ("1", "0"),
            ),
            pi_c=(self._element(b, "c0"), self._element(b, "c1"), "1"),
        )

    def prove(self, witness: WitnessVector) -> Tuple[Proof, List[int]]:
        violations = check_witness(witness)
        if violations:
            raise ProofGenerationFailed(
                f"Witness does not satisfy the claim circuit: {violations[0]}",
                violations=violations,
            )
        signals = witness.public_signals()
        return self._proof_for(signals), signals

    def verify(self, proof: Proof, public_signals: Sequence[int]) -> bool:
        if any(not 0 <= int(s) < BN254_SCALAR_FIELD for s in public_signals):
            return False
        expected = self._proof_for(public_signals)
        return CryptoUtils.secure_compare(expected.digest.encode(), proof.digest.encode())


class SnarkjsBackend:
    """
    Groth16 via the circom witness generator and snarkjs.

    ``build_dir`` must contain ``main_js/generate_witness.js``,
    ``main_js/main.wasm``, ``circuit_final.zkey`` and
    ``verification_key.json``. Intermediate files live in a temporary
    directory that is removed whether or not the run succeeds.
    """

    def __init__(
        self,
        build_dir: Path,
        snarkjs_command: str = "npx snarkjs",
        node_command: str = "node",
        timeout_seconds: int = 600,
    ):
        self.build_dir = Path(build_dir)
        self.snarkjs = shlex.split(snarkjs_command)
        self.node = shlex.split(node_command)
        self.timeout_seconds = timeout_seconds

    @property
    def zkey_path(self) -> Path:
        return self.build_dir / "circuit_final.zkey"

    @property
    def verification_key_path(self) -> Path:
        return self.build_dir / "verification_key.json"

    def _run(self, args: List[str]) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ProofGenerationFailed(f"Could not run {args[0]}: {e}", command=" ".join(args)) from e

    def prove(self, witness: WitnessVector) -> Tuple[Proof, List[int]]:
        wasm_dir = self.build_dir / "main_js"
        with tempfile.TemporaryDirectory(prefix="zkbridge-prove-") as tmp:
            work = Path(tmp)
            input_path = work / "input.json"
            witness_path = work / "witness.wtns"
            proof_path = work / "proof.json"
            public_path = work / "public.json"
            input_path.write_text(json.dumps(witness.to_circuit_input()), encoding="utf-8")

            result = self._run(self.node + [
                str(wasm_dir / "generate_witness.js"),
                str(wasm_dir / "main.wasm"),
                str(input_path),
                str(witness_path),
            ])
            if result.returncode != 0:
                raise ProofGenerationFailed("Witness calculation failed", stderr=result.stderr.strip())

            result = self._run(self.snarkjs + [
                "groth16", "prove",
                str(self.zkey_path), str(witness_path), str(proof_path), str(public_path),
            ])
            if result.returncode != 0:
                raise ProofGenerationFailed("snarkjs groth16 prove failed", stderr=result.stderr.strip())

            proof = Proof.from_dict(json.loads(proof_path.read_text(encoding="utf-8")))
            signals = [int(s) for s in json.loads(public_path.read_text(encoding="utf-8"))]
        return proof, signals

    def verify(self, proof: Proof, public_signals: Sequence[int]) -> bool:
        with tempfile.TemporaryDirectory(prefix="zkbridge-verify-") as tmp:
            work = Path(tmp)
            proof_path = work / "proof.json"
            public_path = work / "public.json"
            proof_path.write_text(json.dumps(proof.to_dict()), encoding="utf-8")
            public_path.write_text(json.dumps([str(s) for s in public_signals]), encoding="utf-8")
            result = self._run(self.snarkjs + [
                "groth16", "verify",
                str(self.verification_key_path), str(public_path), str(proof_path),
            ])
        return result.returncode == 0 and "OK" in result.stdout


def create_backend(config: ProverConfig) -> ProofBackend:
    """Backend selected by ``prover.backend``."""
    if config.backend.get() == "snarkjs":
        return SnarkjsBackend(
            build_dir=Path(config.build_dir.get()),
            snarkjs_command=config.snarkjs_command.get(),
            node_command=config.node_command.get(),
            timeout_seconds=config.timeout_seconds.get(),
        )
    return MockProofBackend()


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class ProofOrchestrator:
    """
    Invokes the proof primitive and guards the public-signal ordering.

    ``verifier`` defaults to the backend itself; pass a separate one to
    check proofs against a different verification key holder.
    """

    def __init__(self, backend: ProofBackend, verifier: Optional[ProofVerifier] = None):
        self.backend = backend
        self.verifier = verifier or backend

    @timed_operation(logger, "prove")
    def prove(self, witness: WitnessVector) -> Tuple[Proof, List[int]]:
        proof, signals = self.backend.prove(witness)
        expected = witness.public_signals()
        if [int(s) for s in signals] != expected:
            raise ProofGenerationFailed(
                "Backend public signals differ from the witness public inputs",
                expected=expected,
                received=list(signals),
            )
        logger.info("Proof generated", operation="prove", proof_digest=proof.digest, txid=witness.txid)
        return proof, expected

    @timed_operation(logger, "verify")
    def verify(self, proof: Proof, public_signals: Sequence[int]) -> bool:
        return bool(self.verifier.verify(proof, [int(s) for s in public_signals]))
