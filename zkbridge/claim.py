"""
ZKBRIDGE Claim Verifier

Destination-ledger state machine. A claim presents a proof together with
its public parameters; the verifier checks them, consumes the nullifier
exactly once and mints the wrapped asset.

Check order (first failure wins, nothing is mutated on rejection):

    1. amount == 0 or recipient == 0x00..00   -> ZeroAmountOrRecipient
    2. nullifier Used or Pending              -> AlreadyClaimed
    3. locker script hash not registered      -> UnregisteredLocker
    4. proof rejected for the signal vector   -> InvalidProof

    signals = [candidate_roots..., nullifier, amount,
               destination_chain_id, recipient, locker_script_hash]

Passing all four reserves the nullifier (Unused -> Pending) and calls the
minter. A successful mint commits: Pending -> Used, counters, claim event
and audit entry. A failing mint releases the reservation (Pending ->
Unused) and raises MintFailed; counters are never touched, so no observer
sees a claim that is later undone.

Concurrency:
    The checks with the reservation, and the commit, each run under the
    verifier lock. The mint runs outside it. A claim on a pending
    nullifier is AlreadyClaimed, so racing claims yield one success at
    most. Calling ``claim`` from within the mint callback on the same
    thread raises ReentrantClaim; a nested claim made from another thread
    does not block and sees the reservation.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set, Tuple, Union

from zkbridge.core import canonical_json_bytes, sha256_hex
from zkbridge.commitment import (
    RECIPIENT_BYTES,
    compute_locker_script_hash,
    hash_to_field,
    is_field_element,
)
from zkbridge.hardening import (
    AlreadyClaimed,
    AtomicCounter,
    CryptoUtils,
    InvalidClaimInput,
    InvalidProof,
    InvariantChecker,
    MintFailed,
    ReentrantClaim,
    ThreadSafeDict,
    Unauthorized,
    UnregisteredLocker,
    Validators,
    ZeroAmountOrRecipient,
)
from zkbridge.observability import BridgeLayer, ClaimAuditLog, get_logger
from zkbridge.prover import Proof, ProofVerifier


logger = get_logger("verifier", BridgeLayer.CLAIM)


# =============================================================================
# NULLIFIER STATE
# =============================================================================

class NullifierState(Enum):
    UNUSED = "unused"
    PENDING = "pending"  # reserved while the mint runs
    USED = "used"


NULLIFIER_TRANSITIONS: Dict[Enum, Set[Enum]] = {
    NullifierState.UNUSED: {NullifierState.PENDING, NullifierState.USED},
    NullifierState.PENDING: {NullifierState.USED, NullifierState.UNUSED},
    NullifierState.USED: set(),
}


class NullifierSet:
    """
    Per-nullifier state: Unused -> Pending -> Used, with Pending -> Unused
    when a mint fails. Used is terminal.

    Not synchronized; the owning verifier serializes access with its lock.
    """

    def __init__(self):
        self._states: Dict[int, NullifierState] = {}
        self._used_at: Dict[int, str] = {}

    def state(self, nullifier: int) -> NullifierState:
        return self._states.get(nullifier, NullifierState.UNUSED)

    def is_used(self, nullifier: int) -> bool:
        return self.state(nullifier) is NullifierState.USED

    def is_taken(self, nullifier: int) -> bool:
        """Used, or reserved by a claim that is still minting."""
        return self.state(nullifier) is not NullifierState.UNUSED

    def _move(self, nullifier: int, target: NullifierState) -> None:
        InvariantChecker.check_state_transition(self.state(nullifier), target, NULLIFIER_TRANSITIONS)
        if target is NullifierState.UNUSED:
            del self._states[nullifier]
        else:
            self._states[nullifier] = target

    def reserve(self, nullifier: int) -> None:
        self._move(nullifier, NullifierState.PENDING)

    def mark_used(self, nullifier: int) -> None:
        self._move(nullifier, NullifierState.USED)
        self._used_at[nullifier] = datetime.now(timezone.utc).isoformat()

    def release(self, nullifier: int) -> None:
        self._move(nullifier, NullifierState.UNUSED)

    def __len__(self) -> int:
        return len(self._used_at)


class LockerRegistry:
    """Locker script hash -> script bytes."""

    def __init__(self):
        self._scripts: ThreadSafeDict[bytes] = ThreadSafeDict()

    def register(self, script: bytes) -> int:
        script_hash = compute_locker_script_hash(script)
        self._scripts[script_hash] = bytes(script)
        return script_hash

    def remove(self, script_hash: int) -> bytes:
        script = self._scripts.pop(script_hash, None)
        if script is None:
            raise UnregisteredLocker("Locker script hash not registered", locker_script_hash=script_hash)
        return script

    def get(self, script_hash: int) -> Optional[bytes]:
        return self._scripts.get(script_hash)

    def __contains__(self, script_hash: object) -> bool:
        return script_hash in self._scripts

    def __len__(self) -> int:
        return len(self._scripts)


# =============================================================================
# EVENTS AND MINTING
# =============================================================================

@dataclass(frozen=True)
class ClaimEvent:
    """Emitted once per accepted claim."""
    sequence: int
    nullifier: int
    recipient: str
    amount: int
    locker_script_hash: int
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["nullifier"] = str(self.nullifier)
        d["locker_script_hash"] = str(self.locker_script_hash)
        return d

    @property
    def digest(self) -> str:
        return sha256_hex(canonical_json_bytes(self.to_dict()))


class Minter(Protocol):
    """Ledger collaborator that issues the wrapped asset."""

    def mint(self, locker_script: bytes, recipient: bytes, amount: int) -> bool:
        ...


class InMemoryMinter:
    """Per-recipient balances held in memory. ``fail`` makes every mint return False."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.balances: Dict[str, int] = {}
        self.calls: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def mint(self, locker_script: bytes, recipient: bytes, amount: int) -> bool:
        with self._lock:
            self.calls.append({
                "locker_script": locker_script.hex(),
                "recipient": "0x" + recipient.hex(),
                "amount": amount,
            })
            if self.fail:
                return False
            key = "0x" + recipient.hex()
            self.balances[key] = self.balances.get(key, 0) + amount
            return True

    def balance_of(self, recipient: Union[bytes, str]) -> int:
        address = Validators.validate_address(recipient).raise_if_invalid(InvalidClaimInput)
        with self._lock:
            return self.balances.get("0x" + address.hex(), 0)


# =============================================================================
# CLAIM VERIFIER
# =============================================================================

def _recipient_bytes(recipient: Union[bytes, str, int]) -> bytes:
    if isinstance(recipient, int) and not isinstance(recipient, bool):
        if not 0 <= recipient < 1 << (8 * RECIPIENT_BYTES):
            raise InvalidClaimInput("Recipient does not fit in 20 bytes", recipient=recipient)
        return recipient.to_bytes(RECIPIENT_BYTES, "big")
    return Validators.validate_address(recipient).raise_if_invalid(InvalidClaimInput)


class ClaimVerifier:
    """
    Claim-side ledger state.

    Owns the locker registry, the nullifier set, aggregate counters and the
    event log. ``owner`` is the only identity allowed to call the
    administrative operations.
    """

    def __init__(
        self,
        verifier: ProofVerifier,
        minter: Minter,
        destination_chain_id: int,
        owner: str,
        root_slots: int = 2,
    ):
        Validators.validate_uint(
            destination_chain_id, "destination_chain_id", Validators.UINT16_MAX
        ).raise_if_invalid(InvalidClaimInput)
        self._verifier = verifier
        self._minter = minter
        self.destination_chain_id = destination_chain_id
        self._owner = owner
        self.root_slots = root_slots

        self._lockers = LockerRegistry()
        self._nullifiers = NullifierSet()
        self._claims = AtomicCounter()
        self._amount = AtomicCounter()
        self._events: List[ClaimEvent] = []
        self._audit = ClaimAuditLog(logger)

        self._lock = threading.Lock()
        self._local = threading.local()

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def audit_log(self) -> ClaimAuditLog:
        return self._audit

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    def _require_owner(self, caller: str, action: str) -> None:
        if caller != self._owner:
            self._audit.log(caller, action, "verifier", "denied")
            raise Unauthorized(f"{caller} may not {action}", caller=caller)

    def register_locker(self, caller: str, script: Union[bytes, str]) -> int:
        self._require_owner(caller, "register_locker")
        script_bytes = Validators.validate_hex_bytes(script, "locker_script").raise_if_invalid(InvalidClaimInput)
        with self._lock:
            script_hash = self._lockers.register(script_bytes)
        self._audit.log(caller, "register_locker", str(script_hash), "success", script=script_bytes.hex())
        return script_hash

    def remove_locker(self, caller: str, script_hash: int) -> None:
        self._require_owner(caller, "remove_locker")
        with self._lock:
            self._lockers.remove(script_hash)
        self._audit.log(caller, "remove_locker", str(script_hash), "success")

    def set_verifier(self, caller: str, verifier: ProofVerifier) -> None:
        self._require_owner(caller, "set_verifier")
        with self._lock:
            self._verifier = verifier
        self._audit.log(caller, "set_verifier", type(verifier).__name__, "success")

    def set_minter(self, caller: str, minter: Minter) -> None:
        self._require_owner(caller, "set_minter")
        with self._lock:
            self._minter = minter
        self._audit.log(caller, "set_minter", type(minter).__name__, "success")

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self._require_owner(caller, "transfer_ownership")
        if not new_owner:
            raise InvalidClaimInput("New owner must be non-empty")
        with self._lock:
            self._owner = new_owner
        self._audit.log(caller, "transfer_ownership", new_owner, "success")

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def is_locker_registered(self, script_hash: int) -> bool:
        return script_hash in self._lockers

    def get_locker_script(self, script_hash: int) -> Optional[bytes]:
        return self._lockers.get(script_hash)

    def is_nullifier_used(self, nullifier: int) -> bool:
        with self._lock:
            return self._nullifiers.is_used(nullifier)

    def total_claims(self) -> int:
        return self._claims.get()

    def total_amount_claimed(self) -> int:
        return self._amount.get()

    def events(self) -> List[ClaimEvent]:
        with self._lock:
            return list(self._events)

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "total_claims": self._claims.get(),
                "total_amount_claimed": self._amount.get(),
                "nullifiers_used": len(self._nullifiers),
                "registered_lockers": len(self._lockers),
                "destination_chain_id": self.destination_chain_id,
                "audit_events": len(self._audit),
            }

    # -------------------------------------------------------------------------
    # Claim
    # -------------------------------------------------------------------------

    def _validate_inputs(
        self,
        candidate_roots: Sequence[int],
        nullifier: int,
        amount: int,
        locker_script_hash: int,
    ) -> List[int]:
        roots = list(candidate_roots)
        if len(roots) != self.root_slots:
            raise InvalidClaimInput(
                f"Expected {self.root_slots} candidate roots, got {len(roots)}",
            )
        named = [(f"candidate_roots[{i}]", r) for i, r in enumerate(roots)]
        named += [("nullifier", nullifier), ("locker_script_hash", locker_script_hash)]
        for name, value in named:
            if isinstance(value, bool) or not isinstance(value, int) or not is_field_element(value):
                raise InvalidClaimInput(f"{name} is not an element of the scalar field")
        Validators.validate_uint(amount, "amount", Validators.UINT64_MAX).raise_if_invalid(InvalidClaimInput)
        return roots

    def claim(
        self,
        proof: Proof,
        candidate_roots: Sequence[int],
        nullifier: int,
        amount: int,
        recipient: Union[bytes, str, int],
        locker_script_hash: int,
    ) -> ClaimEvent:
        """
        Redeem a deposit.

        ``candidate_roots`` are field elements in circuit form. Callers
        holding display-order block roots use ``claim_with_display_roots``.

        Raises:
            InvalidClaimInput, ZeroAmountOrRecipient, AlreadyClaimed,
            UnregisteredLocker, InvalidProof, MintFailed, ReentrantClaim
        """
        if getattr(self._local, "active", False):
            raise ReentrantClaim("claim called from within a claim", nullifier=nullifier)

        roots = self._validate_inputs(candidate_roots, nullifier, amount, locker_script_hash)
        recipient_bytes = _recipient_bytes(recipient)

        self._local.active = True
        try:
            with self._lock:
                locker_script, minter = self._reserve(proof, roots, nullifier, amount, recipient_bytes, locker_script_hash)
            # The lock is not held while minting; the reservation keeps the nullifier taken
            try:
                minted = minter.mint(locker_script, recipient_bytes, amount)
            except ReentrantClaim:
                self._release(nullifier)
                raise
            except Exception as e:
                self._release(nullifier)
                raise MintFailed(f"Mint raised: {e}", nullifier=nullifier) from e
            if not minted:
                self._release(nullifier)
                raise MintFailed("Mint reported failure", nullifier=nullifier)
            with self._lock:
                return self._commit(nullifier, amount, recipient_bytes, locker_script_hash)
        finally:
            self._local.active = False

    def _reserve(
        self,
        proof: Proof,
        roots: List[int],
        nullifier: int,
        amount: int,
        recipient: bytes,
        locker_script_hash: int,
    ) -> Tuple[bytes, Minter]:
        recipient_int = int.from_bytes(recipient, "big")
        if amount == 0 or recipient_int == 0:
            raise ZeroAmountOrRecipient("Amount and recipient must be non-zero", amount=amount)
        if self._nullifiers.is_taken(nullifier):
            raise AlreadyClaimed(
                "Nullifier already used",
                nullifier=nullifier,
                state=self._nullifiers.state(nullifier).value,
            )
        locker_script = self._lockers.get(locker_script_hash)
        if locker_script is None:
            raise UnregisteredLocker("Locker script hash not registered", locker_script_hash=locker_script_hash)

        signals = roots + [nullifier, amount, self.destination_chain_id, recipient_int, locker_script_hash]
        if not self._verifier.verify(proof, signals):
            logger.warning("Proof rejected", operation="claim", nullifier=str(nullifier))
            raise InvalidProof("Proof does not verify for the claim parameters", nullifier=nullifier)

        self._nullifiers.reserve(nullifier)
        return locker_script, self._minter

    def _release(self, nullifier: int) -> None:
        with self._lock:
            self._nullifiers.release(nullifier)
        logger.warning("Mint failed, nullifier released", operation="claim", nullifier=str(nullifier))

    def _commit(self, nullifier: int, amount: int, recipient: bytes, locker_script_hash: int) -> ClaimEvent:
        self._nullifiers.mark_used(nullifier)
        self._claims.increment()
        self._amount.increment(amount)

        event = ClaimEvent(
            sequence=len(self._events) + 1,
            nullifier=nullifier,
            recipient="0x" + recipient.hex(),
            amount=amount,
            locker_script_hash=locker_script_hash,
        )
        self._events.append(event)
        self._audit.log(
            "claimant",
            "claim",
            str(nullifier),
            "success",
            amount=amount,
            recipient=event.recipient,
            event_digest=event.digest,
        )
        logger.info(
            "Claim accepted",
            operation="claim",
            nullifier=str(nullifier),
            amount=amount,
            sequence=event.sequence,
        )
        return event
    def claim_with_display_roots(
        self,
        proof: Proof,
        display_roots: Sequence[Union[str, bytes]],
        nullifier: int,
        amount: int,
        recipient: Union[bytes, str, int],
        locker_script_hash: int,
    ) -> ClaimEvent:
        """``claim`` for roots given as display-order 32-byte hashes."""
        roots = []
        for i, root in enumerate(display_roots):
            raw = Validators.validate_hex_bytes(root, f"display_roots[{i}]", 32).raise_if_invalid(InvalidClaimInput)
            roots.append(hash_to_field(CryptoUtils.reverse_bytes(raw)))
        return self.claim(proof, roots, nullifier, amount, recipient, locker_script_hash)
