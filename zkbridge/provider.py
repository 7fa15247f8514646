"""
ZKBRIDGE Block-Data Providers

Source of raw deposit transactions and Merkle inclusion proofs.

    BlockDataProvider      protocol: fetch_transaction / fetch_merkle_proof
    MempoolSpaceProvider   Esplora HTTP API (mempool.space, blockstream.info)
    StaticProvider         in-memory, for tests and offline runs

Transient failures (network errors, timeouts, HTTP 429/5xx) surface as
``ProviderUnavailable`` and are retried with exponential backoff behind a
circuit breaker. Everything else, including a transaction that does not
hash to its requested id, is a hard error and is never retried.

All hashes returned by providers are display order.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import json
import socket
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Union

from zkbridge.config import ProviderConfig
from zkbridge.hardening import (
    CryptoUtils,
    HashMismatch,
    ProviderError,
    ProviderUnavailable,
    SchemaValidationError,
    Validators,
)
from zkbridge.observability import BridgeLayer, get_logger
from zkbridge.resilience import CircuitBreaker, RetryPolicy
from zkbridge.schema import require_valid
from zkbridge.txparser import Transaction, compute_txid, parse_transaction
from zkbridge.witness import MerkleProof


logger = get_logger("provider", BridgeLayer.PROVIDER)

USER_AGENT = "zkbridge/0.3"


class BlockDataProvider(Protocol):
    """Block-data collaborator."""

    def fetch_transaction(self, txid: str) -> bytes:
        """Raw transaction bytes for a display-order txid."""
        ...

    def fetch_merkle_proof(self, txid: str) -> MerkleProof:
        """Inclusion proof (display-order siblings and root)."""
        ...


def _check_txid(txid: str) -> str:
    return Validators.validate_txid(txid).raise_if_invalid(ProviderError)


# =============================================================================
# ESPLORA HTTP PROVIDER
# =============================================================================

class MempoolSpaceProvider:
    """
    Esplora API client.

    Endpoints used:
        GET /tx/{txid}/hex            raw transaction hex
        GET /tx/{txid}                status.confirmed, status.block_hash
        GET /tx/{txid}/merkle-proof   {block_height, merkle, pos}
        GET /block/{hash}             merkle_root
    """

    def __init__(
        self,
        base_url: str = "https://mempool.space/api",
        timeout_seconds: float = 15.0,
        retry_policy: Optional[RetryPolicy] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        opener: Optional[Callable[..., Any]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=4,
            base_delay_seconds=0.5,
            retryable_exceptions=(ProviderUnavailable,),
            non_retryable_exceptions=(HashMismatch, SchemaValidationError),
            on_retry=self._log_retry,
        )
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            "esplora",
            failure_threshold=5,
            timeout_seconds=30.0,
            included_exceptions=(ProviderUnavailable,),
        )
        self._open = opener or urllib.request.urlopen

    @classmethod
    def from_config(cls, config: ProviderConfig) -> "MempoolSpaceProvider":
        provider = cls(base_url=config.base_url.get(), timeout_seconds=config.timeout_seconds.get())
        provider.retry_policy = RetryPolicy(
            max_attempts=config.max_attempts.get(),
            base_delay_seconds=config.base_delay_seconds.get(),
            retryable_exceptions=(ProviderUnavailable,),
            non_retryable_exceptions=(HashMismatch, SchemaValidationError),
            on_retry=provider._log_retry,
        )
        return provider

    def _log_retry(self, attempt: int, exc: Exception, delay: float) -> None:
        logger.warning(
            f"Provider request failed, retrying in {delay:.2f}s",
            operation="provider_retry",
            attempt=attempt,
            error=str(exc),
        )

    def _get_once(self, path: str) -> bytes:
        url = f"{self.base_url}{path}"
        request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
        with self.circuit_breaker:
            try:
                with self._open(request, timeout=self.timeout_seconds) as resp:
                    return resp.read()
            except urllib.error.HTTPError as e:
                if e.code == 429 or e.code >= 500:
                    raise ProviderUnavailable(f"HTTP {e.code} from {url}", status=e.code) from e
                raise ProviderError(f"HTTP {e.code} from {url}", status=e.code) from e
            except (urllib.error.URLError, socket.timeout, TimeoutError, ConnectionError) as e:
                raise ProviderUnavailable(f"Request to {url} failed: {e}") from e

    def _get(self, path: str) -> bytes:
        return self.retry_policy.execute(lambda: self._get_once(path))

    def _get_json(self, path: str) -> Any:
        body = self._get(path)
        try:
            return json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ProviderError(f"Invalid JSON from {path}: {e}") from e

    def fetch_transaction(self, txid: str) -> bytes:
        txid = _check_txid(txid)
        text = self._get(f"/tx/{txid}/hex").decode("ascii", errors="replace").strip()
        try:
            raw = bytes.fromhex(text)
        except ValueError as e:
            raise ProviderError(f"Provider returned non-hex transaction for {txid}") from e
        logger.debug("Fetched transaction", operation="fetch_transaction", txid=txid, size=len(raw))
        return raw

    def fetch_merkle_proof(self, txid: str) -> MerkleProof:
        txid = _check_txid(txid)
        status = self._get_json(f"/tx/{txid}").get("status", {})
        if not status.get("confirmed"):
            raise ProviderError(f"Transaction {txid} is not confirmed yet", txid=txid)

        payload = require_valid(self._get_json(f"/tx/{txid}/merkle-proof"), "merkle-proof")
        block = self._get_json(f"/block/{status['block_hash']}")
        root = Validators.validate_txid(block.get("merkle_root"), "merkle_root").raise_if_invalid(ProviderError)

        proof = MerkleProof(
            siblings=tuple(payload["merkle"]),
            index=payload["pos"],
            root=root,
            block_height=payload["block_height"],
        )
        logger.debug(
            "Fetched merkle proof",
            operation="fetch_merkle_proof",
            txid=txid,
            depth=len(proof.siblings),
            block_height=proof.block_height,
        )
        return proof


# =============================================================================
# IN-MEMORY PROVIDER
# =============================================================================

def build_merkle_proof(txids: Sequence[str], index: int, block_height: int = 0) -> MerkleProof:
    """
    Inclusion proof for ``txids[index]`` in a block with these display-order
    txids, using Bitcoin's tree (odd levels duplicate their last node).
    """
    if not 0 <= index < len(txids):
        raise ProviderError(f"Index {index} outside block of {len(txids)} transactions")
    level = [CryptoUtils.reverse_bytes(bytes.fromhex(t)) for t in txids]
    position = index
    siblings: List[str] = []
    while len(level) > 1:
        if len(level) % 2:
            level.append(level[-1])
        siblings.append(CryptoUtils.reverse_bytes(level[position ^ 1]).hex())
        level = [CryptoUtils.double_sha256(level[i] + level[i + 1]) for i in range(0, len(level), 2)]
        position //= 2
    return MerkleProof(
        siblings=tuple(siblings),
        index=index,
        root=CryptoUtils.reverse_bytes(level[0]).hex(),
        block_height=block_height,
    )


class StaticProvider:
    """Provider over transactions and proofs held in memory."""

    def __init__(self):
        self._transactions: Dict[str, bytes] = {}
        self._proofs: Dict[str, MerkleProof] = {}

    def add_transaction(self, raw: bytes, proof: Optional[MerkleProof] = None, txid: Optional[str] = None) -> str:
        txid = txid or compute_txid(raw)
        self._transactions[txid] = raw
        if proof is not None:
            self._proofs[txid] = proof
        return txid

    def add_block(self, transactions: Sequence[bytes], block_height: int = 0) -> List[str]:
        """Register every transaction of a block with a computed inclusion proof."""
        txids = [compute_txid(raw) for raw in transactions]
        for i, raw in enumerate(transactions):
            self.add_transaction(raw, build_merkle_proof(txids, i, block_height), txids[i])
        return txids

    def fetch_transaction(self, txid: str) -> bytes:
        txid = _check_txid(txid)
        if txid not in self._transactions:
            raise ProviderError(f"Unknown transaction {txid}", txid=txid)
        return self._transactions[txid]

    def fetch_merkle_proof(self, txid: str) -> MerkleProof:
        txid = _check_txid(txid)
        if txid not in self._proofs:
            raise ProviderError(f"No merkle proof for {txid}", txid=txid)
        return self._proofs[txid]


def fetch_verified_transaction(
    provider: BlockDataProvider,
    txid: str,
    locker: Union[bytes, str],
) -> Transaction:
    """Fetch and parse, requiring the bytes to hash to ``txid``."""
    return parse_transaction(provider.fetch_transaction(txid), locker, expected_txid=txid)
