import logging
import os
import pathlib
import sys
import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import zkbridge`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from zkbridge.config import ConfigManager  # noqa: E402
from zkbridge.deposit import build_deposit_transaction, build_transaction_for_deposit, create_deposit  # noqa: E402
from zkbridge.observability import ROOT_LOGGER_NAME, StructuredHandler  # noqa: E402
from zkbridge.provider import StaticProvider  # noqa: E402


LOCKER_H160 = bytes(range(20))
LOCKER_SCRIPT = bytes.fromhex("76a914") + LOCKER_H160 + bytes.fromhex("88ac")
RECIPIENT = "0x" + "11" * 20
CHAIN_ID = 137
AMOUNT = 100_000
ZERO_SECRET = b"\x00" * 32


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "snarkjs: needs node, snarkjs and a compiled circuit (skipped unless ZKBRIDGE_RUN_SNARKJS=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_snarkjs = _env_flag('ZKBRIDGE_RUN_SNARKJS')

    for item in items:
        if 'snarkjs' in item.keywords and not run_snarkjs:
            item.add_marker(pytest.mark.skip(reason='snarkjs tests skipped; set ZKBRIDGE_RUN_SNARKJS=1 to enable'))


@pytest.fixture(autouse=True)
def _fresh_config():
    ConfigManager.reset()
    yield
    ConfigManager.reset()
    # CLI runs bind a handler to the captured stderr of their test
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        if isinstance(handler, StructuredHandler):
            root.removeHandler(handler)


def filler_transaction(n: int) -> bytes:
    """A valid unrelated transaction, distinct per ``n``."""
    return build_deposit_transaction(
        locker_script=bytes.fromhex("0014") + bytes([n]) * 20,
        amount=1_000 + n,
        commitment=bytes([n]) * 32,
        prev_txid=bytes([0xAA, n]) + b"\x00" * 30,
    )


@pytest.fixture
def deposit():
    return create_deposit(AMOUNT, CHAIN_ID, RECIPIENT, LOCKER_SCRIPT, secret=ZERO_SECRET)


@pytest.fixture
def deposit_tx(deposit):
    return build_transaction_for_deposit(deposit)


@pytest.fixture
def block(deposit_tx):
    """Five-transaction block with the deposit at index 2, and a provider serving it."""
    transactions = [filler_transaction(i) for i in range(4)]
    transactions.insert(2, deposit_tx)
    provider = StaticProvider()
    txids = provider.add_block(transactions, block_height=840_000)
    return provider, txids


@pytest.fixture
def provider(block):
    return block[0]


@pytest.fixture
def deposit_txid(block):
    return block[1][2]
