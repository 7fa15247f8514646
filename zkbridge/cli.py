#!/usr/bin/env python3
"""
ZKBRIDGE CLI

Command-line interface for the off-chain side of the deposit bridge.

Usage:
    zkbridge <command> <subcommand> [options]

Commands:
    deposit     Create deposit notes
    tx          Parse deposit transactions
    witness     Build circuit input for a confirmed deposit
    claim       Produce and check claim packages
    config      Configuration management

Transactions and inclusion proofs come from the configured Esplora
endpoint unless ``--tx-file`` (raw hex) and ``--merkle-proof`` (JSON) are
supplied, in which case nothing touches the network.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional, Union

import yaml

from zkbridge import __version__
from zkbridge.hardening import ZkBridgeError


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.YAML:
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    return json.dumps(data, indent=2, default=str)


def _read_hex_file(path: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8").strip()
    except OSError as e:
        raise CLIError(f"Cannot read {path}: {e}", exit_code=2) from e


class ZkBridgeCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="zkbridge",
            description="Privacy-preserving deposit bridge toolkit",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"zkbridge {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=["json", "yaml"],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error messages",
        )
        self.parser.add_argument("--config", "-c", help="YAML configuration file")

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        self._register_deposit_commands()
        self._register_tx_commands()
        self._register_witness_commands()
        self._register_claim_commands()
        self._register_config_commands()

    @staticmethod
    def _add_locker_arguments(parser: argparse.ArgumentParser) -> None:
        group = parser.add_mutually_exclusive_group(required=True)
        group.add_argument("--locker", help="Locker Bitcoin address")
        group.add_argument("--locker-script", help="Locker output script (hex)")

    @staticmethod
    def _add_source_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--txid", required=True, help="Display-order deposit txid")
        parser.add_argument("--tx-file", help="Raw transaction hex file (offline)")
        parser.add_argument("--merkle-proof", help="Merkle proof JSON file (offline)")
        parser.add_argument("--provider-url", help="Esplora API base URL")

    def _register_deposit_commands(self) -> None:
        deposit = self.subparsers.add_parser("deposit", help="Deposit notes")
        deposit_sub = deposit.add_subparsers(dest="subcommand")

        # deposit create
        create = deposit_sub.add_parser("create", help="Create a deposit note")
        create.add_argument("--amount", "-a", type=int, required=True, help="Amount in satoshis")
        create.add_argument("--recipient", "-r", required=True, help="Destination address (0x + 40 hex)")
        create.add_argument("--chain-id", type=int, help="Destination chain id (default: claim.destination_chain_id)")
        create.add_argument("--secret", help="Fixed 32-byte secret (hex); random if omitted")
        create.add_argument("--output", "-o", required=True, help="Deposit note file")
        create.add_argument("--template", action="store_true", help="Include an unsigned template transaction")
        self._add_locker_arguments(create)

    def _register_tx_commands(self) -> None:
        tx = self.subparsers.add_parser("tx", help="Deposit transactions")
        tx_sub = tx.add_subparsers(dest="subcommand")

        # tx parse
        parse = tx_sub.add_parser("parse", help="Parse a raw transaction")
        source = parse.add_mutually_exclusive_group(required=True)
        source.add_argument("--hex", help="Raw transaction hex")
        source.add_argument("--file", help="File holding raw transaction hex")
        parse.add_argument("--txid", help="Expected display-order txid")
        self._add_locker_arguments(parse)

    def _register_witness_commands(self) -> None:
        witness = self.subparsers.add_parser("witness", help="Circuit witnesses")
        witness_sub = witness.add_subparsers(dest="subcommand")

        # witness build
        build = witness_sub.add_parser("build", help="Write circuit input JSON")
        build.add_argument("--deposit", "-d", required=True, help="Deposit note file")
        build.add_argument("--output", "-o", required=True, help="Circuit input file")
        self._add_source_arguments(build)

    def _register_claim_commands(self) -> None:
        claim = self.subparsers.add_parser("claim", help="Claim packages")
        claim_sub = claim.add_subparsers(dest="subcommand")

        # claim prepare
        prepare = claim_sub.add_parser("prepare", help="Run the full pipeline")
        prepare.add_argument("--deposit", "-d", required=True, help="Deposit note file")
        prepare.add_argument("--output", "-o", required=True, help="Claim package file")
        prepare.add_argument("--root-index", type=int, help="Fix the real root slot (testing)")
        self._add_source_arguments(prepare)

        # claim verify
        verify = claim_sub.add_parser("verify", help="Verify a claim package proof")
        verify.add_argument("--package", "-p", required=True, help="Claim package file")
        verify.add_argument("--chain-id", type=int, help="Destination chain id (default: claim.destination_chain_id)")

    def _register_config_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        config_sub.add_parser("show", help="Show all configuration")
        config_sub.add_parser("validate", help="Validate configuration")
        config_sub.add_parser("schema", help="Export configuration schema")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            self._setup(parsed)
            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except ZkBridgeError as e:
            if not parsed.quiet:
                print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
            return 1

    def _setup(self, args: argparse.Namespace) -> None:
        from zkbridge.config import get_config_manager
        from zkbridge.observability import configure_logging

        mgr = get_config_manager()
        if args.config:
            mgr.load_from_file(args.config)
        logging_config = mgr.config.logging
        configure_logging(logging_config.level.get(), logging_config.format.get(), stream=sys.stderr)

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}", exit_code=2)

        return handler(args)

    # Shared helpers
    @staticmethod
    def _locker(args: argparse.Namespace) -> Union[bytes, str]:
        if args.locker_script:
            try:
                return bytes.fromhex(args.locker_script)
            except ValueError as e:
                raise CLIError("--locker-script must be hex", exit_code=2) from e
        return args.locker

    @staticmethod
    def _provider(args: argparse.Namespace) -> Any:
        from zkbridge.config import get_config
        from zkbridge.core import load_json
        from zkbridge.provider import MempoolSpaceProvider, StaticProvider
        from zkbridge.witness import MerkleProof

        if args.tx_file or args.merkle_proof:
            if not (args.tx_file and args.merkle_proof):
                raise CLIError("--tx-file and --merkle-proof must be given together", exit_code=2)
            try:
                raw = bytes.fromhex(_read_hex_file(args.tx_file))
            except ValueError as e:
                raise CLIError(f"{args.tx_file} does not hold transaction hex", exit_code=2) from e
            try:
                proof = MerkleProof.from_dict(load_json(args.merkle_proof))
            except (OSError, ValueError, KeyError, TypeError) as e:
                raise CLIError(f"Cannot read merkle proof {args.merkle_proof}: {e}", exit_code=2) from e
            provider = StaticProvider()
            provider.add_transaction(raw, proof, txid=args.txid.lower())
            return provider

        provider_config = get_config().provider
        if args.provider_url:
            provider_config.base_url.set(args.provider_url)
        return MempoolSpaceProvider.from_config(provider_config)

    @staticmethod
    def _pipeline(args: argparse.Namespace, root_index: Optional[int] = None) -> Any:
        from zkbridge.config import get_config
        from zkbridge.pipeline import ClaimPipeline
        from zkbridge.prover import ProofOrchestrator, create_backend

        config = get_config()
        orchestrator = ProofOrchestrator(create_backend(config.prover))
        return ClaimPipeline(
            ZkBridgeCLI._provider(args),
            orchestrator,
            config.circuit.to_parameters(),
            root_index=root_index,
        )

    # Deposit handlers
    def _handle_deposit_create(self, args: argparse.Namespace) -> Any:
        from zkbridge.config import get_config
        from zkbridge.deposit import build_transaction_for_deposit, create_deposit, save_deposit

        chain_id = args.chain_id if args.chain_id is not None else get_config().claim.destination_chain_id.get()
        deposit = create_deposit(
            amount=args.amount,
            chain_id=chain_id,
            recipient=args.recipient,
            locker=self._locker(args),
            secret=args.secret,
        )
        path = save_deposit(deposit, args.output)
        result = {
            "deposit_file": str(path),
            "commitment": deposit.commitment.hex(),
            "commitment_script": deposit.commitment_script.hex(),
            "locker_script": deposit.locker_script.hex(),
            "amount": deposit.amount,
            "chain_id": deposit.chain_id,
        }
        if args.template:
            result["template_transaction"] = build_transaction_for_deposit(deposit).hex()
        return result

    # Transaction handlers
    def _handle_tx_parse(self, args: argparse.Namespace) -> Any:
        from zkbridge.txparser import parse_transaction

        raw = args.hex if args.hex else _read_hex_file(args.file)
        return parse_transaction(raw, self._locker(args), expected_txid=args.txid).to_dict()

    # Witness handlers
    def _handle_witness_build(self, args: argparse.Namespace) -> Any:
        from zkbridge.deposit import load_deposit
        from zkbridge.pipeline import write_circuit_input

        deposit = load_deposit(args.deposit)
        witness = self._pipeline(args).prepare(deposit, args.txid)
        path = write_circuit_input(witness, args.output)
        return {
            "circuit_input": str(path),
            "txid": witness.txid,
            "num_blocks": witness.num_blocks,
            "merkle_depth": witness.merkle.depth,
            "public_signals": [str(s) for s in witness.public_signals()],
        }

    # Claim handlers
    def _handle_claim_prepare(self, args: argparse.Namespace) -> Any:
        from zkbridge.deposit import load_deposit
        from zkbridge.pipeline import write_package

        deposit = load_deposit(args.deposit)
        package = self._pipeline(args, root_index=args.root_index).generate(deposit, args.txid)
        path = write_package(package, args.output)
        return {"claim_package": str(path), **package.to_dict()}

    def _handle_claim_verify(self, args: argparse.Namespace) -> Any:
        from zkbridge.config import get_config
        from zkbridge.pipeline import load_package
        from zkbridge.prover import ProofOrchestrator, create_backend

        package = load_package(args.package)
        config = get_config()
        orchestrator = ProofOrchestrator(create_backend(config.prover))
        valid = orchestrator.verify(package.proof, package.public_signals)
        if not valid:
            raise CLIError(f"Proof in {args.package} does not verify", exit_code=3)
        chain_id = args.chain_id if args.chain_id is not None else config.claim.destination_chain_id.get()
        expected = package.candidate_roots + (
            package.nullifier,
            package.amount,
            chain_id,
            int(package.recipient, 16),
            package.locker_script_hash,
        )
        if tuple(package.public_signals) != expected:
            raise CLIError(f"Public signals in {args.package} do not match its claim fields", exit_code=3)
        return {"valid": valid, "txid": package.txid, "proof_digest": package.proof.digest}

    # Config handlers
    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        from zkbridge.config import get_config_manager
        return get_config_manager().config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        from zkbridge.config import get_config_manager
        errors = get_config_manager().validate()
        if errors:
            raise CLIError("Invalid configuration: " + "; ".join(errors))
        return {"valid": True, "errors": []}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        from zkbridge.config import get_config_manager
        return get_config_manager().export_schema()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    cli = ZkBridgeCLI()
    return cli.run(argv)


if __name__ == "__main__":
    sys.exit(main())
