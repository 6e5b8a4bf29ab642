#!/usr/bin/env python3
"""
stakereg CLI

Off-ledger tooling for operators and challengers: key generation,
registration signing, batch roots and membership proofs.

Usage:
    stakereg <command> [subcommand] [options]

Commands:
    keygen              Generate a key pair
    sign-registration   Sign a registration message for one key
    root                Compute the registration root of a batch file
    proof               Build a membership proof for one leaf of a batch
    verify-proof        Check a membership proof against a root
    config              Configuration management (show, validate, get, schema)

Batch files are JSON documents:

    {"registrations": [{"public_key": "0x..", "signature": "0x.."}, ...]}

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from jsonschema import Draft202012Validator

from stakereg import __version__
from stakereg.accumulator import build_proof, build_root, minimal_height, verify_proof
from stakereg.core.config import ConfigError, get_config_manager
from stakereg.core.hardening import RegistryError
from stakereg.core.observability import configure_logging
from stakereg.signing import SignatureError, get_gateway


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


BATCH_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["registrations"],
    "properties": {
        "registrations": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["public_key", "signature"],
                "properties": {
                    "public_key": {"type": "string", "pattern": "^(0x)?([0-9a-fA-F]{2})+$"},
                    "signature": {"type": "string", "pattern": "^(0x)?([0-9a-fA-F]{2})+$"},
                },
                "additionalProperties": False,
            },
        },
        "withdrawal_address": {"type": "string"},
        "unregistration_delay": {"type": "integer", "minimum": 0},
    },
}


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.YAML:
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=True)
    return json.dumps(data, indent=2, default=str, sort_keys=True)


def _hex_arg(value: str, name: str) -> bytes:
    s = value.strip()
    if s.startswith(("0x", "0X")):
        s = s[2:]
    try:
        return bytes.fromhex(s)
    except ValueError:
        raise CLIError(f"{name} must be hex", exit_code=2) from None


def _0x(b: bytes) -> str:
    return "0x" + b.hex()


def load_batch(path: str) -> List[Any]:
    """Load and validate a batch file. Returns Registration objects."""
    from stakereg.core.ledger import Registration

    p = Path(path)
    if not p.exists():
        raise CLIError(f"Batch file not found: {path}", exit_code=2)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise CLIError(f"Invalid JSON in {path}: {e}", exit_code=2) from e

    validator = Draft202012Validator(BATCH_SCHEMA)
    errors = [f"{list(e.absolute_path)}: {e.message}" for e in sorted(validator.iter_errors(data), key=str)]
    if errors:
        raise CLIError(f"Invalid batch file {path}: " + "; ".join(errors), exit_code=2)
    return [Registration.from_dict(r) for r in data["registrations"]]


class RegistryCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="stakereg",
            description="Stake-backed key registry tooling",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"stakereg {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=["json", "yaml"],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="YAML configuration file to load before running the command",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error messages",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        """Register all commands."""
        self._register_key_commands()
        self._register_tree_commands()
        self._register_config_commands()

    def _register_key_commands(self) -> None:
        keygen = self.subparsers.add_parser("keygen", help="Generate a key pair")
        keygen.add_argument("--scheme", "-s", help="Signature scheme (default: from config)")
        keygen.add_argument("--seed", help="Hex seed (>= 32 bytes) for deterministic keys")

        sign = self.subparsers.add_parser("sign-registration", help="Sign a registration message")
        sign.add_argument("--scheme", "-s", help="Signature scheme (default: from config)")
        sign.add_argument("--secret-key", "-k", required=True, help="Hex secret key")
        sign.add_argument("--withdrawal-address", "-a", required=True, help="0x withdrawal address")
        sign.add_argument("--delay", "-d", type=int, required=True, help="Unregistration delay")
        sign.add_argument("--domain", help="Registration domain (default: from config)")

    def _register_tree_commands(self) -> None:
        root = self.subparsers.add_parser("root", help="Compute the root of a batch file")
        root.add_argument("batch", help="Batch JSON file")
        root.add_argument("--height", type=int, help="Explicit tree height")

        proof = self.subparsers.add_parser("proof", help="Build a membership proof")
        proof.add_argument("batch", help="Batch JSON file")
        proof.add_argument("--index", "-i", type=int, required=True, help="Leaf index")
        proof.add_argument("--height", type=int, help="Explicit tree height")

        verify = self.subparsers.add_parser("verify-proof", help="Verify a membership proof")
        verify.add_argument("--root", "-r", required=True, help="Hex root")
        verify.add_argument("--leaf", "-l", required=True, help="Hex leaf hash")
        verify.add_argument("--index", "-i", type=int, required=True, help="Leaf index")
        verify.add_argument("--proof", "-p", nargs="*", default=[], help="Hex sibling hashes, bottom-up")

    def _register_config_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        get = config_sub.add_parser("get", help="Get configuration value")
        get.add_argument("path", help="Config path (e.g., timing.fraud_proof_window)")

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
            fmt = OutputFormat(parsed.format)
            if parsed.config:
                get_config_manager().load_from_file(parsed.config)
            else:
                get_config_manager().load_defaults()
            _apply_logging_config()
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except (RegistryError, SignatureError, ConfigError, ValueError) as e:
            if not parsed.quiet:
                code = getattr(e, "code", type(e).__name__)
                print(f"Error [{code}]: {e}", file=sys.stderr)
            return 1

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command.replace("-", "_")
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {args.command} {subcmd or ''}")

        return handler(args)

    @staticmethod
    def _scheme(args: argparse.Namespace) -> str:
        if args.scheme:
            return args.scheme
        return get_config_manager().get("signing.scheme")

    # Key handlers
    def _handle_keygen(self, args: argparse.Namespace) -> Any:
        gateway = get_gateway(self._scheme(args))
        seed = _hex_arg(args.seed, "seed") if args.seed else None
        kp = gateway.generate_keypair(seed)
        return {
            "scheme": kp.scheme.value,
            "public_key": _0x(kp.public_key),
            "secret_key": _0x(kp.secret_key),
        }

    def _handle_sign_registration(self, args: argparse.Namespace) -> Any:
        from stakereg.core.ledger import registration_message

        gateway = get_gateway(self._scheme(args))
        domain = (args.domain or get_config_manager().get("signing.registration_domain")).encode("utf-8")
        secret = _hex_arg(args.secret_key, "secret-key")
        message = registration_message(args.withdrawal_address, args.delay)
        signature = gateway.sign(message, secret, domain)
        return {
            "public_key": _0x(gateway.public_key(secret)),
            "signature": _0x(signature),
            "message": _0x(message),
        }

    # Tree handlers
    def _handle_root(self, args: argparse.Namespace) -> Any:
        regs = load_batch(args.batch)
        leaves = [r.leaf() for r in regs]
        height = args.height if args.height is not None else minimal_height(len(leaves))
        return {
            "root": _0x(build_root(leaves, height)),
            "num_keys": len(leaves),
            "height": height,
        }

    def _handle_proof(self, args: argparse.Namespace) -> Any:
        regs = load_batch(args.batch)
        leaves = [r.leaf() for r in regs]
        if not 0 <= args.index < len(leaves):
            raise CLIError(f"index {args.index} out of range for {len(leaves)} leaves", exit_code=2)
        return {
            "root": _0x(build_root(leaves, args.height)),
            "leaf": _0x(leaves[args.index]),
            "index": args.index,
            "proof": [_0x(p) for p in build_proof(leaves, args.index, args.height)],
        }

    def _handle_verify_proof(self, args: argparse.Namespace) -> Any:
        valid = verify_proof(args.root, args.leaf, args.index, list(args.proof))
        return {"valid": valid}

    # Config handlers
    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        mgr = get_config_manager()
        return {"path": args.path, "value": mgr.get(args.path)}

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        return get_config_manager().config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        errors = get_config_manager().validate()
        if errors:
            raise CLIError("; ".join(errors), exit_code=2)
        return {"valid": True, "errors": []}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        return get_config_manager().export_schema()


def _apply_logging_config() -> None:
    """Install the structured handler at the configured level and format."""
    mgr = get_config_manager()
    configure_logging(mgr.get("observability.log_level"), mgr.get("observability.log_format"))


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    cli = RegistryCLI()
    return cli.run(argv)


if __name__ == "__main__":
    sys.exit(main())
