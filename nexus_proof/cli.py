"""
nexus-proof command line interface.

Usage:
    nexus-proof hash --content <file> [--metadata <file>]
    nexus-proof keygen [--output <file>]
    nexus-proof attest --config <file> --content <file> --metadata <file> [--output <file>] [--db <file>]
    nexus-proof verify --config <file> --artifact <file> [--content <file>] [--metadata <file>] [--db <file>]
    nexus-proof show --db <file> (--document-id <id> | --checksum <digest>)

Exit codes:
    0  success / VERIFIED
    1  attestation did not confirm / FAILED verification / not found
    2  usage or configuration error
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

import jsonschema  # type: ignore[import-untyped]

from nexus_proof.artifact import load_artifact, save_artifact
from nexus_proof.config import EngineConfig, load_config
from nexus_proof.engine import AttestationEngine
from nexus_proof.errors import IntegrityFault, ProofEngineError
from nexus_proof.integrity import content_digest, derive_identity
from nexus_proof.ledger.jsonrpc_client import client_for
from nexus_proof.logging_config import configure_logging
from nexus_proof.oracle.signing import (
    OracleKeyring,
    generate_signing_key,
    get_public_key_hex,
    private_key_to_hex,
)
from nexus_proof.storage import HttpStorage, RoutingStorage, locate_file
from nexus_proof.store import ProofStore
from nexus_proof.verifier import Verifier

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def load_json(path: str) -> Any:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def save_json(data: Any, path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, sort_keys=True)
        f.write("\n")


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


# =========================================================================
# Commands
# =========================================================================


def cmd_hash(args: argparse.Namespace) -> int:
    """Print the digests for a content file and optional metadata file."""
    content = Path(args.content).read_bytes()
    if args.metadata is None:
        _print_json({"content_digest": content_digest(content).prefixed})
        return EXIT_OK
    identity = derive_identity(content, load_json(args.metadata))
    _print_json(identity.to_dict())
    return EXIT_OK


def cmd_keygen(args: argparse.Namespace) -> int:
    """Generate an Ed25519 key pair for a local oracle."""
    key = generate_signing_key()
    data = {
        "public_key": get_public_key_hex(key),
        "private_key": private_key_to_hex(key),
    }
    if args.output:
        save_json(data, args.output)
        print(f"Key pair saved to: {args.output}", file=sys.stderr)
        print(data["public_key"])
    else:
        _print_json(data)
    return EXIT_OK


def cmd_attest(args: argparse.Namespace, config: EngineConfig) -> int:
    """Attest a local content file with its metadata."""
    engine = AttestationEngine.from_config(config)
    locator = locate_file(args.content)
    metadata = load_json(args.metadata)

    result = asyncio.run(engine.attest(locator, metadata))

    if result.artifact is not None:
        if args.output:
            save_artifact(result.artifact, args.output)
            print(f"Artifact saved to: {args.output}", file=sys.stderr)
        else:
            _print_json(result.artifact.to_dict())
        if args.db:
            ProofStore(args.db).put_artifact(result.artifact)

    if result.ok:
        print(f"\n✓ CONFIRMED {result.document_id}", file=sys.stderr)
        return EXIT_OK

    print(f"\n✗ NOT CONFIRMED {result.document_id}", file=sys.stderr)
    if result.error is not None:
        print(f"  - {result.error.describe()}", file=sys.stderr)
    return EXIT_FAILED


def cmd_verify(args: argparse.Namespace, config: EngineConfig) -> int:
    """Verify an artifact file against live ledgers."""
    artifact = load_artifact(args.artifact, strict=False)
    verifier = Verifier(
        OracleKeyring(config.oracle.authorized_keys),
        config.ledgers,
        {ledger.chain_id: client_for(ledger) for ledger in config.ledgers},
        quorum=config.effective_quorum,
        storage=RoutingStorage(
            http_storage=HttpStorage(config.storage_gateway_url, retry=config.storage_retry)
        ),
    )
    content = Path(args.content).read_bytes() if args.content else None
    metadata = load_json(args.metadata) if args.metadata else None

    report = asyncio.run(verifier.verify(artifact, content, metadata))
    _print_json(report.to_dict())
    if args.db:
        ProofStore(args.db).record_verification(artifact.artifact_checksum.prefixed, report)

    if report.ok:
        print("\n✓ VERIFIED", file=sys.stderr)
        return EXIT_OK
    print("\n✗ FAILED", file=sys.stderr)
    for stage in report.failed_stages:
        print(f"  - {stage}", file=sys.stderr)
    return EXIT_FAILED


def cmd_show(args: argparse.Namespace) -> int:
    """Print a stored artifact."""
    store = ProofStore(args.db)
    if args.checksum:
        artifact = store.get_artifact(args.checksum)
    else:
        artifact = store.latest_for_document(args.document_id)
    if artifact is None:
        print("No artifact found", file=sys.stderr)
        return EXIT_FAILED
    _print_json(artifact.to_dict())
    return EXIT_OK


# =========================================================================
# Entry point
# =========================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nexus-proof",
        description="Attest content to an oracle and verify cross-chain proofs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  nexus-proof hash --content doc.pdf --metadata meta.json
  nexus-proof keygen --output oracle-key.json
  nexus-proof attest --config engine.json --content doc.pdf --metadata meta.json -o proof.json
  nexus-proof verify --config engine.json --artifact proof.json --content doc.pdf
        """,
    )
    parser.add_argument("--log-level", default="WARNING", help="Log level (default: WARNING)")
    parser.add_argument("--log-json", action="store_true", help="Emit JSON log lines")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    hash_parser = subparsers.add_parser("hash", help="Compute content/metadata digests")
    hash_parser.add_argument("--content", required=True, help="Content file")
    hash_parser.add_argument("--metadata", help="Metadata JSON file")

    keygen_parser = subparsers.add_parser("keygen", help="Generate an oracle signing key pair")
    keygen_parser.add_argument("-o", "--output", help="Output file for the key pair")

    attest_parser = subparsers.add_parser("attest", help="Attest a content file")
    attest_parser.add_argument("-c", "--config", help="Engine config JSON (default: $NEXUS_PROOF_CONFIG)")
    attest_parser.add_argument("--content", required=True, help="Content file")
    attest_parser.add_argument("--metadata", required=True, help="Metadata JSON file")
    attest_parser.add_argument("-o", "--output", help="Output file for the artifact")
    attest_parser.add_argument("--db", help="SQLite proof store")

    verify_parser = subparsers.add_parser("verify", help="Verify a proof artifact")
    verify_parser.add_argument("-c", "--config", help="Engine config JSON (default: $NEXUS_PROOF_CONFIG)")
    verify_parser.add_argument("-A", "--artifact", required=True, help="Artifact JSON file")
    verify_parser.add_argument("--content", help="Content file (fetched via locator if omitted)")
    verify_parser.add_argument("--metadata", help="Metadata JSON file")
    verify_parser.add_argument("--db", help="SQLite proof store to record the report in")

    show_parser = subparsers.add_parser("show", help="Show a stored artifact")
    show_parser.add_argument("--db", required=True, help="SQLite proof store")
    group = show_parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--document-id", help="Latest artifact for this document id")
    group.add_argument("--checksum", help="Artifact by checksum")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level, json_format=args.log_json)

    if args.command is None:
        parser.print_help()
        return EXIT_USAGE

    try:
        if args.command == "hash":
            return cmd_hash(args)
        if args.command == "keygen":
            return cmd_keygen(args)
        if args.command == "show":
            return cmd_show(args)
        config = load_config(args.config)
        if args.command == "attest":
            return cmd_attest(args, config)
        return cmd_verify(args, config)
    except IntegrityFault as exc:
        print(f"Integrity fault: {exc}", file=sys.stderr)
        return EXIT_FAILED
    except (OSError, jsonschema.ValidationError, ProofEngineError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
