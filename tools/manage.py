#!/usr/bin/env python3
"""
BlockReceipt Management CLI

Commands:
- generate-master-key: Generate a receipt encryption master key
- generate-vendor-keypair: Generate an Ed25519 keypair for signed assertions
- sign-assertion: Sign a verification assertion for one token id
- init-db: Create the ledger and idempotency tables
- verify-receipt: Verify a committed receipt against configured storage
- show-config: Print the effective configuration (no secrets)
- health-check: Check ledger and content store reachability

Usage:
    python -m tools.manage <command> [options]

Examples:
    python -m tools.manage generate-master-key --version v2
    python -m tools.manage init-db
    python -m tools.manage verify-receipt 42 --credential "$VENDOR_KEY"
"""

import argparse
import json
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))


def cmd_generate_master_key(args):
    """Generate a master key entry for BLOCKRECEIPT_MASTER_KEYS."""
    from blockreceipt.core import generate_master_key

    key = generate_master_key()
    print("\nAppend to BLOCKRECEIPT_MASTER_KEYS (comma separated):")
    print(f"  {args.version}:{key}")
    print(f"\nTo make it active: BLOCKRECEIPT_ACTIVE_KEY_VERSION={args.version}")
    print("Keep older versions configured so existing receipts stay readable.")


def cmd_generate_vendor_keypair(args):
    """Generate an Ed25519 keypair for a verifier."""
    from blockreceipt.core import Signer

    private_key, public_key = Signer.generate_keypair()

    print("\n[OK] Vendor keypair generated")
    print("\n  Public key (add to BLOCKRECEIPT_VENDOR_PUBLIC_KEYS):")
    print(f"  {public_key}")
    print("\n  Private key (KEEP SECRET! give only to the vendor):")
    print(f"  {private_key}")


def cmd_sign_assertion(args):
    """Produce a credential that unlocks one token id."""
    from blockreceipt.core import Signer

    assertion = Signer.make_assertion(args.token_id, args.private_key, args.public_key)
    print(assertion)


def cmd_init_db(args):
    """Create the ledger and idempotency index tables."""
    from blockreceipt.db import DatabaseConfig, PostgresIdempotencyIndex, PostgresLedger, get_database_url
    from blockreceipt.db.config import make_connection_factory

    db_url = get_database_url()
    if not db_url:
        print("Error: DATABASE_URL or DATABASE_HOST must be set")
        return 1

    config = DatabaseConfig.from_url(db_url)
    connection_factory = make_connection_factory(config)

    print(f"Initializing schema on {config.to_url(include_password=False)}...")
    PostgresLedger(connection_factory).create_schema()
    PostgresIdempotencyIndex(connection_factory).create_schema()
    print("[OK] receipt_commitments and idempotency_claims ready")
    return 0


def cmd_verify_receipt(args):
    """Verify a receipt through the configured backends."""
    from blockreceipt.container import ServiceContainer
    from blockreceipt.core import ReceiptError

    container = ServiceContainer.from_config()
    try:
        result = container.verification.verify(args.token_id, args.credential)
    except ReceiptError as e:
        print(f"[FAIL] {type(e).__name__}: {e}")
        return 1
    finally:
        container.close()

    print(json.dumps(result.model_dump(mode="json", exclude_none=True), indent=2))
    return 0


def cmd_show_config(args):
    """Print the effective configuration without secrets."""
    from blockreceipt.config import ServiceConfig
    from blockreceipt.db import get_database_url, get_storage_driver
    from blockreceipt.db import DatabaseConfig

    config = ServiceConfig.from_env()
    summary = config.redacted()
    summary["storage_driver"] = get_storage_driver().value

    db_url = get_database_url()
    if db_url:
        summary["database"] = DatabaseConfig.from_url(db_url).to_url(include_password=False)

    print(json.dumps(summary, indent=2))


def cmd_health_check(args):
    """Run backend health checks."""
    from blockreceipt.container import ServiceContainer
    from blockreceipt.observability import check_health

    print("=== BlockReceipt Health Check ===\n")

    container = ServiceContainer.from_config()
    try:
        status = check_health(
            ledger=container.ledger,
            content_store=container.content_store,
            key_ring=container.key_ring,
        )
    finally:
        container.close()

    for name, check in status.checks.items():
        marker = "[OK]" if check["status"] == "healthy" else "[FAIL]"
        print(f"  {name}: {marker}")
        if check.get("ephemeral"):
            print("    [WARN] Ephemeral master key (development)")

    print("\n=== Health Check Complete ===")
    return 0 if status.healthy else 1


def main():
    parser = argparse.ArgumentParser(
        description="BlockReceipt Management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    p_master = subparsers.add_parser(
        "generate-master-key",
        help="Generate a receipt encryption master key"
    )
    p_master.add_argument("--version", default="v1", help="Key version label (default: v1)")

    subparsers.add_parser(
        "generate-vendor-keypair",
        help="Generate an Ed25519 keypair for signed assertions"
    )

    p_assert = subparsers.add_parser(
        "sign-assertion",
        help="Sign a verification assertion for one token id"
    )
    p_assert.add_argument("token_id", help="Token id the assertion unlocks")
    p_assert.add_argument("--private-key", required=True, help="Vendor private key (base64)")
    p_assert.add_argument("--public-key", required=True, help="Vendor public key (base64)")

    subparsers.add_parser(
        "init-db",
        help="Create ledger and idempotency tables"
    )

    p_verify = subparsers.add_parser(
        "verify-receipt",
        help="Verify a committed receipt"
    )
    p_verify.add_argument("token_id", help="Token id to verify")
    p_verify.add_argument("--credential", help="Vendor key or signed assertion for full disclosure")

    subparsers.add_parser(
        "show-config",
        help="Print effective configuration (no secrets)"
    )

    subparsers.add_parser(
        "health-check",
        help="Check ledger and content store reachability"
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "generate-master-key": cmd_generate_master_key,
        "generate-vendor-keypair": cmd_generate_vendor_keypair,
        "sign-assertion": cmd_sign_assertion,
        "init-db": cmd_init_db,
        "verify-receipt": cmd_verify_receipt,
        "show-config": cmd_show_config,
        "health-check": cmd_health_check,
    }

    return commands[args.command](args) or 0


if __name__ == "__main__":
    sys.exit(main())
